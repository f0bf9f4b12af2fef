# reassignment_billing/models/billing.py
from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Boolean,
    DateTime,
    Index,
    ForeignKey,
    UniqueConstraint,
    Text,
)
from sqlalchemy.orm import relationship

from reassignment_billing.db.base import Base


class ConsultationType(str, enum.Enum):
    OP = "OP"
    IP = "IP"
    FOLLOWUP = "followup"


class InvoiceStatus(str, enum.Enum):
    INVOICED = "invoiced"
    PAID = "paid"
    # only written by the registration/consultation module on original bills
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"


TERMINAL_STATUSES = {InvoiceStatus.CANCELLED.value, InvoiceStatus.REFUNDED.value}


class LineKind(str, enum.Enum):
    CONSULTATION_FEE = "consultation_fee"
    SERVICE_CHARGE = "service_charge"
    # display-only adjustment rows produced by the reconciler
    TAX = "tax"
    DISCOUNT = "discount"
    ADJUSTMENT = "adjustment"


class PatientBehavior(str, enum.Enum):
    OKAY = "okay"
    RUDE = "rude"


class RefundType(str, enum.Enum):
    FULL = "full"
    PARTIAL = "partial"


class PayMode(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    CHEQUE = "cheque"
    NEFT = "neft"
    OTHER = "other"


class Invoice(Base):
    """
    One bill in a patient's billing history.

    - is_reassignment=False: original consultation bill written by the
      registration module (read here only for eligibility).
    - is_reassignment=True: bill raised by this engine after the patient was
      moved to a new doctor.

    Money columns are aggregates kept in sync by recalc(); payments and
    refunds are append-only ledgers. `version` is the optimistic lock used
    by every mutation (see services/billing_transactions.py).
    """

    __tablename__ = "billing_invoices"
    __table_args__ = (Index("ix_billing_invoices_patient_created",
                            "patient_id", "created_at"), )

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(32), unique=True, index=True, nullable=True)

    patient_id = Column(
        Integer,
        ForeignKey("patients.id"),
        nullable=False,
        index=True,
    )
    # doctor the patient was reassigned to
    doctor_id = Column(Integer, nullable=True)
    reassignment_event_id = Column(Integer,
                                   ForeignKey("patient_reassignments.id"),
                                   nullable=True)
    is_reassignment = Column(Boolean, default=False, nullable=False)

    # OP | IP | followup (legacy rows may carry anything)
    consultation_type = Column(String(16), nullable=True)

    tax_percentage = Column(Numeric(6, 2), default=0)
    discount_percentage = Column(Numeric(6, 2), default=0)

    subtotal = Column(Numeric(12, 2), default=0)
    tax_amount = Column(Numeric(12, 2), default=0)
    discount_amount = Column(Numeric(12, 2), default=0)
    total = Column(Numeric(12, 2), default=0)

    # Money collected (single full settlement for reassignment bills)
    amount_paid = Column(Numeric(12, 2), default=0)
    balance_due = Column(Numeric(12, 2), default=0)

    status = Column(String(24), default=InvoiceStatus.INVOICED.value)

    notes = Column(Text, nullable=True)

    # next consultation, committed together with the payment
    appointment_time = Column(DateTime, nullable=True)

    cancel_reason = Column(String(255), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    refunded_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    created_by = Column(Integer, nullable=True)
    updated_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    __mapper_args__ = {"version_id_col": version}

    patient = relationship("Patient", back_populates="invoices")
    reassignment_event = relationship("ReassignmentEvent")

    items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.seq",
    )
    payments = relationship(
        "InvoicePayment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoicePayment.id",
    )
    refunds = relationship(
        "InvoiceRefund",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceRefund.id",
    )

    # ---------- Billing math helpers ----------
    @staticmethod
    def _d(v) -> Decimal:
        if v is None:
            return Decimal("0")
        return Decimal(str(v))

    @staticmethod
    def _q2(v: Decimal) -> Decimal:
        return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @property
    def total_refunded(self) -> Decimal:
        return self._q2(sum((self._d(r.amount) for r in (self.refunds or [])),
                            Decimal("0")))

    @property
    def penalty_applied(self) -> bool:
        return any(bool(r.penalty_applied) for r in (self.refunds or []))

    def recalc(self) -> None:
        """
        Recalculate totals from line items.

          subtotal = sum(items.amount)
          tax      = subtotal * tax_percentage / 100
          discount = subtotal * discount_percentage / 100
          total    = subtotal + tax - discount   (floored at 0)
          due      = total - paid                (floored at 0)
        """
        _d = self._d
        _q2 = self._q2

        subtotal = _q2(
            sum((_d(it.amount) for it in (self.items or [])), Decimal("0")))
        tax = _q2(subtotal * _d(self.tax_percentage) / Decimal("100"))
        discount = _q2(subtotal * _d(self.discount_percentage) /
                       Decimal("100"))

        total = subtotal + tax - discount
        if total < 0:
            total = Decimal("0")

        self.subtotal = subtotal
        self.tax_amount = tax
        self.discount_amount = discount
        self.total = _q2(total)

        due = self.total - _d(self.amount_paid)
        if due < 0:
            due = Decimal("0")
        self.balance_due = _q2(due)


class InvoiceLineItem(Base):
    __tablename__ = "billing_invoice_items"
    __table_args__ = (Index("ix_billing_items_invoice", "invoice_id"), )

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(
        Integer,
        ForeignKey("billing_invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    # S.no order for UI/print
    seq = Column(Integer, default=1)

    # consultation_fee | service_charge
    kind = Column(String(24), nullable=False)
    name = Column(String(120), nullable=False)
    description = Column(String(255), nullable=True)
    amount = Column(Numeric(12, 2), default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    invoice = relationship("Invoice", back_populates="items")


class InvoicePayment(Base):
    """
    Staff-confirmed payment (no gateway callbacks).
    mode: cash | card | upi | cheque | neft | other
    """

    __tablename__ = "billing_payments"
    __table_args__ = (Index("ix_billing_payments_invoice", "invoice_id"), )

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(
        Integer,
        ForeignKey("billing_invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    amount = Column(Numeric(12, 2), nullable=False)
    mode = Column(String(32), nullable=False)
    reference_no = Column(String(100), nullable=True)
    notes = Column(String(255), nullable=True)
    appointment_time = Column(DateTime, nullable=False)
    paid_at = Column(DateTime, default=datetime.utcnow)

    created_by = Column(Integer, nullable=True)

    invoice = relationship("Invoice", back_populates="payments")


class InvoiceRefund(Base):
    __tablename__ = "billing_refunds"
    __table_args__ = (Index("ix_billing_refunds_invoice", "invoice_id"), )

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(
        Integer,
        ForeignKey("billing_invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    amount = Column(Numeric(12, 2), nullable=False)
    mode = Column(String(32), nullable=False)
    refund_type = Column(String(16), nullable=False)
    reason = Column(String(255), nullable=False)
    notes = Column(Text, nullable=True)

    # okay -> registration-fee penalty withheld (once per invoice)
    patient_behavior = Column(String(16), nullable=False)
    penalty_applied = Column(Boolean, default=False, nullable=False)

    refunded_at = Column(DateTime, default=datetime.utcnow)
    created_by = Column(Integer, nullable=True)

    invoice = relationship("Invoice", back_populates="refunds")


class BillingNumberSeries(Base):
    __tablename__ = "billing_number_series"
    __table_args__ = (UniqueConstraint("prefix",
                                       name="uq_billing_number_prefix"), )

    id = Column(Integer, primary_key=True, index=True)
    prefix = Column(String(16), nullable=False)
    next_number = Column(Integer, nullable=False, default=1)
    padding = Column(Integer, nullable=False, default=6)


class IdempotencyKey(Base):
    """
    One row per applied mutation request (invoice + operation + caller nonce).
    Written in the same transaction as the mutation it guards.
    """

    __tablename__ = "billing_idempotency_keys"
    __table_args__ = (UniqueConstraint("invoice_id",
                                       "operation",
                                       "nonce",
                                       name="uq_billing_idempotency"), )

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(
        Integer,
        ForeignKey("billing_invoices.id", ondelete="CASCADE"),
        nullable=False,
    )
    operation = Column(String(32), nullable=False)
    nonce = Column(String(128), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
