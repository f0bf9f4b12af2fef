# FILE: reassignment_billing/schemas/billing.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reassignment_billing.models.billing import (
    PatientBehavior,
    PayMode,
    RefundType,
)
from reassignment_billing.services.billing_reconcile import DisplayStatus


def _strip(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = str(v).strip()
    return v or None


# ---------------- Inputs ----------------
class ServiceChargeIn(BaseModel):
    name: str = ""
    amount: Decimal = Decimal("0")
    description: Optional[str] = None


class InvoiceCreateIn(BaseModel):
    patient_id: int
    # None -> followup when free, OP otherwise
    consultation_type: Optional[str] = None
    consultation_fee: Optional[Decimal] = None
    tax_percentage: Decimal = Decimal("0")
    discount_percentage: Decimal = Decimal("0")
    # None -> default charges; [] -> no service charges at all
    service_charges: Optional[List[ServiceChargeIn]] = None
    notes: Optional[str] = None

    @field_validator("consultation_type", "notes")
    @classmethod
    def _clean(cls, v):
        return _strip(v)


class PaymentIn(BaseModel):
    amount: Decimal
    mode: PayMode = PayMode.CASH
    appointment_time: Optional[datetime] = None
    reference_no: Optional[str] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class CancelIn(BaseModel):
    reason: str = Field(min_length=1, max_length=255)
    expected_version: Optional[int] = None

    @field_validator("reason")
    @classmethod
    def _reason(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("Cancellation reason is required")
        return v


class RefundIn(BaseModel):
    # None with refund_type=full -> refund everything refundable
    amount: Optional[Decimal] = None
    refund_type: RefundType = RefundType.PARTIAL
    patient_behavior: PatientBehavior = PatientBehavior.OKAY
    mode: PayMode = PayMode.CASH
    reason: str = Field(min_length=1, max_length=255)
    notes: Optional[str] = None
    expected_version: Optional[int] = None

    @field_validator("reason")
    @classmethod
    def _reason(cls, v):
        v = (v or "").strip()
        if not v:
            raise ValueError("Refund reason is required")
        return v


# ---------------- Outputs ----------------
class LineItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    seq: Optional[int] = None
    kind: str
    name: str
    description: Optional[str] = None
    amount: Decimal


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Decimal
    mode: str
    reference_no: Optional[str] = None
    appointment_time: datetime
    paid_at: Optional[datetime] = None


class RefundOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Decimal
    mode: str
    refund_type: str
    reason: str
    patient_behavior: str
    penalty_applied: bool
    refunded_at: Optional[datetime] = None


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: Optional[str] = None
    patient_id: int
    doctor_id: Optional[int] = None
    reassignment_event_id: Optional[int] = None
    is_reassignment: bool
    consultation_type: Optional[str] = None

    tax_percentage: Decimal
    discount_percentage: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    total_refunded: Decimal

    status: str
    notes: Optional[str] = None
    appointment_time: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    version: int
    created_at: Optional[datetime] = None

    items: List[LineItemOut] = []
    payments: List[PaymentOut] = []
    refunds: List[RefundOut] = []


class RefundSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    paid: Decimal
    already_refunded: Decimal
    available_base: Decimal
    penalty_remaining: Decimal
    max_refundable: Decimal
    penalty_retained: Decimal


class DisplayLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: str
    name: str
    amount: Decimal
    paid_share: Decimal
    refunded_share: Decimal
    synthesized: bool = False
    description: Optional[str] = None


class ReconciledOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: DisplayStatus
    line_items: List[DisplayLineOut]
    totals: Dict[str, Decimal]
