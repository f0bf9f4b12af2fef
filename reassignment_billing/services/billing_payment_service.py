# reassignment_billing/services/billing_payment_service.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from reassignment_billing.models.billing import (
    Invoice,
    InvoicePayment,
    InvoiceStatus,
    PayMode,
)
from reassignment_billing.services.billing_errors import (
    AmountMismatch,
    InvalidSchedule,
    InvoiceNotPayable,
)
from reassignment_billing.services.billing_math import is_whole_paise, money2
from reassignment_billing.services.billing_transactions import (
    check_version,
    is_replay,
    lock_invoice,
)
from reassignment_billing.utils.timezone import now_local, to_local_naive

logger = logging.getLogger(__name__)

OPERATION = "payment"


def mode_value(method: Any) -> str:
    if hasattr(method, "value"):
        return str(method.value)
    return str(method or PayMode.CASH.value).strip().lower()


def apply_payment(
    db: Session,
    *,
    invoice_id: int,
    amount: Any,
    method: Any,
    appointment_time: Optional[datetime],
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    expected_version: Optional[int] = None,
    idempotency_key: Optional[str] = None,
    user_id: Optional[int] = None,
) -> Invoice:
    """
    Full settlement of a reassignment invoice, together with the next
    consultation slot. Either both are committed or neither is.
    """
    now = now or now_local()

    inv = lock_invoice(db, invoice_id)
    if is_replay(db, inv, OPERATION, idempotency_key):
        return inv
    check_version(inv, expected_version)

    if str(inv.status) != InvoiceStatus.INVOICED.value:
        logger.warning("Payment rejected invoice=%s status=%s", inv.id,
                       inv.status)
        raise InvoiceNotPayable(
            f"Invoice is {inv.status}; only invoiced bills can be paid",
            details={
                "invoice_id": inv.id,
                "status": inv.status
            },
        )

    due = money2(inv.balance_due)
    amt = money2(amount)
    if not is_whole_paise(amount) or amt != due:
        logger.warning("Payment rejected invoice=%s amount=%s due=%s", inv.id,
                       amount, due)
        raise AmountMismatch(
            "Only full payment is allowed for reassigned patients",
            details={
                "invoice_id": inv.id,
                "amount": str(amount),
                "due": str(due)
            },
        )

    appt = to_local_naive(appointment_time)
    if appt is None:
        raise InvalidSchedule(
            "Please schedule an appointment date and time",
            details={"invoice_id": inv.id},
        )
    if appt <= now:
        raise InvalidSchedule(
            "Appointment must be scheduled for a future date and time",
            details={
                "invoice_id": inv.id,
                "appointment_time": appt.isoformat(),
                "now": now.isoformat(),
            },
        )

    inv.payments.append(
        InvoicePayment(
            amount=amt,
            mode=mode_value(method),
            reference_no=(str(reference)[:100] if reference else None),
            notes=(str(notes)[:255] if notes else None),
            appointment_time=appt,
            paid_at=now,
            created_by=user_id,
        ))

    inv.amount_paid = money2(inv.total)
    inv.appointment_time = appt
    inv.status = InvoiceStatus.PAID.value
    inv.updated_by = user_id
    inv.recalc()
    db.flush()

    logger.info("Invoice %s paid amount=%s appointment=%s", inv.id, amt,
                appt.isoformat())
    return inv
