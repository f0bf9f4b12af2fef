# reassignment_billing/services/billing_cancel.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from reassignment_billing.models.billing import Invoice, InvoiceStatus
from reassignment_billing.services.billing_errors import AlreadyTerminal
from reassignment_billing.services.billing_transactions import (
    check_version,
    is_replay,
    lock_invoice,
)
from reassignment_billing.utils.timezone import now_local

logger = logging.getLogger(__name__)

OPERATION = "cancel"

NOT_CANCELLABLE = {
    InvoiceStatus.CANCELLED.value,
    InvoiceStatus.REFUNDED.value,
}


def cancel_invoice(
    db: Session,
    *,
    invoice_id: int,
    reason: str,
    now: Optional[datetime] = None,
    expected_version: Optional[int] = None,
    idempotency_key: Optional[str] = None,
    user_id: Optional[int] = None,
) -> Invoice:
    """
    Mark the bill non-collectable. Money already recorded (paid/due, lines)
    is left untouched so a refund can still be raised afterwards.
    """
    now = now or now_local()

    inv = lock_invoice(db, invoice_id)
    if is_replay(db, inv, OPERATION, idempotency_key):
        return inv
    check_version(inv, expected_version)

    if str(inv.status) in NOT_CANCELLABLE:
        logger.warning("Cancel rejected invoice=%s status=%s", inv.id,
                       inv.status)
        raise AlreadyTerminal(
            f"Invoice is already {inv.status}",
            details={
                "invoice_id": inv.id,
                "status": inv.status
            },
        )

    inv.status = InvoiceStatus.CANCELLED.value
    inv.cancelled_at = now
    inv.cancel_reason = str(reason or "")[:255]
    inv.updated_by = user_id
    db.flush()

    logger.info("Invoice %s cancelled reason=%r", inv.id, inv.cancel_reason)
    return inv
