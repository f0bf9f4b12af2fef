# reassignment_billing/services/billing_refunds.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from reassignment_billing.models.billing import (
    Invoice,
    InvoiceRefund,
    InvoiceStatus,
    PatientBehavior,
    PayMode,
    RefundType,
)
from reassignment_billing.services.billing_errors import (
    BillingValidationError,
    RefundExceedsAvailable,
)
from reassignment_billing.services.billing_math import ZERO, money2
from reassignment_billing.services.billing_payment_service import mode_value
from reassignment_billing.services.billing_rules import REGISTRATION_FEE_PENALTY
from reassignment_billing.services.billing_transactions import (
    check_version,
    is_replay,
    lock_invoice,
)
from reassignment_billing.utils.timezone import now_local

logger = logging.getLogger(__name__)

OPERATION = "refund"


@dataclass(frozen=True)
class RefundSummary:
    paid: Decimal
    already_refunded: Decimal
    available_base: Decimal
    penalty_remaining: Decimal
    max_refundable: Decimal
    # penalty already held back by earlier refunds on this invoice
    penalty_retained: Decimal


def parse_behavior(value: Any) -> PatientBehavior:
    if isinstance(value, PatientBehavior):
        return value
    try:
        return PatientBehavior(str(value or "").strip().lower())
    except ValueError:
        raise BillingValidationError(
            "patient_behavior must be 'okay' or 'rude'",
            details={"patient_behavior": value},
        )


def parse_refund_type(value: Any) -> RefundType:
    if isinstance(value, RefundType):
        return value
    try:
        return RefundType(str(value or "").strip().lower())
    except ValueError:
        raise BillingValidationError(
            "refund_type must be 'full' or 'partial'",
            details={"refund_type": value},
        )


def refund_summary(inv: Invoice, behavior: Any) -> RefundSummary:
    """
    okay -> registration-fee penalty (150) withheld once per invoice
    rude -> everything still held is refundable
    """
    behavior = parse_behavior(behavior)

    paid = money2(inv.amount_paid)
    already = inv.total_refunded
    available = money2(max(paid - already, ZERO))
    applied_before = inv.penalty_applied

    penalty_remaining = ZERO
    if behavior == PatientBehavior.OKAY and not applied_before:
        penalty_remaining = REGISTRATION_FEE_PENALTY

    max_refundable = money2(max(available - penalty_remaining, ZERO))
    return RefundSummary(
        paid=paid,
        already_refunded=already,
        available_base=available,
        penalty_remaining=money2(penalty_remaining),
        max_refundable=max_refundable,
        penalty_retained=(REGISTRATION_FEE_PENALTY
                          if applied_before else money2(ZERO)),
    )


def process_refund(
    db: Session,
    *,
    invoice_id: int,
    amount: Any = None,
    refund_type: Any = RefundType.PARTIAL,
    patient_behavior: Any = PatientBehavior.OKAY,
    method: Any = PayMode.CASH,
    reason: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    expected_version: Optional[int] = None,
    idempotency_key: Optional[str] = None,
    user_id: Optional[int] = None,
) -> Invoice:
    """
    Record a refund event. paid/due never change; refunds are a separate
    ledger so the original payment trail stays as it was.
    """
    now = now or now_local()
    behavior = parse_behavior(patient_behavior)
    rtype = parse_refund_type(refund_type)

    inv = lock_invoice(db, invoice_id)
    if is_replay(db, inv, OPERATION, idempotency_key):
        return inv
    check_version(inv, expected_version)

    summary = refund_summary(inv, behavior)

    # "refund all" convenience: full with no amount means the maximum
    if amount is None or str(amount).strip() == "":
        if rtype != RefundType.FULL:
            raise RefundExceedsAvailable(
                "Please enter a valid refund amount",
                details={"max_refundable": str(summary.max_refundable)},
            )
        requested = summary.max_refundable
    else:
        requested = money2(amount)

    if requested <= 0 or requested > summary.max_refundable:
        logger.warning(
            "Refund rejected invoice=%s requested=%s max=%s behavior=%s",
            inv.id, requested, summary.max_refundable, behavior.value)
        raise RefundExceedsAvailable(
            f"Refund amount must be between 0 and {summary.max_refundable}",
            details={
                "invoice_id": inv.id,
                "requested": str(requested),
                "max_refundable": str(summary.max_refundable),
                "penalty_remaining": str(summary.penalty_remaining),
            },
        )
    if rtype == RefundType.FULL and requested != summary.max_refundable:
        raise RefundExceedsAvailable(
            "A full refund must equal the maximum refundable amount",
            details={
                "invoice_id": inv.id,
                "requested": str(requested),
                "max_refundable": str(summary.max_refundable),
            },
        )

    applies_penalty = summary.penalty_remaining > 0
    inv.refunds.append(
        InvoiceRefund(
            amount=requested,
            mode=mode_value(method),
            refund_type=rtype.value,
            reason=str(reason or "")[:255],
            notes=notes,
            patient_behavior=behavior.value,
            penalty_applied=applies_penalty,
            refunded_at=now,
            created_by=user_id,
        ))

    total_refunded = money2(summary.already_refunded + requested)
    withheld = REGISTRATION_FEE_PENALTY if (
        applies_penalty or inv.penalty_applied) else ZERO
    remaining = money2(inv.amount_paid) - total_refunded

    if remaining <= withheld:
        inv.status = InvoiceStatus.REFUNDED.value
    else:
        inv.status = InvoiceStatus.PARTIALLY_REFUNDED.value
    inv.refunded_at = now
    inv.updated_by = user_id
    db.flush()

    logger.info(
        "Invoice %s refund=%s total_refunded=%s behavior=%s penalty=%s status=%s",
        inv.id, requested, total_refunded, behavior.value, applies_penalty,
        inv.status)
    return inv
