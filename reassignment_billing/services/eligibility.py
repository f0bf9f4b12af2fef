# reassignment_billing/services/eligibility.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from reassignment_billing.models.billing import InvoiceStatus
from reassignment_billing.services.billing_math import D
from reassignment_billing.services.billing_rules import FREE_REASSIGNMENT_WINDOW_DAYS
from reassignment_billing.utils.timezone import now_local

logger = logging.getLogger(__name__)

PAID_STATUSES = {InvoiceStatus.PAID.value, InvoiceStatus.COMPLETED.value}


def _status_value(x) -> str:
    if x is None:
        return ""
    if hasattr(x, "value"):
        return str(x.value).lower()
    return str(x).lower()


def is_paid_consultation(invoice: Any) -> bool:
    """Original (non-reassignment) bill that was actually paid."""
    if bool(getattr(invoice, "is_reassignment", False)):
        return False
    if D(getattr(invoice, "amount_paid", 0)) > 0:
        return True
    return _status_value(getattr(invoice, "status", None)) in PAID_STATUSES


def first_paid_consultation(billing_history: Sequence[Any]) -> Optional[Any]:
    candidates = [
        inv for inv in (billing_history or [])
        if is_paid_consultation(inv) and getattr(inv, "created_at", None)
    ]
    if not candidates:
        return None
    return min(candidates,
               key=lambda inv: (inv.created_at, getattr(inv, "id", 0) or 0))


def is_eligible_for_free_reassignment(
    billing_history: Sequence[Any],
    reassignment_history: Sequence[Any],
    now: datetime,
) -> bool:
    """
    One free reassignment per patient, ever, and only within
    FREE_REASSIGNMENT_WINDOW_DAYS of the first paid consultation.
    """
    if reassignment_history:
        return False

    first = first_paid_consultation(billing_history)
    if first is None:
        return False

    days_since = (now - first.created_at) // timedelta(days=1)
    return days_since <= FREE_REASSIGNMENT_WINDOW_DAYS


def evaluate_eligibility(patient: Any, now: Optional[datetime] = None) -> bool:
    now = now or now_local()
    eligible = is_eligible_for_free_reassignment(
        getattr(patient, "billing_history", None) or [],
        getattr(patient, "reassignment_history", None) or [],
        now,
    )
    logger.debug("Eligibility patient=%s eligible=%s",
                 getattr(patient, "id", None), eligible)
    return eligible


def pending_reassignment(patient: Any) -> Optional[Any]:
    """Latest reassignment event that no invoice has been raised for yet."""
    events = list(getattr(patient, "reassignment_history", None) or [])
    if not events:
        return None
    billed = {
        getattr(inv, "reassignment_event_id", None)
        for inv in (getattr(patient, "billing_history", None) or [])
        if getattr(inv, "is_reassignment", False)
    }
    latest = events[-1]
    if getattr(latest, "id", None) in billed:
        return None
    return latest


def eligibility_for_billing(patient: Any,
                            now: Optional[datetime] = None) -> bool:
    """
    Eligibility as seen by the invoice builder.

    The reassignment being billed is already in the history when staff raise
    its invoice, so it is left out; any earlier reassignment still
    disqualifies the patient.
    """
    now = now or now_local()
    events = list(getattr(patient, "reassignment_history", None) or [])
    pending = pending_reassignment(patient)
    prior = [e for e in events if e is not pending]
    return is_eligible_for_free_reassignment(
        getattr(patient, "billing_history", None) or [],
        prior,
        now,
    )
