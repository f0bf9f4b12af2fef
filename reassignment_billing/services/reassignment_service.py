# reassignment_billing/services/reassignment_service.py
from __future__ import annotations

import enum
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from reassignment_billing.models.billing import Invoice, TERMINAL_STATUSES
from reassignment_billing.models.patient import Patient, ReassignmentEvent
from reassignment_billing.services.billing_errors import (
    BillingValidationError,
    PatientNotFound,
    ReassignmentBlocked,
)
from reassignment_billing.services.billing_math import money2
from reassignment_billing.services.billing_reconcile import (
    DisplayStatus,
    reconcile_for_display,
)
from reassignment_billing.services.eligibility import eligibility_for_billing
from reassignment_billing.utils.timezone import now_local

logger = logging.getLogger(__name__)


class ReassignmentStatus(str, enum.Enum):
    NOT_REASSIGNED = "NotReassigned"
    FREE_REASSIGNMENT_AVAILABLE = "FreeReassignmentAvailable"
    NO_INVOICE = "NoInvoice"
    FREE_CONSULTATION = "FreeConsultation"


# badges that win over the "free consultation" label
_REFUND_OR_CANCEL = {
    DisplayStatus.CANCELLED,
    DisplayStatus.REFUNDED,
    DisplayStatus.PARTIALLY_REFUNDED,
}


def get_patient(db: Session, patient_id: int, *, lock: bool = False) -> Patient:
    q = db.query(Patient).filter(Patient.id == int(patient_id))
    if lock:
        q = q.with_for_update()
    patient = q.first()
    if not patient:
        raise PatientNotFound("Patient not found",
                              details={"patient_id": patient_id})
    return patient


def latest_reassignment(patient: Patient) -> Optional[ReassignmentEvent]:
    events = patient.reassignment_history
    return events[-1] if events else None


def reassign_patient(
    db: Session,
    *,
    patient_id: int,
    new_doctor_id: int,
    reason: str,
    notes: Optional[str] = None,
    working_hours_violation: bool = False,
    now: Optional[datetime] = None,
    user_id: Optional[int] = None,
) -> ReassignmentEvent:
    """
    Move the patient to another doctor.

    The previous reassignment must have been seen by its doctor first,
    unless the patient was left unseen outside working hours.
    """
    now = now or now_local()
    reason = str(reason or "").strip()
    if not reason:
        raise BillingValidationError("Reassignment reason is required")

    patient = get_patient(db, patient_id, lock=True)
    new_doctor_id = int(new_doctor_id)

    if patient.current_doctor_id == new_doctor_id:
        raise ReassignmentBlocked(
            "Patient is already assigned to this doctor",
            details={
                "patient_id": patient.id,
                "doctor_id": new_doctor_id
            },
        )

    latest = latest_reassignment(patient)
    if latest is not None and not latest.consultation_viewed \
            and not working_hours_violation:
        logger.warning("Reassignment blocked patient=%s event=%s not viewed",
                       patient.id, latest.id)
        raise ReassignmentBlocked(
            "Mark the current consultation as viewed before reassigning",
            details={
                "patient_id": patient.id,
                "reassignment_id": latest.id
            },
        )

    event = ReassignmentEvent(
        from_doctor_id=patient.current_doctor_id,
        to_doctor_id=new_doctor_id,
        reason=reason[:255],
        notes=notes,
        consultation_viewed=False,
        created_by=user_id,
        timestamp=now,
    )
    patient.reassignments.append(event)
    patient.current_doctor_id = new_doctor_id
    db.flush()

    logger.info("Patient %s reassigned doctor %s -> %s (event=%s)", patient.id,
                event.from_doctor_id, new_doctor_id, event.id)
    return event


def mark_consultation_viewed(
    db: Session,
    *,
    patient_id: int,
    now: Optional[datetime] = None,
) -> ReassignmentEvent:
    now = now or now_local()
    patient = get_patient(db, patient_id, lock=True)

    latest = latest_reassignment(patient)
    if latest is None:
        raise ReassignmentBlocked("Patient has no reassignment to mark",
                                  details={"patient_id": patient.id})

    if not latest.consultation_viewed:
        latest.consultation_viewed = True
        latest.viewed_at = now
        db.flush()
        logger.info("Reassignment %s consultation viewed (patient=%s)",
                    latest.id, patient.id)
    return latest


def current_invoice(db: Session, patient_id: int) -> Optional[Invoice]:
    """
    Most recent non-terminal reassignment invoice, else the most recent one.
    """
    q = db.query(Invoice).filter(
        Invoice.patient_id == int(patient_id),
        Invoice.is_reassignment.is_(True),
    )
    newest_first = (Invoice.created_at.desc(), Invoice.id.desc())

    inv = q.filter(Invoice.status.notin_(TERMINAL_STATUSES)).order_by(
        *newest_first).first()
    if inv is None:
        inv = q.order_by(*newest_first).first()
    return inv


def reassignment_status(db: Session,
                        patient: Patient,
                        now: Optional[datetime] = None) -> str:
    now = now or now_local()
    if not patient.reassignment_history:
        return ReassignmentStatus.NOT_REASSIGNED.value

    inv = current_invoice(db, patient.id)
    if inv is None:
        if eligibility_for_billing(patient, now):
            return ReassignmentStatus.FREE_REASSIGNMENT_AVAILABLE.value
        return ReassignmentStatus.NO_INVOICE.value

    view = reconcile_for_display(inv)
    if view.status in _REFUND_OR_CANCEL:
        return view.status.value
    if money2(view.totals["total"]) == 0:
        return ReassignmentStatus.FREE_CONSULTATION.value
    return view.status.value


def describe_patient(db: Session, patient: Patient,
                     now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or now_local()
    latest = latest_reassignment(patient)
    return {
        "patient_id": patient.id,
        "assigned_doctor_id": patient.assigned_doctor_id,
        "current_doctor_id": patient.current_doctor_id,
        "reassignment_count": len(patient.reassignment_history),
        "consultation_viewed": (bool(latest.consultation_viewed)
                                if latest is not None else None),
        "status": reassignment_status(db, patient, now),
    }
