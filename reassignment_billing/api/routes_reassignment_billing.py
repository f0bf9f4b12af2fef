# FILE: reassignment_billing/api/routes_reassignment_billing.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from reassignment_billing.api.deps import acting_user, get_db, idempotency_key
from reassignment_billing.api.response import err, ok
from reassignment_billing.models.billing import Invoice, PatientBehavior
from reassignment_billing.schemas.billing import (
    CancelIn,
    InvoiceCreateIn,
    InvoiceOut,
    PaymentIn,
    ReconciledOut,
    RefundIn,
    RefundSummaryOut,
)
from reassignment_billing.schemas.patient import (
    EligibilityOut,
    PatientStatusOut,
    ReassignIn,
    ReassignmentEventOut,
)
from reassignment_billing.services.billing_cancel import cancel_invoice
from reassignment_billing.services.billing_errors import InvoiceNotFound
from reassignment_billing.services.billing_invoice_create import build_invoice
from reassignment_billing.services.billing_payment_service import apply_payment
from reassignment_billing.services.billing_reconcile import reconcile_for_display
from reassignment_billing.services.billing_refunds import (
    process_refund,
    refund_summary,
)
from reassignment_billing.services.billing_transactions import run_mutation
from reassignment_billing.services.eligibility import (
    eligibility_for_billing,
    evaluate_eligibility,
)
from reassignment_billing.services.reassignment_service import (
    current_invoice,
    describe_patient,
    get_patient,
    mark_consultation_viewed,
    reassign_patient,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/reassignment-billing",
                   tags=["Reassignment Billing"])


def _get_invoice(db: Session, invoice_id: int) -> Invoice:
    inv = db.get(Invoice, int(invoice_id))
    if not inv:
        raise InvoiceNotFound("Invoice not found",
                              details={"invoice_id": invoice_id})
    return inv


def _invoice_out(inv: Invoice) -> Dict[str, Any]:
    return InvoiceOut.model_validate(inv).model_dump()


# ---------------------------------------------------------------------
# Patients
# ---------------------------------------------------------------------
@router.get("/patients/{patient_id}/eligibility")
def patient_eligibility(patient_id: int, db: Session = Depends(get_db)):
    patient = get_patient(db, patient_id)
    out = EligibilityOut(
        patient_id=patient.id,
        eligible=evaluate_eligibility(patient),
        eligible_for_billing=eligibility_for_billing(patient),
        reassignment_count=len(patient.reassignment_history),
    )
    return ok(out.model_dump())


@router.get("/patients/{patient_id}/status")
def patient_status(patient_id: int, db: Session = Depends(get_db)):
    patient = get_patient(db, patient_id)
    out = PatientStatusOut(**describe_patient(db, patient))
    return ok(out.model_dump())


@router.post("/patients/{patient_id}/reassign")
def reassign(
        patient_id: int,
        payload: ReassignIn,
        db: Session = Depends(get_db),
        user_id: Optional[int] = Depends(acting_user),
):
    event = run_mutation(
        db,
        reassign_patient,
        patient_id=patient_id,
        new_doctor_id=payload.new_doctor_id,
        reason=payload.reason,
        notes=payload.notes,
        working_hours_violation=payload.working_hours_violation,
        user_id=user_id,
    )
    return ok(ReassignmentEventOut.model_validate(event).model_dump(),
              status_code=201)


@router.put("/patients/{patient_id}/mark-consultation-viewed")
def consultation_viewed(patient_id: int, db: Session = Depends(get_db)):
    event = run_mutation(db, mark_consultation_viewed, patient_id=patient_id)
    return ok(ReassignmentEventOut.model_validate(event).model_dump())


@router.get("/patients/{patient_id}/current-invoice")
def patient_current_invoice(patient_id: int, db: Session = Depends(get_db)):
    patient = get_patient(db, patient_id)
    inv = current_invoice(db, patient.id)
    if inv is None:
        return err("No reassignment invoice for this patient",
                   status_code=404,
                   code="InvoiceNotFound",
                   details={"patient_id": patient.id})
    return ok(_invoice_out(inv))


# ---------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------
@router.post("/create-invoice")
def create_invoice(
        payload: InvoiceCreateIn,
        db: Session = Depends(get_db),
        user_id: Optional[int] = Depends(acting_user),
):
    charges = None
    if payload.service_charges is not None:
        charges = [c.model_dump() for c in payload.service_charges]

    inv = run_mutation(
        db,
        build_invoice,
        patient_id=payload.patient_id,
        consultation_type=payload.consultation_type,
        consultation_fee=payload.consultation_fee,
        tax_percentage=payload.tax_percentage,
        discount_percentage=payload.discount_percentage,
        service_charges=charges,
        notes=payload.notes,
        user_id=user_id,
    )
    return ok(_invoice_out(inv), status_code=201)


@router.get("/invoices/{invoice_id}")
def get_invoice(invoice_id: int, db: Session = Depends(get_db)):
    return ok(_invoice_out(_get_invoice(db, invoice_id)))


@router.get("/invoices/{invoice_id}/display")
def invoice_display(invoice_id: int, db: Session = Depends(get_db)):
    view = reconcile_for_display(_get_invoice(db, invoice_id))
    return ok(ReconciledOut.model_validate(view).model_dump())


@router.post("/reconcile")
def reconcile_record(record: Dict[str, Any] = Body(...)):
    # bills imported from the previous system, in their stored shape
    view = reconcile_for_display(record)
    return ok(ReconciledOut.model_validate(view).model_dump())


@router.post("/invoices/{invoice_id}/payments")
def pay_invoice(
        invoice_id: int,
        payload: PaymentIn,
        db: Session = Depends(get_db),
        nonce: Optional[str] = Depends(idempotency_key),
        user_id: Optional[int] = Depends(acting_user),
):
    inv = run_mutation(
        db,
        apply_payment,
        invoice_id=invoice_id,
        amount=payload.amount,
        method=payload.mode,
        appointment_time=payload.appointment_time,
        reference=payload.reference_no,
        notes=payload.notes,
        expected_version=payload.expected_version,
        idempotency_key=nonce,
        user_id=user_id,
    )
    return ok(_invoice_out(inv))


@router.post("/invoices/{invoice_id}/cancel")
def cancel(
        invoice_id: int,
        payload: CancelIn,
        db: Session = Depends(get_db),
        nonce: Optional[str] = Depends(idempotency_key),
        user_id: Optional[int] = Depends(acting_user),
):
    inv = run_mutation(
        db,
        cancel_invoice,
        invoice_id=invoice_id,
        reason=payload.reason,
        expected_version=payload.expected_version,
        idempotency_key=nonce,
        user_id=user_id,
    )
    return ok(_invoice_out(inv))


@router.get("/invoices/{invoice_id}/refund-summary")
def get_refund_summary(
        invoice_id: int,
        behavior: PatientBehavior = Query(default=PatientBehavior.OKAY),
        db: Session = Depends(get_db),
):
    summary = refund_summary(_get_invoice(db, invoice_id), behavior)
    return ok(RefundSummaryOut.model_validate(summary).model_dump())


@router.post("/invoices/{invoice_id}/refunds")
def refund(
        invoice_id: int,
        payload: RefundIn,
        db: Session = Depends(get_db),
        nonce: Optional[str] = Depends(idempotency_key),
        user_id: Optional[int] = Depends(acting_user),
):
    inv = run_mutation(
        db,
        process_refund,
        invoice_id=invoice_id,
        amount=payload.amount,
        refund_type=payload.refund_type,
        patient_behavior=payload.patient_behavior,
        method=payload.mode,
        reason=payload.reason,
        notes=payload.notes,
        expected_version=payload.expected_version,
        idempotency_key=nonce,
        user_id=user_id,
    )
    return ok(_invoice_out(inv))
