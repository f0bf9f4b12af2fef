# reassignment_billing/services/billing_invoice_create.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from reassignment_billing.models.billing import (
    ConsultationType,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    LineKind,
)
from reassignment_billing.models.patient import Patient
from reassignment_billing.services.billing_errors import (
    InvalidPercentage,
    NegativeAmount,
    PatientNotFound,
    ReassignmentBlocked,
)
from reassignment_billing.services.billing_math import D, ZERO, money2, percent_of
from reassignment_billing.services.billing_numbers import next_invoice_number
from reassignment_billing.services.billing_rules import (
    CONSULTATION_FEES,
    STANDARD_SERVICE_CHARGE,
    STANDARD_SERVICE_CHARGE_NAME,
    consultation_label,
    parse_consultation_type,
)
from reassignment_billing.services.eligibility import (
    eligibility_for_billing,
    pending_reassignment,
)
from reassignment_billing.utils.timezone import now_local

logger = logging.getLogger(__name__)


@dataclass
class DraftLine:
    kind: LineKind
    name: str
    amount: Decimal
    description: Optional[str] = None


@dataclass
class InvoiceDraft:
    consultation_type: ConsultationType
    eligible: bool
    lines: List[DraftLine] = field(default_factory=list)
    tax_percentage: Decimal = ZERO
    discount_percentage: Decimal = ZERO
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total: Decimal = ZERO


def _get(obj: Any, key: str, default=None):
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def default_consultation_type(eligible: bool) -> ConsultationType:
    return ConsultationType.FOLLOWUP if eligible else ConsultationType.OP


def default_service_charges(consultation_type: ConsultationType,
                            eligible: bool) -> List[DraftLine]:
    if consultation_type == ConsultationType.FOLLOWUP or eligible:
        return []
    return [
        DraftLine(
            kind=LineKind.SERVICE_CHARGE,
            name=STANDARD_SERVICE_CHARGE_NAME,
            amount=STANDARD_SERVICE_CHARGE,
            description=STANDARD_SERVICE_CHARGE_NAME,
        )
    ]


def _operator_service_charges(charges: Sequence[Any]) -> List[DraftLine]:
    """
    Operator-edited service rows. Blank rows (no name, or zero amount) are
    dropped the same way the billing form drops them; negatives are rejected.
    """
    out: List[DraftLine] = []
    for ch in charges:
        name = str(_get(ch, "name", "") or "").strip()
        raw_amount = _get(ch, "amount", 0)
        amount = D(raw_amount)
        if amount < 0:
            raise NegativeAmount("Service charge amount cannot be negative",
                                 details={
                                     "name": name,
                                     "amount": str(raw_amount)
                                 })
        if not name or amount == 0:
            continue
        out.append(
            DraftLine(
                kind=LineKind.SERVICE_CHARGE,
                name=name,
                amount=money2(amount),
                description=_get(ch, "description", None),
            ))
    return out


def compute_invoice_draft(
    *,
    consultation_type: Any,
    eligible: bool,
    tax_percentage: Any = 0,
    discount_percentage: Any = 0,
    service_charges: Optional[Sequence[Any]] = None,
    consultation_fee: Any = None,
) -> InvoiceDraft:
    """
    Pure part of invoice creation: lines + totals, no persistence.

    service_charges=None  -> default charges for (type, eligibility)
    service_charges=[...] -> operator override (may be empty)
    consultation_fee=None -> tariff fee for the consultation type
    """
    if consultation_type is None:
        ct = default_consultation_type(eligible)
    else:
        ct = parse_consultation_type(consultation_type)

    tax_pct = D(tax_percentage)
    disc_pct = D(discount_percentage)
    if tax_pct < 0 or disc_pct < 0:
        raise NegativeAmount("Tax/discount percentage cannot be negative",
                             details={
                                 "tax_percentage": str(tax_percentage),
                                 "discount_percentage": str(discount_percentage),
                             })
    if disc_pct > 100:
        raise InvalidPercentage("Discount percentage cannot exceed 100",
                                details={"discount_percentage": str(disc_pct)})

    if consultation_fee is None:
        fee = CONSULTATION_FEES[ct]
    else:
        fee = D(consultation_fee)
        if fee < 0:
            raise NegativeAmount("Consultation fee cannot be negative",
                                 details={"consultation_fee": str(consultation_fee)})
    fee = money2(fee)

    if service_charges is None:
        charges = default_service_charges(ct, eligible)
    else:
        charges = _operator_service_charges(service_charges)

    lines = [
        DraftLine(kind=LineKind.CONSULTATION_FEE,
                  name=consultation_label(ct),
                  amount=fee)
    ] + charges

    subtotal = money2(sum((ln.amount for ln in lines), ZERO))
    tax_amount = percent_of(subtotal, tax_pct)
    discount_amount = percent_of(subtotal, disc_pct)
    total = money2(max(subtotal + tax_amount - discount_amount, ZERO))

    return InvoiceDraft(
        consultation_type=ct,
        eligible=eligible,
        lines=lines,
        tax_percentage=money2(tax_pct),
        discount_percentage=money2(disc_pct),
        subtotal=subtotal,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        total=total,
    )


def build_invoice(
    db: Session,
    *,
    patient_id: int,
    consultation_type: Any = None,
    tax_percentage: Any = 0,
    discount_percentage: Any = 0,
    service_charges: Optional[Sequence[Any]] = None,
    consultation_fee: Any = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    user_id: Optional[int] = None,
) -> Invoice:
    """
    Raise the invoice for a reassigned patient.
    Eligibility is evaluated here; the caller never passes it in.
    """
    now = now or now_local()

    patient = db.get(Patient, int(patient_id))
    if not patient:
        raise PatientNotFound("Patient not found",
                              details={"patient_id": patient_id})
    if not patient.reassignment_history:
        logger.warning("Invoice rejected patient=%s: not reassigned", patient.id)
        raise ReassignmentBlocked(
            "Patient has not been reassigned; nothing to bill",
            details={"patient_id": patient.id},
        )

    eligible = eligibility_for_billing(patient, now)
    draft = compute_invoice_draft(
        consultation_type=consultation_type,
        eligible=eligible,
        tax_percentage=tax_percentage,
        discount_percentage=discount_percentage,
        service_charges=service_charges,
        consultation_fee=consultation_fee,
    )

    event = pending_reassignment(patient)

    if notes is None:
        notes = (f"Free reassignment for {patient.name} (within 7 days)"
                 if eligible else
                 f"Invoice for reassigned patient: {patient.name}")

    inv = Invoice(
        invoice_number=next_invoice_number(db),
        patient=patient,
        doctor_id=patient.current_doctor_id,
        reassignment_event_id=getattr(event, "id", None),
        is_reassignment=True,
        consultation_type=draft.consultation_type.value,
        tax_percentage=draft.tax_percentage,
        discount_percentage=draft.discount_percentage,
        amount_paid=ZERO,
        status=InvoiceStatus.INVOICED.value,
        notes=notes,
        created_by=user_id,
        updated_by=user_id,
        created_at=now,
    )
    for seq, ln in enumerate(draft.lines, start=1):
        inv.items.append(
            InvoiceLineItem(
                seq=seq,
                kind=ln.kind.value,
                name=ln.name,
                description=ln.description,
                amount=ln.amount,
            ))

    inv.recalc()
    db.add(inv)
    db.flush()

    logger.info(
        "Reassignment invoice %s created patient=%s type=%s eligible=%s total=%s",
        inv.invoice_number, patient.id, inv.consultation_type, eligible,
        inv.total)
    return inv


def invoice_totals(inv: Invoice) -> Dict[str, Decimal]:
    return {
        "subtotal": money2(inv.subtotal),
        "tax_amount": money2(inv.tax_amount),
        "discount_amount": money2(inv.discount_amount),
        "total": money2(inv.total),
        "paid": money2(inv.amount_paid),
        "due": money2(inv.balance_due),
    }
