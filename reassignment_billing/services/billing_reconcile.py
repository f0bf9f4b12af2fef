# reassignment_billing/services/billing_reconcile.py
"""
Read-side repair of invoice line items and the display badge.

Stored rows (and older JSON-shaped bills imported from the previous system)
do not always agree with their own totals: a consultation fee may have
absorbed the standard service charge, or lines may be missing entirely.
Nothing here writes back; every function is pure over a snapshot.

    1. missing fee (0) -> whatever the stored charges do not explain
    2. fee above canonical and no standard charge -> fee becomes canonical;
       the part of the total the stored charges do not explain becomes a
       Standard Service Charge of at most 150
    3. whatever is still unexplained -> "Additional Services"
       (negative remainder -> "Adjustment"), so lines always sum to total
    4. paid / refunded spread over billable lines by share of subtotal
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from reassignment_billing.models.billing import InvoiceStatus, LineKind
from reassignment_billing.services.billing_errors import UnknownConsultationType
from reassignment_billing.services.billing_math import (
    D,
    ZERO,
    allocate_proportionally,
    money2,
    money_sum,
)
from reassignment_billing.services.billing_rules import (
    ADDITIONAL_SERVICES_NAME,
    DISPLAY_CANONICAL_FEES,
    REGISTRATION_FEE_PENALTY,
    STANDARD_SERVICE_CHARGE,
    STANDARD_SERVICE_CHARGE_NAME,
    consultation_label,
    is_standard_service_charge,
    parse_consultation_type,
)

BILLABLE_KINDS = {
    LineKind.CONSULTATION_FEE.value,
    LineKind.SERVICE_CHARGE.value,
}


class DisplayStatus(str, enum.Enum):
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"
    PARTIALLY_REFUNDED = "PartiallyRefunded"
    PENDING_PAYMENT = "PendingPayment"
    PARTIAL_PAYMENT = "PartialPayment"
    FULLY_PAID = "FullyPaid"


@dataclass
class InvoiceSnapshot:
    consultation_type: Optional[str]
    consultation_fee: Decimal
    service_charges: List[Tuple[str, Decimal]] = field(default_factory=list)
    tax_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    total: Decimal = ZERO
    paid: Decimal = ZERO
    refunds: List[Decimal] = field(default_factory=list)
    penalty_applied: bool = False
    status: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return (self.status or "").strip().lower() == InvoiceStatus.CANCELLED.value

    @property
    def total_refunded(self) -> Decimal:
        return money_sum(self.refunds)


@dataclass
class DisplayLine:
    kind: str
    name: str
    amount: Decimal
    paid_share: Decimal = ZERO
    refunded_share: Decimal = ZERO
    # True when the row does not exist in storage
    synthesized: bool = False
    description: Optional[str] = None


@dataclass(frozen=True)
class BadgeState:
    cancelled: bool
    refunded: Decimal
    paid: Decimal
    total: Decimal
    penalty_withheld: Decimal = ZERO
    stored_status: Optional[str] = None


@dataclass
class ReconciledView:
    status: DisplayStatus
    line_items: List[DisplayLine]
    totals: Dict[str, Decimal]


# ---------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------
def snapshot_from_invoice(inv: Any) -> InvoiceSnapshot:
    items = list(getattr(inv, "items", None) or [])
    fee = money_sum(it.amount for it in items
                    if str(it.kind) == LineKind.CONSULTATION_FEE.value)
    charges = [(str(it.name or ""), money2(it.amount)) for it in items
               if str(it.kind) == LineKind.SERVICE_CHARGE.value]
    return InvoiceSnapshot(
        consultation_type=inv.consultation_type,
        consultation_fee=fee,
        service_charges=charges,
        tax_amount=money2(inv.tax_amount),
        discount_amount=money2(inv.discount_amount),
        total=money2(inv.total),
        paid=money2(inv.amount_paid),
        refunds=[money2(r.amount) for r in (inv.refunds or [])],
        penalty_applied=bool(inv.penalty_applied),
        status=str(inv.status or ""),
    )


def _pick(*sources_and_keys: Tuple[Mapping, str]) -> Any:
    for src, key in sources_and_keys:
        if not isinstance(src, Mapping):
            continue
        val = src.get(key)
        if val is not None and val != "":
            return val
    return None


def snapshot_from_record(rec: Mapping[str, Any]) -> InvoiceSnapshot:
    """
    Snapshot of an imported bill in the old document shape, e.g.

        {"consultationType": "OP", "consultationFee": 1000,
         "serviceCharges": [], "customData": {"totals": {"total": 1000,
         "paid": 1000}}, "refunds": [{"amount": 500,
         "patientBehavior": "rude"}], "status": "partially_refunded"}

    Values may live at the top level or under customData; snake_case keys
    are accepted too.
    """
    custom = rec.get("customData")
    if not isinstance(custom, Mapping):
        custom = {}
    totals = custom.get("totals") or rec.get("totals")
    if not isinstance(totals, Mapping):
        totals = {}

    ct = _pick((rec, "consultationType"), (rec, "consultation_type"),
               (custom, "consultationType")) or "OP"
    fee = _pick((custom, "consultationFee"), (rec, "consultationFee"),
                (rec, "consultation_fee"))

    raw_charges = (custom.get("serviceCharges") or rec.get("serviceCharges")
                   or rec.get("service_charges") or [])
    charges: List[Tuple[str, Decimal]] = []
    for ch in raw_charges:
        if isinstance(ch, Mapping):
            charges.append((str(ch.get("name") or ""), money2(ch.get("amount"))))

    tax = _pick((totals, "taxAmount"), (totals, "tax_amount"),
                (rec, "tax_amount"))
    discount = _pick((totals, "discountAmount"), (totals, "discount_amount"),
                     (rec, "discount_amount"))
    total = _pick((totals, "total"), (rec, "amount"), (rec, "total"))
    if total is None:
        total = D(fee) + money_sum(a for _, a in charges) + D(tax) - D(discount)

    paid = _pick((totals, "paid"), (rec, "paidAmount"), (rec, "amount_paid"))

    refunds = []
    penalty = False
    for r in rec.get("refunds") or []:
        if not isinstance(r, Mapping):
            continue
        refunds.append(money2(r.get("amount")))
        behavior = str(r.get("patientBehavior") or r.get("patient_behavior")
                       or "").strip().lower()
        if r.get("penaltyApplied") or r.get("penalty_applied") or behavior == "okay":
            penalty = True

    return InvoiceSnapshot(
        consultation_type=str(ct),
        consultation_fee=money2(fee),
        service_charges=charges,
        tax_amount=money2(tax),
        discount_amount=money2(discount),
        total=money2(total),
        paid=money2(paid),
        refunds=refunds,
        penalty_applied=penalty,
        status=str(rec.get("status") or ""),
    )


# ---------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------
def _canonical_fee(consultation_type: Any) -> Optional[Decimal]:
    try:
        return DISPLAY_CANONICAL_FEES.get(parse_consultation_type(consultation_type))
    except UnknownConsultationType:
        return None


def reconcile_line_items(snap: InvoiceSnapshot) -> List[DisplayLine]:
    fee = money2(max(D(snap.consultation_fee), ZERO))
    charges = [
        DisplayLine(kind=LineKind.SERVICE_CHARGE.value,
                    name=name.strip(),
                    amount=money2(amount))
        for name, amount in snap.service_charges
        if name and name.strip() and D(amount) > 0
    ]

    tax = money2(snap.tax_amount)
    discount = money2(snap.discount_amount)
    total = money2(snap.total)
    billable_target = total - tax + discount

    existing = money_sum(c.amount for c in charges)
    if fee == 0 and billable_target > existing:
        # fee lost by an older schema revision
        fee = money2(billable_target - existing)

    canonical = _canonical_fee(snap.consultation_type)
    has_standard = any(is_standard_service_charge(c.name) for c in charges)
    if canonical is not None and fee > canonical and not has_standard:
        fee = canonical
        missing = money2(billable_target - canonical - existing)
        if missing > 0:
            charges.append(
                DisplayLine(kind=LineKind.SERVICE_CHARGE.value,
                            name=STANDARD_SERVICE_CHARGE_NAME,
                            amount=min(missing, STANDARD_SERVICE_CHARGE),
                            synthesized=True,
                            description=STANDARD_SERVICE_CHARGE_NAME))

    lines = [
        DisplayLine(kind=LineKind.CONSULTATION_FEE.value,
                    name=consultation_label(snap.consultation_type),
                    amount=fee)
    ] + charges

    remainder = money2(billable_target - money_sum(ln.amount for ln in lines))
    if remainder > 0:
        lines.append(
            DisplayLine(kind=LineKind.SERVICE_CHARGE.value,
                        name=ADDITIONAL_SERVICES_NAME,
                        amount=remainder,
                        synthesized=True))
    elif remainder < 0:
        lines.append(
            DisplayLine(kind=LineKind.ADJUSTMENT.value,
                        name="Adjustment",
                        amount=remainder,
                        synthesized=True))

    if tax != 0:
        lines.append(
            DisplayLine(kind=LineKind.TAX.value,
                        name="Tax",
                        amount=tax,
                        synthesized=True))
    if discount != 0:
        lines.append(
            DisplayLine(kind=LineKind.DISCOUNT.value,
                        name="Discount",
                        amount=-discount,
                        synthesized=True))

    _allocate(lines, snap.paid, snap.total_refunded)
    return lines


def _allocate(lines: Sequence[DisplayLine], paid: Any, refunded: Any) -> None:
    billable = [ln for ln in lines if ln.kind in BILLABLE_KINDS]
    weights = [ln.amount for ln in billable]
    for ln, share in zip(billable, allocate_proportionally(paid, weights)):
        ln.paid_share = share
    for ln, share in zip(billable, allocate_proportionally(refunded, weights)):
        ln.refunded_share = share


# ---------------------------------------------------------------------
# Badge
# ---------------------------------------------------------------------
def derive_badge(state: BadgeState) -> DisplayStatus:
    """
    Cancelled > Refunded > PartiallyRefunded >
    PendingPayment (paid 0) > PartialPayment (paid < total) > FullyPaid

    Refunded means nothing is left with the clinic beyond the withheld
    registration-fee penalty.
    """
    if state.cancelled:
        return DisplayStatus.CANCELLED

    paid = money2(state.paid)
    refunded = money2(state.refunded)
    stored = (state.stored_status or "").strip().lower()

    if refunded > 0:
        if paid - refunded <= money2(state.penalty_withheld):
            return DisplayStatus.REFUNDED
        return DisplayStatus.PARTIALLY_REFUNDED
    if stored == InvoiceStatus.REFUNDED.value:
        return DisplayStatus.REFUNDED
    if stored == InvoiceStatus.PARTIALLY_REFUNDED.value:
        return DisplayStatus.PARTIALLY_REFUNDED

    if paid <= 0:
        return DisplayStatus.PENDING_PAYMENT
    if paid < money2(state.total):
        return DisplayStatus.PARTIAL_PAYMENT
    return DisplayStatus.FULLY_PAID


def badge_state(snap: InvoiceSnapshot) -> BadgeState:
    return BadgeState(
        cancelled=snap.cancelled,
        refunded=snap.total_refunded,
        paid=money2(snap.paid),
        total=money2(snap.total),
        penalty_withheld=(REGISTRATION_FEE_PENALTY
                          if snap.penalty_applied else ZERO),
        stored_status=snap.status,
    )


def _snapshot(source: Any) -> InvoiceSnapshot:
    if isinstance(source, InvoiceSnapshot):
        return source
    if isinstance(source, Mapping):
        return snapshot_from_record(source)
    return snapshot_from_invoice(source)


def reconcile_for_display(source: Any) -> ReconciledView:
    """
    `source` is an Invoice row, an old-shape bill dict, or a snapshot.
    """
    snap = _snapshot(source)
    lines = reconcile_line_items(snap)

    paid = money2(snap.paid)
    refunded = snap.total_refunded
    total = money2(snap.total)
    totals = {
        "subtotal": money_sum(ln.amount for ln in lines
                              if ln.kind not in (LineKind.TAX.value,
                                                 LineKind.DISCOUNT.value)),
        "tax_amount": money2(snap.tax_amount),
        "discount_amount": money2(snap.discount_amount),
        "total": total,
        "paid": paid,
        "refunded": refunded,
        "net_paid": money2(paid - refunded),
        "due": money2(max(total - paid, ZERO)),
    }
    return ReconciledView(status=derive_badge(badge_state(snap)),
                          line_items=lines,
                          totals=totals)
