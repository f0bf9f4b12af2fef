# reassignment_billing/services/billing_rules.py
"""
Fixed tariff and policy constants for reassignment billing.

CONSULTATION_FEES is what a new invoice charges. DISPLAY_CANONICAL_FEES is
what the reconciler treats as the "real" consultation share of a stored fee:
historic IP bills stored 1050 as one amount, which is 850 + the 150 standard
service charge.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict

from reassignment_billing.models.billing import ConsultationType
from reassignment_billing.services.billing_errors import UnknownConsultationType

CONSULTATION_FEES: Dict[ConsultationType, Decimal] = {
    ConsultationType.OP: Decimal("850.00"),
    ConsultationType.IP: Decimal("1050.00"),
    ConsultationType.FOLLOWUP: Decimal("0.00"),
}

DISPLAY_CANONICAL_FEES: Dict[ConsultationType, Decimal] = {
    ConsultationType.OP: Decimal("850.00"),
    ConsultationType.IP: Decimal("850.00"),
    ConsultationType.FOLLOWUP: Decimal("0.00"),
}

STANDARD_SERVICE_CHARGE_NAME = "Standard Service Charge"
STANDARD_SERVICE_CHARGE = Decimal("150.00")

ADDITIONAL_SERVICES_NAME = "Additional Services"

# Registration fee withheld from refunds when behavior is "okay".
# Fixed constant, not read from the original registration bill.
REGISTRATION_FEE_PENALTY = Decimal("150.00")

FREE_REASSIGNMENT_WINDOW_DAYS = 7


def parse_consultation_type(value: Any) -> ConsultationType:
    if isinstance(value, ConsultationType):
        return value
    raw = str(value or "").strip()
    for ct in ConsultationType:
        if raw == ct.value or raw.upper() == ct.name or raw.lower() == ct.value.lower():
            return ct
    raise UnknownConsultationType(f"Unknown consultation type: {value!r}",
                                  details={"consultation_type": value})


def consultation_label(consultation_type: Any) -> str:
    try:
        ct = parse_consultation_type(consultation_type)
    except UnknownConsultationType:
        return "Consultation Fee"
    if ct == ConsultationType.FOLLOWUP:
        return "Follow-up Consultation Fee"
    return f"{ct.value} Consultation Fee"


def is_standard_service_charge(name: Any) -> bool:
    return str(name or "").strip().lower() == STANDARD_SERVICE_CHARGE_NAME.lower()
