# reassignment_billing/models/__init__.py
from .patient import Patient, ReassignmentEvent
from .billing import (
    BillingNumberSeries,
    IdempotencyKey,
    Invoice,
    InvoiceLineItem,
    InvoicePayment,
    InvoiceRefund,
)

__all__ = [
    "Patient",
    "ReassignmentEvent",
    "BillingNumberSeries",
    "IdempotencyKey",
    "Invoice",
    "InvoiceLineItem",
    "InvoicePayment",
    "InvoiceRefund",
]
