# reassignment_billing/services/billing_errors.py
from __future__ import annotations

from typing import Any, Optional


# ============================================================
# Errors
# ============================================================
class BillingError(RuntimeError):
    """
    Base for every rejected billing operation.
    `code` is the machine-readable reason shown to the caller,
    `status_code` the HTTP status the API layer answers with.
    """
    code = "BillingError"
    status_code = 400

    def __init__(self, msg: str, *, details: Any = None,
                 code: Optional[str] = None):
        super().__init__(msg)
        self.msg = msg
        self.details = details
        if code:
            self.code = code


# ---------- validation (operator mistakes, never retried) ----------
class BillingValidationError(BillingError):
    code = "ValidationError"
    status_code = 422


class UnknownConsultationType(BillingValidationError):
    code = "UnknownConsultationType"


class NegativeAmount(BillingValidationError):
    code = "NegativeAmount"


class InvalidPercentage(BillingValidationError):
    code = "InvalidPercentage"


class AmountMismatch(BillingValidationError):
    code = "AmountMismatch"


class InvalidSchedule(BillingValidationError):
    code = "InvalidSchedule"


class RefundExceedsAvailable(BillingValidationError):
    code = "RefundExceedsAvailable"


# ---------- state (re-fetch, may retry) ----------
class BillingStateError(BillingError):
    code = "StateError"
    status_code = 409


class InvoiceNotPayable(BillingStateError):
    code = "InvoiceNotPayable"


class AlreadyTerminal(BillingStateError):
    code = "AlreadyTerminal"


class ConflictError(BillingStateError):
    code = "Conflict"


class ReassignmentBlocked(BillingStateError):
    code = "ReassignmentBlocked"


# ---------- lookups ----------
class NotFoundError(BillingError):
    code = "NotFound"
    status_code = 404


class InvoiceNotFound(NotFoundError):
    code = "InvoiceNotFound"


class PatientNotFound(NotFoundError):
    code = "PatientNotFound"


# ---------- infrastructure ----------
class PersistenceUnavailable(BillingError):
    code = "PersistenceUnavailable"
    status_code = 503
