# reassignment_billing/services/billing_transactions.py
"""
Per-invoice serialization boundary.

Every mutation (payment / cancel / refund):
  1. runs inside one transaction (run_mutation)
  2. loads the invoice row with SELECT ... FOR UPDATE (lock_invoice)
  3. claims its idempotency key in the same transaction; a replay of a
     committed request returns the stored result before any version check
  4. optionally checks the version the caller last read (check_version)
  5. is flushed with the mapper's version check; a stale snapshot raises
     ConflictError instead of overwriting the winner.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Optional, TypeVar

import backoff
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from reassignment_billing.core.config import settings
from reassignment_billing.models.billing import IdempotencyKey, Invoice
from reassignment_billing.services.billing_errors import (
    ConflictError,
    InvoiceNotFound,
    PersistenceUnavailable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def lock_invoice(db: Session, invoice_id: int) -> Invoice:
    inv = (db.query(Invoice).filter(
        Invoice.id == int(invoice_id)).with_for_update().first())
    if not inv:
        raise InvoiceNotFound("Invoice not found",
                              details={"invoice_id": invoice_id})
    return inv


def check_version(inv: Invoice, expected_version: Optional[int]) -> None:
    if expected_version is not None and int(inv.version) != int(
            expected_version):
        raise ConflictError(
            "Invoice was modified by another user; reload and retry",
            details={
                "invoice_id": inv.id,
                "expected_version": int(expected_version),
                "current_version": int(inv.version),
            },
        )


def is_replay(db: Session, inv: Invoice, operation: str,
              nonce: Optional[str]) -> bool:
    """
    True when this (invoice, operation, nonce) was already applied.
    Otherwise records the key so the current attempt owns it.
    """
    if not nonce:
        return False

    existing = db.query(IdempotencyKey).filter(
        IdempotencyKey.invoice_id == inv.id,
        IdempotencyKey.operation == operation,
        IdempotencyKey.nonce == str(nonce),
    ).first()
    if existing:
        logger.info("Idempotent replay invoice=%s op=%s nonce=%s", inv.id,
                    operation, nonce)
        return True

    db.add(
        IdempotencyKey(invoice_id=inv.id,
                       operation=operation,
                       nonce=str(nonce)))
    return False


def _log_backoff(details: dict) -> None:
    logger.warning("Persistence unavailable, retry %s after %.2fs",
                   details.get("tries"), details.get("wait") or 0)


def _max_tries() -> int:
    return max(1, int(settings.DB_RETRY_ATTEMPTS))


@backoff.on_exception(backoff.expo,
                      OperationalError,
                      max_tries=_max_tries,
                      jitter=None,
                      factor=settings.DB_RETRY_BASE_DELAY,
                      on_backoff=_log_backoff)
def _attempt(db: Session, fn: Callable[..., T], kwargs: dict) -> T:
    try:
        with db.begin():
            return fn(db, **kwargs)
    except StaleDataError as e:
        raise ConflictError(
            "Invoice was modified by another user; reload and retry") from e
    except IntegrityError as e:
        # concurrent writer claimed the same idempotency key / number first
        raise ConflictError(
            "Concurrent request already applied; reload and retry") from e


def run_mutation(db: Session, fn: Callable[..., T], **kwargs: Any) -> T:
    """
    Run `fn(db, **kwargs)` as one transaction.
    Transient OperationalErrors are retried (the idempotency key makes the
    retry safe); validation/state errors roll back and propagate as-is.
    """
    if db.in_transaction():
        db.rollback()
    try:
        return _attempt(db, fn, kwargs)
    except OperationalError as e:
        logger.exception("Persistence unavailable after retries (%s)",
                         getattr(fn, "__name__", fn))
        raise PersistenceUnavailable(
            "Billing store unavailable; nothing was changed") from e
