import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from reassignment_billing.core.config import settings
from reassignment_billing.models.billing import Invoice
from reassignment_billing.services.billing_errors import (
    ConflictError,
    PersistenceUnavailable,
)
from reassignment_billing.services.billing_transactions import (
    lock_invoice,
    run_mutation,
)


def flaky(failures):
    calls = {"n": 0}

    def fn(db, **kwargs):
        calls["n"] += 1
        if calls["n"] <= failures:
            raise OperationalError("UPDATE billing_invoices", {},
                                   Exception("server has gone away"))
        return kwargs.get("result", "done")

    return fn, calls


def test_transient_failures_are_retried(db):
    fn, calls = flaky(settings.DB_RETRY_ATTEMPTS - 1)
    assert run_mutation(db, fn, result="ok") == "ok"
    assert calls["n"] == settings.DB_RETRY_ATTEMPTS


def test_exhausted_retries_surface_as_unavailable(db):
    fn, calls = flaky(100)
    with pytest.raises(PersistenceUnavailable) as exc:
        run_mutation(db, fn)
    assert calls["n"] == settings.DB_RETRY_ATTEMPTS
    assert exc.value.status_code == 503


def test_failed_attempt_leaves_no_partial_write(db, op_invoice):
    inv_id = op_invoice.id

    def half_done(db):
        inv = lock_invoice(db, inv_id)
        inv.notes = "should not survive"
        db.flush()
        raise OperationalError("UPDATE billing_invoices", {},
                               Exception("lost connection"))

    with pytest.raises(PersistenceUnavailable):
        run_mutation(db, half_done)

    db.expire_all()
    assert db.get(Invoice, inv_id).notes != "should not survive"


def test_stale_snapshot_is_a_conflict(db, op_invoice):
    inv_id = op_invoice.id

    def write_over_other_writer(db):
        inv = lock_invoice(db, inv_id)
        # another writer commits behind this session's back
        db.connection().execute(
            update(Invoice.__table__).where(
                Invoice.__table__.c.id == inv_id).values(
                    version=Invoice.__table__.c.version + 1))
        inv.notes = "late write"
        db.flush()

    with pytest.raises(ConflictError):
        run_mutation(db, write_over_other_writer)
