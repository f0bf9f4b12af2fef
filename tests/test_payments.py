from datetime import timedelta
from decimal import Decimal

import pytest

from reassignment_billing.models.billing import Invoice, InvoiceStatus
from reassignment_billing.services.billing_cancel import cancel_invoice
from reassignment_billing.services.billing_errors import (
    AmountMismatch,
    ConflictError,
    InvalidSchedule,
    InvoiceNotFound,
    InvoiceNotPayable,
)
from reassignment_billing.services.billing_payment_service import apply_payment
from reassignment_billing.services.billing_transactions import run_mutation

from conftest import NOW, TOMORROW


def pay(db, inv_id, amount="1000", appointment_time=TOMORROW, **kw):
    return run_mutation(db,
                        apply_payment,
                        invoice_id=inv_id,
                        amount=Decimal(amount),
                        method="upi",
                        appointment_time=appointment_time,
                        now=NOW,
                        **kw)


def reload(db, inv_id):
    db.expire_all()
    return db.get(Invoice, inv_id)


def test_full_payment_settles_invoice(db, op_invoice):
    inv = pay(db, op_invoice.id)

    assert inv.status == InvoiceStatus.PAID.value
    assert inv.amount_paid == Decimal("1000.00")
    assert inv.balance_due == Decimal("0.00")
    assert inv.appointment_time == TOMORROW
    assert len(inv.payments) == 1
    assert inv.payments[0].mode == "upi"


@pytest.mark.parametrize("amount", ["999.99", "500", "1000.01"])
def test_partial_or_over_payment_is_rejected(db, op_invoice, amount):
    with pytest.raises(AmountMismatch):
        pay(db, op_invoice.id, amount=amount)

    inv = reload(db, op_invoice.id)
    assert inv.amount_paid == Decimal("0.00")
    assert inv.status == InvoiceStatus.INVOICED.value
    assert inv.payments == []


def test_sub_paisa_amount_is_not_rounded_into_a_match(db, op_invoice):
    with pytest.raises(AmountMismatch):
        pay(db, op_invoice.id, amount="999.995")

    inv = reload(db, op_invoice.id)
    assert inv.amount_paid == Decimal("0.00")
    assert inv.payments == []


@pytest.mark.parametrize("when", [None, NOW, NOW - timedelta(minutes=1)])
def test_appointment_must_be_in_the_future(db, op_invoice, when):
    with pytest.raises(InvalidSchedule):
        pay(db, op_invoice.id, appointment_time=when)

    inv = reload(db, op_invoice.id)
    assert inv.amount_paid == Decimal("0.00")
    assert inv.appointment_time is None


def test_paid_invoice_is_not_payable_again(db, paid_invoice):
    with pytest.raises(InvoiceNotPayable):
        pay(db, paid_invoice.id)


def test_cancelled_invoice_is_not_payable(db, op_invoice):
    run_mutation(db, cancel_invoice, invoice_id=op_invoice.id,
                 reason="Patient left", now=NOW)
    with pytest.raises(InvoiceNotPayable):
        pay(db, op_invoice.id)


def test_replayed_request_is_applied_once(db, op_invoice):
    first = pay(db, op_invoice.id, idempotency_key="pay-1")
    second = pay(db, op_invoice.id, idempotency_key="pay-1")

    assert first.id == second.id
    inv = reload(db, op_invoice.id)
    assert len(inv.payments) == 1
    assert inv.amount_paid == Decimal("1000.00")


def test_replay_with_the_version_it_was_sent_with(db, op_invoice):
    version = reload(db, op_invoice.id).version

    first = pay(db, op_invoice.id, expected_version=version,
                idempotency_key="pay-v1")
    second = pay(db, op_invoice.id, expected_version=version,
                 idempotency_key="pay-v1")

    assert second.id == first.id
    assert second.status == InvoiceStatus.PAID.value
    inv = reload(db, op_invoice.id)
    assert len(inv.payments) == 1
    assert inv.version == version + 1


def test_new_key_with_old_version_is_a_conflict(db, op_invoice):
    version = reload(db, op_invoice.id).version
    run_mutation(db, cancel_invoice, invoice_id=op_invoice.id,
                 reason="Patient left", now=NOW)

    with pytest.raises(ConflictError):
        pay(db, op_invoice.id, expected_version=version,
            idempotency_key="pay-v2")


def test_stale_version_is_a_conflict(db, op_invoice):
    version = reload(db, op_invoice.id).version

    pay(db, op_invoice.id, expected_version=version)
    with pytest.raises(ConflictError):
        # a second writer still holding the old snapshot
        pay(db, op_invoice.id, expected_version=version)


def test_version_moves_on_every_mutation(db, op_invoice):
    before = reload(db, op_invoice.id).version
    pay(db, op_invoice.id)
    assert reload(db, op_invoice.id).version == before + 1


def test_unknown_invoice(db):
    with pytest.raises(InvoiceNotFound):
        pay(db, 4242)
