import itertools
import os
from datetime import datetime, timedelta
from decimal import Decimal

# keep the app from touching a real database while tests import it
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_TABLES", "false")
os.environ.setdefault("DB_RETRY_BASE_DELAY", "0")

import pytest
from sqlalchemy.pool import StaticPool

from reassignment_billing import models  # noqa: F401
from reassignment_billing.db.base import Base
from reassignment_billing.db.session import make_engine, make_session_factory
from reassignment_billing.models.billing import Invoice, InvoiceStatus
from reassignment_billing.models.patient import Patient, ReassignmentEvent
from reassignment_billing.services.billing_invoice_create import build_invoice
from reassignment_billing.services.billing_payment_service import apply_payment

NOW = datetime(2025, 3, 10, 10, 0, 0)
TOMORROW = NOW + timedelta(days=1)


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)
        eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_patient(db):
    """
    Patient with (optionally) a paid original consultation bill and one
    reassignment that has not been billed yet.
    """
    seq = itertools.count(1)

    def _make(*,
              doctor_id=1,
              first_paid_days_ago=2,
              reassigned_to=None,
              viewed=False):
        n = next(seq)
        patient = Patient(
            name=f"Patient {n}",
            uh_id=f"UH{n:05d}",
            assigned_doctor_id=doctor_id,
            current_doctor_id=doctor_id,
            created_at=NOW - timedelta(days=60),
        )
        db.add(patient)

        if first_paid_days_ago is not None:
            db.add(Invoice(
                patient=patient,
                is_reassignment=False,
                consultation_type="OP",
                subtotal=Decimal("1000.00"),
                total=Decimal("1000.00"),
                amount_paid=Decimal("1000.00"),
                balance_due=Decimal("0.00"),
                status=InvoiceStatus.PAID.value,
                created_at=NOW - timedelta(days=first_paid_days_ago),
            ))

        if reassigned_to is not None:
            patient.reassignments.append(
                ReassignmentEvent(
                    from_doctor_id=doctor_id,
                    to_doctor_id=reassigned_to,
                    reason="Second opinion",
                    consultation_viewed=viewed,
                    timestamp=NOW - timedelta(hours=1),
                ))
            patient.current_doctor_id = reassigned_to

        db.commit()
        return patient

    return _make


@pytest.fixture
def reassigned_patient(make_patient):
    # first visit a month ago: the reassignment is billed
    return make_patient(first_paid_days_ago=30, reassigned_to=2)


@pytest.fixture
def op_invoice(db, reassigned_patient):
    """OP 850 + Standard Service Charge 150 = 1000, unpaid."""
    inv = build_invoice(db, patient_id=reassigned_patient.id, now=NOW)
    db.commit()
    return inv


@pytest.fixture
def paid_invoice(db, op_invoice):
    apply_payment(
        db,
        invoice_id=op_invoice.id,
        amount=Decimal("1000"),
        method="cash",
        appointment_time=TOMORROW,
        now=NOW,
    )
    db.commit()
    return op_invoice
