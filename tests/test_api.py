from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from reassignment_billing import main as main_module
from reassignment_billing.api.deps import get_db
from reassignment_billing.core.config import settings
from reassignment_billing.main import app
from reassignment_billing.utils.timezone import now_local

BASE = "/api/reassignment-billing"


@pytest.fixture
def client(session_factory):

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def future(days=1):
    return (now_local() + timedelta(days=days)).isoformat()


def create_invoice(client, patient_id, **body):
    res = client.post(f"{BASE}/create-invoice",
                      json={"patient_id": patient_id, **body})
    assert res.status_code == 201, res.text
    return res.json()["data"]


def pay(client, inv, amount=1000, **headers):
    return client.post(
        f"{BASE}/invoices/{inv['id']}/payments",
        json={"amount": amount, "mode": "card", "appointment_time": future()},
        headers=headers,
    )


def test_invoice_lifecycle(client, reassigned_patient):
    inv = create_invoice(client, reassigned_patient.id)
    assert inv["invoice_number"] == "RB-000001"
    assert inv["total"] == 1000
    assert inv["status"] == "invoiced"
    assert [it["amount"] for it in inv["items"]] == [850, 150]

    res = pay(client, inv)
    body = res.json()
    assert res.status_code == 200
    assert body["ok"] is True
    assert body["data"]["status"] == "paid"
    assert body["data"]["balance_due"] == 0

    res = client.get(f"{BASE}/invoices/{inv['id']}/display")
    view = res.json()["data"]
    assert view["status"] == "FullyPaid"
    assert sum(ln["amount"] for ln in view["line_items"]) == 1000

    res = client.get(f"{BASE}/invoices/{inv['id']}/refund-summary",
                     params={"behavior": "okay"})
    assert res.json()["data"]["max_refundable"] == 850

    res = client.post(f"{BASE}/invoices/{inv['id']}/refunds",
                      json={"amount": 851, "reason": "Doctor on leave"})
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "RefundExceedsAvailable"

    res = client.post(f"{BASE}/invoices/{inv['id']}/refunds",
                      json={"amount": 850, "reason": "Doctor on leave"})
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "refunded"
    assert res.json()["data"]["total_refunded"] == 850

    res = client.post(f"{BASE}/invoices/{inv['id']}/cancel",
                      json={"reason": "Too late"})
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "AlreadyTerminal"


def test_wrong_amount_is_rejected_with_reason(client, reassigned_patient):
    inv = create_invoice(client, reassigned_patient.id)
    res = pay(client, inv, amount=500)

    assert res.status_code == 422
    body = res.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "AmountMismatch"
    assert body["error"]["details"]["due"] == "1000.00"

    again = client.get(f"{BASE}/invoices/{inv['id']}").json()["data"]
    assert again["amount_paid"] == 0
    assert again["version"] == inv["version"]


def test_past_appointment_is_rejected(client, reassigned_patient):
    inv = create_invoice(client, reassigned_patient.id)
    res = client.post(
        f"{BASE}/invoices/{inv['id']}/payments",
        json={
            "amount": 1000,
            "appointment_time": (now_local() - timedelta(hours=1)).isoformat(),
        },
    )
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "InvalidSchedule"


def test_idempotency_key_replays(client, reassigned_patient):
    inv = create_invoice(client, reassigned_patient.id)
    first = pay(client, inv, **{"Idempotency-Key": "abc-1"})
    second = pay(client, inv, **{"Idempotency-Key": "abc-1"})

    assert first.status_code == second.status_code == 200
    assert len(second.json()["data"]["payments"]) == 1

    third = pay(client, inv, **{"Idempotency-Key": "abc-2"})
    assert third.status_code == 409
    assert third.json()["error"]["code"] == "InvoiceNotPayable"


def test_resend_with_same_key_and_version_returns_committed_result(
        client, reassigned_patient):
    inv = create_invoice(client, reassigned_patient.id)
    body = {
        "amount": 1000,
        "mode": "card",
        "appointment_time": future(),
        "expected_version": inv["version"],
    }
    url = f"{BASE}/invoices/{inv['id']}/payments"
    first = client.post(url, json=body, headers={"Idempotency-Key": "k-7"})
    second = client.post(url, json=body, headers={"Idempotency-Key": "k-7"})

    assert first.status_code == second.status_code == 200
    assert second.json()["data"]["status"] == "paid"
    assert len(second.json()["data"]["payments"]) == 1


def test_never_reassigned_patient_cannot_be_invoiced(client, make_patient):
    patient = make_patient(first_paid_days_ago=2)
    res = client.post(f"{BASE}/create-invoice", json={"patient_id": patient.id})
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "ReassignmentBlocked"


def test_expected_version_conflict(client, reassigned_patient):
    inv = create_invoice(client, reassigned_patient.id)
    res = client.post(f"{BASE}/invoices/{inv['id']}/cancel",
                      json={
                          "reason": "Duplicate",
                          "expected_version": inv["version"] + 5
                      })
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "Conflict"


def test_unknown_consultation_type(client, reassigned_patient):
    res = client.post(f"{BASE}/create-invoice",
                      json={
                          "patient_id": reassigned_patient.id,
                          "consultation_type": "ICU"
                      })
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "UnknownConsultationType"


def test_blank_cancel_reason_fails_validation(client, reassigned_patient):
    inv = create_invoice(client, reassigned_patient.id)
    res = client.post(f"{BASE}/invoices/{inv['id']}/cancel",
                      json={"reason": ""})
    assert res.status_code == 422
    assert res.json()["error"]["code"] == "ValidationError"


def test_missing_invoice(client):
    res = client.get(f"{BASE}/invoices/999")
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "InvoiceNotFound"


def test_reassign_flow(client, make_patient):
    patient = make_patient(doctor_id=1, first_paid_days_ago=None)

    res = client.get(f"{BASE}/patients/{patient.id}/status")
    assert res.json()["data"]["status"] == "NotReassigned"

    res = client.post(f"{BASE}/patients/{patient.id}/reassign",
                      json={
                          "new_doctor_id": 2,
                          "reason": "Specialist"
                      })
    assert res.status_code == 201
    assert res.json()["data"]["to_doctor_id"] == 2

    res = client.post(f"{BASE}/patients/{patient.id}/reassign",
                      json={
                          "new_doctor_id": 3,
                          "reason": "Again"
                      })
    assert res.status_code == 409
    assert res.json()["error"]["code"] == "ReassignmentBlocked"

    res = client.put(
        f"{BASE}/patients/{patient.id}/mark-consultation-viewed")
    assert res.json()["data"]["consultation_viewed"] is True

    res = client.get(f"{BASE}/patients/{patient.id}/status")
    data = res.json()["data"]
    assert data["current_doctor_id"] == 2
    assert data["assigned_doctor_id"] == 1
    assert data["status"] == "NoInvoice"

    res = client.get(f"{BASE}/patients/{patient.id}/eligibility")
    assert res.json()["data"] == {
        "patient_id": patient.id,
        "eligible": False,
        "eligible_for_billing": False,
        "reassignment_count": 1,
    }

    res = client.get(f"{BASE}/patients/{patient.id}/current-invoice")
    assert res.status_code == 404


def test_current_invoice(client, reassigned_patient):
    inv = create_invoice(client, reassigned_patient.id)
    res = client.get(f"{BASE}/patients/{reassigned_patient.id}/current-invoice")
    assert res.json()["data"]["id"] == inv["id"]


def test_reconcile_legacy_record(client):
    res = client.post(f"{BASE}/reconcile",
                      json={
                          "consultationType": "OP",
                          "consultationFee": 1000,
                          "serviceCharges": [],
                          "customData": {
                              "totals": {
                                  "total": 1000,
                                  "paid": 1000
                              }
                          },
                      })
    data = res.json()["data"]
    assert data["status"] == "FullyPaid"
    assert [(ln["name"], ln["amount"]) for ln in data["line_items"]] == [
        ("OP Consultation Fee", 850),
        ("Standard Service Charge", 150),
    ]


def test_unknown_patient(client):
    res = client.get(f"{BASE}/patients/404/eligibility")
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "PatientNotFound"


def test_startup_creates_tables_when_enabled(monkeypatch):
    created = []
    monkeypatch.setattr(settings, "AUTO_CREATE_TABLES", True)
    monkeypatch.setattr(main_module, "create_tables",
                        lambda: created.append(True))

    with TestClient(app) as c:
        assert c.get("/").status_code == 200
    assert created == [True]
