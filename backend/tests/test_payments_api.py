import asyncio
import hashlib
import hmac
import json

from conftest import success_payload
from veaportal.core.config import settings
from veaportal.models.payment_model import PaymentInitializationCreate

METADATA = {"student_id": "STU-1", "student_name": "Ada Obi", "parent_name": "Mrs Obi", "term": "First Term"}


def _sign(body: bytes) -> str:
    return hmac.new(settings.paystack_secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def _seed(store, reference="R1", **kwargs):
    payload = PaymentInitializationCreate(reference=reference, amount=kwargs.pop("amount", 1000), **kwargs)
    return asyncio.run(store.record_payment_initialization(payload))


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


# ----------------------------
# verify
# ----------------------------
def test_verify_without_reference(client, gateway, store):
    response = client.get("/api/payments/verify")
    assert response.status_code == 400
    assert response.json() == {"status": False, "message": "Payment reference is required"}
    assert gateway.verify_calls == []
    assert asyncio.run(store.list_payment_initializations()) == []


def test_verify_success(client, gateway):
    gateway.responses["REF-API"] = success_payload("REF-API", metadata=METADATA)

    response = client.get("/api/payments/verify", params={"reference": "REF-API"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] is True
    assert body["data"]["receipt"]["receiptNumber"].startswith("VEA/")
    assert body["data"]["payment"]["status"] == "completed"


def test_verify_rejected(client, store):
    stored = _seed(store, "R2")
    response = client.get("/api/payments/verify", params={"reference": "R2"})
    assert response.status_code == 400
    assert response.json() == {"status": False, "message": "Payment verification failed"}
    assert asyncio.run(store.get_payment(stored.id)).status == "failed"


def test_notifications_feed_after_verification(client, gateway):
    gateway.responses["REF-N"] = success_payload("REF-N", metadata=METADATA)
    client.get("/api/payments/verify", params={"reference": "REF-N"})

    admin = client.get("/api/notifications", params={"role": "admin"}).json()["notifications"]
    assert len(admin) == 1
    assert admin[0]["title"] == "Payment received from Mrs Obi"
    assert admin[0]["actionUrl"] == "/?tab=payments"

    parent = client.get("/api/notifications", params={"role": "parent"}).json()["notifications"]
    assert parent == []


# ----------------------------
# webhook
# ----------------------------
def test_webhook_rejects_bad_signature(client, gateway):
    body = json.dumps({"event": "charge.success", "data": {"reference": "W1"}}).encode()

    response = client.post("/api/payments/webhook", content=body, headers={"x-paystack-signature": "bad"})
    assert response.status_code == 401

    response = client.post("/api/payments/webhook", content=body)
    assert response.status_code == 401
    assert gateway.verify_calls == []


def test_webhook_charge_success_runs_verification(client, gateway, store):
    gateway.responses["W1"] = success_payload("W1", metadata=METADATA)
    body = json.dumps({"event": "charge.success", "data": {"reference": "W1"}}).encode()

    response = client.post(
        "/api/payments/webhook",
        content=body,
        headers={"x-paystack-signature": _sign(body), "content-type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "processed", "verified": True}
    assert gateway.verify_calls == ["W1"]
    [payment] = asyncio.run(store.list_payment_initializations())
    assert payment.status == "completed"


def test_webhook_ignores_other_events(client, gateway):
    body = json.dumps({"event": "transfer.success", "data": {"reference": "T1"}}).encode()
    response = client.post("/api/payments/webhook", content=body, headers={"x-paystack-signature": _sign(body)})
    assert response.status_code == 200
    assert response.json() == {"status": "ignored"}
    assert gateway.verify_calls == []


# ----------------------------
# initialize
# ----------------------------
def test_initialize_records_pending_payment(client, gateway, store):
    response = client.post("/api/payments/initialize", json={
        "email": "Parent@Example.com",
        "amount": 1500,
        "studentId": "STU-1",
        "paymentType": "school_fee",
        "term": "first",
        "metadata": {"studentName": "Ada Obi"},
    })

    assert response.status_code == 200
    assert response.json()["data"]["authorization_url"].startswith("https://checkout.paystack.com/")

    [call] = gateway.initialize_calls
    assert call["amount_kobo"] == 150000
    assert call["split_code"] == "SPL_test"
    assert call["email"] == "parent@example.com"
    assert call["metadata"]["term"] == "First Term"
    assert call["metadata"]["student_id"] == call["metadata"]["studentId"] == "STU-1"

    payment = asyncio.run(store.find_payment_by_reference("INIT-REF-1"))
    assert payment.status == "pending"
    assert payment.amount == 1500
    assert payment.student_id == "STU-1"


def test_initialize_validation(client, gateway):
    response = client.post("/api/payments/initialize", json={"email": "", "amount": 1500})
    assert response.status_code == 400
    assert response.json() == {"status": False, "message": "Valid email is required"}

    response = client.post("/api/payments/initialize", json={"email": "a@b.com", "amount": 0})
    assert response.status_code == 400
    assert gateway.initialize_calls == []


def test_initialize_gateway_refusal(client, gateway, store):
    gateway.initialize_response = {"status": False, "message": "Invalid split code"}
    response = client.post("/api/payments/initialize", json={"email": "a@b.com", "amount": 100})
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid split code"
    assert asyncio.run(store.list_payment_initializations()) == []


# ----------------------------
# records
# ----------------------------
def test_records_list_and_update(client, store):
    stored = _seed(store, "R1", metadata={"keep": "me"})

    listed = client.get("/api/payments/records").json()["payments"]
    assert [p["id"] for p in listed] == [stored.id]

    response = client.put("/api/payments/records", json={
        "id": stored.id,
        "status": "COMPLETED",
        "accessGranted": True,
        "studentName": "Ada Obi",
    })
    assert response.status_code == 200
    payment = response.json()["payment"]
    assert payment["status"] == "completed"
    assert payment["metadata"]["accessGranted"] is True
    assert payment["metadata"]["accessGrantedAt"]
    assert payment["metadata"]["studentName"] == payment["metadata"]["student_name"] == "Ada Obi"
    assert payment["metadata"]["keep"] == "me"


def test_records_update_errors(client):
    assert client.put("/api/payments/records", json={"status": "failed"}).status_code == 400
    assert client.put("/api/payments/records", json={"id": "missing"}).status_code == 404


def test_unknown_status_normalizes_to_pending(client, store):
    stored = _seed(store, "R1", status="completed")
    payment = client.put("/api/payments/records", json={"id": stored.id, "status": "refunded"}).json()["payment"]
    assert payment["status"] == "pending"


# ----------------------------
# receipts & ledger
# ----------------------------
def test_receipt_create_list_and_pdf(client):
    response = client.post("/api/payments/receipts", json={
        "paymentId": "payment_1",
        "studentName": "Ada Obi",
        "amount": 2500,
        "reference": "R-manual",
        "metadata": {"paymentType": "school_fee", "term": "First Term"},
    })
    assert response.status_code == 200
    receipt = response.json()["receipt"]

    listed = client.get("/api/payments/receipts").json()["receipts"]
    assert [r["id"] for r in listed] == [receipt["id"]]

    pdf = client.get(f"/api/payments/receipts/{receipt['id']}.pdf")
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")


def test_receipt_validation(client):
    assert client.post("/api/payments/receipts", json={"studentName": "Ada", "amount": 1}).status_code == 400
    assert client.post("/api/payments/receipts", json={"paymentId": "p", "amount": 1}).status_code == 400
    assert client.post("/api/payments/receipts", json={"paymentId": "p", "studentName": "Ada", "amount": -1}).status_code == 400
    assert client.get("/api/payments/receipts/missing.pdf").status_code == 404


def test_ledger_listing(client, gateway):
    gateway.responses["L1"] = success_payload("L1", metadata=METADATA)
    client.get("/api/payments/verify", params={"reference": "L1"})

    entries = client.get("/api/payments/ledger", params={"term": "first term"}).json()["payments"]
    assert len(entries) == 1
    assert entries[0]["amount"] == 900.0
    assert entries[0]["paymentReference"] == "L1"
    assert client.get("/api/payments/ledger", params={"term": "Third Term"}).json()["payments"] == []


def test_receipts_listing_mixes_offsetless_dates(client, gateway):
    gateway.responses["RC1"] = success_payload("RC1", metadata=METADATA)
    client.get("/api/payments/verify", params={"reference": "RC1"})
    response = client.post("/api/payments/receipts", json={
        "paymentId": "payment_2",
        "studentName": "Ben Obi",
        "amount": 1500,
        "reference": "R-offline",
        "dateIssued": "2025-01-05T10:00:00",
    })
    assert response.status_code == 200

    listed = client.get("/api/payments/receipts")
    assert listed.status_code == 200
    receipts = listed.json()["receipts"]
    assert len(receipts) == 2
    assert receipts[-1]["reference"] == "R-offline"


def test_ledger_listing_with_offsetless_and_missing_paid_at(client, gateway):
    gateway.responses["L2"] = success_payload("L2", metadata=METADATA, paid_at="2025-01-15T10:00:00")
    gateway.responses["L3"] = success_payload("L3", metadata=METADATA, paid_at=None)
    assert client.get("/api/payments/verify", params={"reference": "L2"}).status_code == 200
    assert client.get("/api/payments/verify", params={"reference": "L3"}).status_code == 200

    response = client.get("/api/payments/ledger")
    assert response.status_code == 200
    assert sorted(e["paymentReference"] for e in response.json()["payments"]) == ["L2", "L3"]


def test_webhook_rejects_undecodable_body(client, gateway):
    body = b"\xff\xfe{not utf-8"
    response = client.post("/api/payments/webhook", content=body, headers={"x-paystack-signature": _sign(body)})
    assert response.status_code == 400
    assert gateway.verify_calls == []
