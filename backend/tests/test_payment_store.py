import asyncio
import re

import pytest

from veaportal.core.errors import LedgerWriteError
from veaportal.models.ledger_model import SYSTEM_SETTLEMENT_ACTOR, ActorContext, SettlementDetails
from veaportal.models.notification_model import Notification
from veaportal.models.payment_model import PaymentInitializationCreate, PaymentRecordUpdate
from veaportal.models.receipt_model import ReceiptUpsert
from veaportal.services.payment_store import JsonFilePaymentStore, MemoryPaymentStore


def _create(store, reference="R1", **kwargs):
    payload = PaymentInitializationCreate(reference=reference, amount=kwargs.pop("amount", 1000), **kwargs)
    return asyncio.run(store.record_payment_initialization(payload))


def _details(**overrides):
    values = {
        "student_name": "Ada Obi",
        "amount": 900.0,
        "payment_method": "card",
        "term": "First Term",
        "fee_type": "School Fee",
    }
    values.update(overrides)
    return SettlementDetails(**values)


# ----------------------------
# payments
# ----------------------------
def test_find_by_reference_ignores_case_and_whitespace():
    store = MemoryPaymentStore()
    created = _create(store, "R1")
    found = asyncio.run(store.find_payment_by_reference("  r1 "))
    assert found is not None
    assert found.id == created.id


def test_find_by_paystack_reference():
    store = MemoryPaymentStore()
    created = _create(store, "portal-ref", paystack_reference="PSK-123")
    assert asyncio.run(store.find_payment_by_reference("psk-123")).id == created.id
    assert asyncio.run(store.find_payment_by_reference("unknown")) is None
    assert asyncio.run(store.find_payment_by_reference("")) is None


def test_record_initialization_upserts_by_reference():
    store = MemoryPaymentStore()
    first = _create(store, "R1", amount=1000, status="pending")
    second = _create(store, "R1", amount=1500, paystack_reference="PSK-1")
    assert second.id == first.id
    assert second.amount == 1500
    assert second.status == "pending"
    assert len(asyncio.run(store.list_payment_initializations())) == 1

    third = _create(store, "other", paystack_reference="psk-1")
    assert third.id == first.id


def test_update_merges_metadata_shallowly():
    store = MemoryPaymentStore()
    created = _create(store, "R1", metadata={"a": 1, "b": {"x": 1}})
    updated = asyncio.run(store.update_payment_record(
        created.id, PaymentRecordUpdate(status="completed", metadata={"b": {"y": 2}, "c": 3}),
    ))
    assert updated.status == "completed"
    assert updated.metadata == {"a": 1, "b": {"y": 2}, "c": 3}
    assert updated.amount == created.amount


def test_update_unknown_id_returns_none():
    store = MemoryPaymentStore()
    assert asyncio.run(store.update_payment_record("missing", PaymentRecordUpdate(status="failed"))) is None


def test_returned_records_are_copies():
    store = MemoryPaymentStore()
    created = _create(store, "R1", metadata={"a": 1})
    created.metadata["a"] = 99
    assert asyncio.run(store.get_payment(created.id)).metadata["a"] == 1


# ----------------------------
# receipts
# ----------------------------
def test_receipt_number_kept_on_update():
    store = MemoryPaymentStore()
    first = asyncio.run(store.create_or_update_receipt(
        ReceiptUpsert(payment_id="p1", student_name="Student", amount=1000, reference="R1"),
    ))
    assert re.fullmatch(r"VEA/\d{8}/[0-9A-F]{6}", first.receipt_number)

    second = asyncio.run(store.create_or_update_receipt(
        ReceiptUpsert(payment_id="p1", student_name="Ada Obi", amount=1200, reference="R1b"),
    ))
    assert second.id == first.id
    assert second.receipt_number == first.receipt_number
    assert second.student_name == "Ada Obi"
    assert second.amount == 1200
    assert len(asyncio.run(store.list_receipts())) == 1


def test_caller_supplied_receipt_number_is_used():
    store = MemoryPaymentStore()
    receipt = asyncio.run(store.create_or_update_receipt(
        ReceiptUpsert(payment_id="p2", student_name="Ada", amount=10, receipt_number="MANUAL-01"),
    ))
    assert receipt.receipt_number == "MANUAL-01"


# ----------------------------
# fee ledger
# ----------------------------
def test_ledger_entry_stamps_actor_and_generates_receipt_number():
    store = MemoryPaymentStore()
    entry = asyncio.run(store.create_fee_payment_record(
        _details(amount=900.4567, event_fee_ids=["e1", "e1", " e2 "]), SYSTEM_SETTLEMENT_ACTOR,
    ))
    assert entry.amount == 900.46
    assert entry.created_by == "system_paystack"
    assert entry.created_by_name == "Automated Paystack Settlement"
    assert entry.event_fee_ids == ["e1", "e2"]
    assert re.fullmatch(r"COL-\d{8}-[0-9A-F]{6}", entry.receipt_number)


@pytest.mark.parametrize("overrides, message", [
    ({"student_name": "  "}, "Student name is required"),
    ({"payment_method": ""}, "Payment method is required"),
    ({"term": " "}, "Term is required"),
    ({"amount": 0}, "Amount must be a positive number"),
])
def test_ledger_validation(overrides, message):
    store = MemoryPaymentStore()
    with pytest.raises(LedgerWriteError) as exc:
        asyncio.run(store.create_fee_payment_record(_details(**overrides), SYSTEM_SETTLEMENT_ACTOR))
    assert exc.value.message == message


def test_duplicate_ledger_receipt_number_rejected():
    store = MemoryPaymentStore()
    actor = ActorContext(user_id="acct-1", user_name="Bursar")
    asyncio.run(store.create_fee_payment_record(_details(receipt_number="col-100"), actor))
    with pytest.raises(LedgerWriteError):
        asyncio.run(store.create_fee_payment_record(_details(receipt_number="COL-100"), actor))


def test_ledger_listing_filters_by_term():
    store = MemoryPaymentStore()
    asyncio.run(store.create_fee_payment_record(_details(term="First Term"), SYSTEM_SETTLEMENT_ACTOR))
    asyncio.run(store.create_fee_payment_record(_details(term="Second Term"), SYSTEM_SETTLEMENT_ACTOR))
    assert len(asyncio.run(store.list_fee_payment_records())) == 2
    first = asyncio.run(store.list_fee_payment_records(term="first  term"))
    assert [e.term for e in first] == ["First Term"]


# ----------------------------
# notifications
# ----------------------------
def test_notifications_filtered_by_role_or_user():
    store = MemoryPaymentStore()
    asyncio.run(store.add_notification(Notification(title="a", body="b", target_roles=["accountant"])))
    asyncio.run(store.add_notification(Notification(title="c", body="d", target_user_ids=["u1"])))
    asyncio.run(store.add_notification(Notification(title="e", body="f", target_roles=["all"])))

    assert [n.title for n in asyncio.run(store.list_notifications(role="accountant"))] == ["e", "a"]
    assert [n.title for n in asyncio.run(store.list_notifications(user_id="u1"))] == ["e", "c"]
    assert [n.title for n in asyncio.run(store.list_notifications(role="parent"))] == ["e"]


# ----------------------------
# JSON file backend
# ----------------------------
def test_json_file_store_survives_reload(tmp_path):
    path = tmp_path / "data" / "portal.json"
    store = JsonFilePaymentStore(str(path))
    created = _create(store, "R1", metadata={"studentName": "Ada"})
    receipt = asyncio.run(store.create_or_update_receipt(
        ReceiptUpsert(payment_id=created.id, student_name="Ada", amount=1000),
    ))
    asyncio.run(store.create_fee_payment_record(_details(), SYSTEM_SETTLEMENT_ACTOR))

    reloaded = JsonFilePaymentStore(str(path))
    assert asyncio.run(reloaded.find_payment_by_reference("r1")).id == created.id
    assert asyncio.run(reloaded.get_receipt(receipt.id)).receipt_number == receipt.receipt_number
    assert len(asyncio.run(reloaded.list_fee_payment_records())) == 1
