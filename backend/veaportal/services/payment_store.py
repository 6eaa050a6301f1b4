# services/payment_store.py
"""
Persistence for payments, receipts, fee-ledger entries and notifications.

Three backends share one contract:

* ``MemoryPaymentStore``   – dictionaries, used by tests and local dev
* ``JsonFilePaymentStore`` – the memory store persisted to a JSON file
* ``FirestorePaymentStore`` – Firestore collections

Record construction and merge rules live in module-level helpers so every
backend upserts exactly the same way.
"""
import copy
import json
import logging
import os
import re
import secrets
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from google.cloud.firestore_v1.base_query import FieldFilter

from veaportal.core.errors import LedgerWriteError
from veaportal.core.firebase import firestore_run, get_firestore
from veaportal.models.base import utcnow
from veaportal.models.ledger_model import ActorContext, FeeLedgerEntry, SettlementDetails
from veaportal.models.notification_model import Notification
from veaportal.models.payment_model import (
    PaymentInitialization,
    PaymentInitializationCreate,
    PaymentRecordUpdate,
)
from veaportal.models.receipt_model import Receipt, ReceiptUpsert

logger = logging.getLogger("vea.store")

NOTIFICATION_HISTORY_LIMIT = 200


# ========================================
# SHARED RECORD RULES
# ========================================
def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid4()}"


def reference_key(reference: Optional[str]) -> str:
    return (reference or "").strip().lower()


def payment_lookup_keys(payment: PaymentInitialization) -> List[str]:
    keys = [reference_key(payment.reference), reference_key(payment.paystack_reference)]
    return [key for key in dict.fromkeys(keys) if key]


def generate_receipt_number(prefix: str, timestamp: datetime) -> str:
    return f"{prefix}/{timestamp.strftime('%Y%m%d')}/{secrets.token_hex(3).upper()}"


def generate_collection_receipt_number(timestamp: datetime) -> str:
    return f"COL-{timestamp.strftime('%Y%m%d')}-{secrets.token_hex(3).upper()}"


def canonical_receipt_number(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = re.sub(r"[^0-9a-zA-Z/\-]", "", value).strip()
    return cleaned.upper() or None


def _normalise_text(value: Optional[str]) -> str:
    if not isinstance(value, str):
        return ""
    return re.sub(r"\s+", " ", value).strip()


def build_payment(payload: PaymentInitializationCreate) -> PaymentInitialization:
    now = utcnow()
    return PaymentInitialization(
        id=generate_id("payment_init"),
        reference=payload.reference,
        paystack_reference=payload.paystack_reference,
        amount=float(payload.amount),
        student_id=payload.student_id,
        payment_type=payload.payment_type,
        email=payload.email,
        status=payload.status or "pending",
        metadata=copy.deepcopy(payload.metadata),
        created_at=now,
        updated_at=now,
    )


def merge_initialization(existing: PaymentInitialization, payload: PaymentInitializationCreate) -> PaymentInitialization:
    """Re-initializing a known reference refreshes the record in place."""
    return existing.model_copy(update={
        "amount": float(payload.amount),
        "student_id": payload.student_id,
        "payment_type": payload.payment_type,
        "email": payload.email,
        "status": payload.status or existing.status,
        "paystack_reference": payload.paystack_reference or existing.paystack_reference,
        "metadata": copy.deepcopy(payload.metadata) if payload.metadata else existing.metadata,
        "updated_at": utcnow(),
    }, deep=True)


def apply_payment_update(existing: PaymentInitialization, updates: PaymentRecordUpdate) -> PaymentInitialization:
    """Overwrite the fields that were set; shallow-merge metadata (new keys win)."""
    changes = updates.model_dump(exclude_unset=True, exclude={"metadata"})
    if "student_id" in changes:
        changes["student_id"] = changes["student_id"] or None
    if "paystack_reference" in changes:
        changes["paystack_reference"] = changes["paystack_reference"] or None
    if changes.get("amount") is not None:
        changes["amount"] = float(changes["amount"])

    if updates.metadata is not None:
        merged = dict(existing.metadata or {})
        merged.update(copy.deepcopy(updates.metadata))
        changes["metadata"] = merged

    changes["updated_at"] = utcnow()
    return existing.model_copy(update=changes, deep=True)


def build_receipt(payload: ReceiptUpsert, prefix: str, taken: Iterable[str] = ()) -> Receipt:
    now = utcnow()
    receipt_number = (payload.receipt_number or "").strip()
    if not receipt_number:
        taken = set(taken)
        receipt_number = generate_receipt_number(prefix, now)
        while receipt_number in taken:
            receipt_number = generate_receipt_number(prefix, now)

    return Receipt(
        id=generate_id("receipt"),
        payment_id=payload.payment_id,
        receipt_number=receipt_number,
        student_name=payload.student_name,
        amount=float(payload.amount),
        reference=payload.reference,
        issued_by=payload.issued_by,
        metadata=copy.deepcopy(payload.metadata),
        date_issued=payload.date_issued or now,
        created_at=now,
        updated_at=now,
    )


def merge_receipt(existing: Receipt, payload: ReceiptUpsert, prefix: str) -> Receipt:
    """Mutable fields follow the payload; id and receipt_number are kept."""
    now = utcnow()
    updated = existing.model_copy(update={
        "student_name": payload.student_name or existing.student_name,
        "amount": float(payload.amount),
        "reference": payload.reference or existing.reference,
        "issued_by": payload.issued_by or existing.issued_by,
        "metadata": copy.deepcopy(payload.metadata) if payload.metadata is not None else existing.metadata,
        "date_issued": payload.date_issued or existing.date_issued,
        "updated_at": now,
    }, deep=True)
    if not updated.receipt_number.strip():
        updated.receipt_number = generate_receipt_number(prefix, now)
    return updated


def build_ledger_entry(
    details: SettlementDetails,
    context: ActorContext,
    existing_receipt_numbers: Iterable[str] = (),
) -> FeeLedgerEntry:
    student_name = _normalise_text(details.student_name)
    if not student_name:
        raise LedgerWriteError("Student name is required")

    payment_method = _normalise_text(details.payment_method)
    if not payment_method:
        raise LedgerWriteError("Payment method is required")

    term = _normalise_text(details.term)
    if not term:
        raise LedgerWriteError("Term is required")

    if details.amount is None or details.amount <= 0:
        raise LedgerWriteError("Amount must be a positive number")
    amount = round(float(details.amount), 2)

    now = utcnow()
    payment_date = details.payment_date or now

    receipt_candidate = canonical_receipt_number(details.receipt_number)
    if receipt_candidate:
        taken = {canonical_receipt_number(number) for number in existing_receipt_numbers}
        if receipt_candidate in taken:
            raise LedgerWriteError("Receipt number already exists")

    actor_name = _normalise_text(context.user_name) or context.user_name
    return FeeLedgerEntry(
        id=generate_id("fee_payment"),
        student_id=_normalise_text(details.student_id) or None,
        student_name=student_name,
        class_id=_normalise_text(details.class_id) or None,
        class_name=_normalise_text(details.class_name) or None,
        fee_type=_normalise_text(details.fee_type) or "General",
        amount=amount,
        payment_date=payment_date,
        payment_method=payment_method,
        receipt_number=receipt_candidate or generate_collection_receipt_number(payment_date),
        payment_reference=_normalise_text(details.payment_reference) or None,
        term=term,
        created_by=context.user_id,
        created_by_name=actor_name,
        last_modified_by=context.user_id,
        last_modified_by_name=actor_name,
        school_fee_config_id=_normalise_text(details.school_fee_config_id) or None,
        event_fee_ids=list(dict.fromkeys(i for i in (_normalise_text(v) for v in details.event_fee_ids) if i)),
        created_at=now,
        updated_at=now,
    )


# ========================================
# CONTRACT
# ========================================
class PaymentStore(ABC):
    receipt_prefix: str = "VEA"

    # --- payments ---
    @abstractmethod
    async def find_payment_by_reference(self, reference: str) -> Optional[PaymentInitialization]:
        """Match on reference OR paystackReference, trimmed and case-insensitive."""

    @abstractmethod
    async def get_payment(self, payment_id: str) -> Optional[PaymentInitialization]:
        ...

    @abstractmethod
    async def record_payment_initialization(self, payload: PaymentInitializationCreate) -> PaymentInitialization:
        ...

    @abstractmethod
    async def update_payment_record(self, payment_id: str, updates: PaymentRecordUpdate) -> Optional[PaymentInitialization]:
        """None when the id is unknown."""

    @abstractmethod
    async def list_payment_initializations(self) -> List[PaymentInitialization]:
        ...

    # --- receipts ---
    @abstractmethod
    async def create_or_update_receipt(self, payload: ReceiptUpsert) -> Receipt:
        ...

    @abstractmethod
    async def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        ...

    @abstractmethod
    async def list_receipts(self) -> List[Receipt]:
        ...

    # --- fee ledger ---
    @abstractmethod
    async def create_fee_payment_record(self, details: SettlementDetails, context: ActorContext) -> FeeLedgerEntry:
        ...

    @abstractmethod
    async def list_fee_payment_records(self, term: Optional[str] = None) -> List[FeeLedgerEntry]:
        ...

    # --- notifications ---
    @abstractmethod
    async def add_notification(self, notification: Notification) -> Notification:
        ...

    @abstractmethod
    async def list_notifications(self, role: Optional[str] = None, user_id: Optional[str] = None) -> List[Notification]:
        ...


def _term_key(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (value or "").strip().lower())


# ========================================
# IN-MEMORY
# ========================================
class MemoryPaymentStore(PaymentStore):
    def __init__(self, receipt_prefix: str = "VEA"):
        self.receipt_prefix = receipt_prefix
        self.payments: Dict[str, PaymentInitialization] = {}
        self.receipts: Dict[str, Receipt] = {}
        self.fee_payments: Dict[str, FeeLedgerEntry] = {}
        self.notifications: List[Notification] = []

    def _changed(self) -> None:
        """Hook for persistent subclasses."""

    # --- payments ---
    async def find_payment_by_reference(self, reference: str) -> Optional[PaymentInitialization]:
        key = reference_key(reference)
        if not key:
            return None
        for payment in self.payments.values():
            if key in payment_lookup_keys(payment):
                return payment.model_copy(deep=True)
        return None

    async def get_payment(self, payment_id: str) -> Optional[PaymentInitialization]:
        payment = self.payments.get(payment_id)
        return payment.model_copy(deep=True) if payment else None

    async def record_payment_initialization(self, payload: PaymentInitializationCreate) -> PaymentInitialization:
        keys = {reference_key(payload.reference), reference_key(payload.paystack_reference)} - {""}
        existing = next(
            (p for p in self.payments.values() if keys.intersection(payment_lookup_keys(p))),
            None,
        )
        record = merge_initialization(existing, payload) if existing else build_payment(payload)
        self.payments[record.id] = record
        self._changed()
        return record.model_copy(deep=True)

    async def update_payment_record(self, payment_id: str, updates: PaymentRecordUpdate) -> Optional[PaymentInitialization]:
        existing = self.payments.get(payment_id)
        if existing is None:
            return None
        updated = apply_payment_update(existing, updates)
        self.payments[payment_id] = updated
        self._changed()
        return updated.model_copy(deep=True)

    async def list_payment_initializations(self) -> List[PaymentInitialization]:
        return [p.model_copy(deep=True) for p in self.payments.values()]

    # --- receipts ---
    async def create_or_update_receipt(self, payload: ReceiptUpsert) -> Receipt:
        existing = next((r for r in self.receipts.values() if r.payment_id == payload.payment_id), None)
        if existing:
            record = merge_receipt(existing, payload, self.receipt_prefix)
        else:
            taken = [r.receipt_number for r in self.receipts.values()]
            record = build_receipt(payload, self.receipt_prefix, taken)
        self.receipts[record.id] = record
        self._changed()
        return record.model_copy(deep=True)

    async def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        receipt = self.receipts.get(receipt_id)
        return receipt.model_copy(deep=True) if receipt else None

    async def list_receipts(self) -> List[Receipt]:
        receipts = sorted(self.receipts.values(), key=lambda r: r.date_issued, reverse=True)
        return [r.model_copy(deep=True) for r in receipts]

    # --- fee ledger ---
    async def create_fee_payment_record(self, details: SettlementDetails, context: ActorContext) -> FeeLedgerEntry:
        active_numbers = [e.receipt_number for e in self.fee_payments.values() if not e.deleted_at]
        entry = build_ledger_entry(details, context, active_numbers)
        self.fee_payments[entry.id] = entry
        self._changed()
        return entry.model_copy(deep=True)

    async def list_fee_payment_records(self, term: Optional[str] = None) -> List[FeeLedgerEntry]:
        wanted = _term_key(term)
        entries = [
            e for e in self.fee_payments.values()
            if not e.deleted_at and (not wanted or _term_key(e.term) == wanted)
        ]
        entries.sort(key=lambda e: e.payment_date, reverse=True)
        return [e.model_copy(deep=True) for e in entries]

    # --- notifications ---
    async def add_notification(self, notification: Notification) -> Notification:
        self.notifications = [notification.model_copy(deep=True)] + self.notifications[: NOTIFICATION_HISTORY_LIMIT - 1]
        self._changed()
        return notification

    async def list_notifications(self, role: Optional[str] = None, user_id: Optional[str] = None) -> List[Notification]:
        return [
            n.model_copy(deep=True) for n in self.notifications
            if n.is_addressed_to(user_id=user_id, role=role)
        ]


# ========================================
# JSON FILE
# ========================================
class JsonFilePaymentStore(MemoryPaymentStore):
    """Memory store that rewrites a JSON snapshot after every change."""

    def __init__(self, path: str, receipt_prefix: str = "VEA"):
        super().__init__(receipt_prefix=receipt_prefix)
        self.path = path
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            return
        with open(self.path, "r", encoding="utf-8") as fh:
            snapshot = json.load(fh)

        for raw in snapshot.get("payments", []):
            record = PaymentInitialization.model_validate(raw)
            self.payments[record.id] = record
        for raw in snapshot.get("receipts", []):
            record = Receipt.model_validate(raw)
            self.receipts[record.id] = record
        for raw in snapshot.get("feePayments", []):
            record = FeeLedgerEntry.model_validate(raw)
            self.fee_payments[record.id] = record
        self.notifications = [Notification.model_validate(raw) for raw in snapshot.get("notifications", [])]
        logger.info(f"Loaded {len(self.payments)} payments from {self.path}")

    def _changed(self) -> None:
        snapshot = {
            "payments": [p.to_wire() for p in self.payments.values()],
            "receipts": [r.to_wire() for r in self.receipts.values()],
            "feePayments": [e.to_wire() for e in self.fee_payments.values()],
            "notifications": [n.to_wire() for n in self.notifications],
        }
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(snapshot, fh, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)


# ========================================
# FIRESTORE
# ========================================
class FirestorePaymentStore(PaymentStore):
    def __init__(self, db, receipt_prefix: str = "VEA"):
        self.db = db
        self.receipt_prefix = receipt_prefix

    @staticmethod
    def _payment_doc(payment: PaymentInitialization) -> dict:
        doc = payment.to_wire()
        doc["lookupKeys"] = payment_lookup_keys(payment)
        return doc

    @staticmethod
    def _payment_from(snapshot) -> PaymentInitialization:
        data = snapshot.to_dict()
        data.pop("lookupKeys", None)
        return PaymentInitialization.model_validate(data)

    async def _first(self, query):
        docs = await firestore_run(lambda: list(query.limit(1).stream()))
        return docs[0] if docs else None

    # --- payments ---
    async def find_payment_by_reference(self, reference: str) -> Optional[PaymentInitialization]:
        key = reference_key(reference)
        if not key:
            return None
        query = self.db.collection("payments").where(filter=FieldFilter("lookupKeys", "array_contains", key))
        doc = await self._first(query)
        return self._payment_from(doc) if doc else None

    async def get_payment(self, payment_id: str) -> Optional[PaymentInitialization]:
        doc = await firestore_run(self.db.collection("payments").document(payment_id).get)
        return self._payment_from(doc) if doc.exists else None

    async def record_payment_initialization(self, payload: PaymentInitializationCreate) -> PaymentInitialization:
        existing = await self.find_payment_by_reference(payload.reference)
        if existing is None and payload.paystack_reference:
            existing = await self.find_payment_by_reference(payload.paystack_reference)

        record = merge_initialization(existing, payload) if existing else build_payment(payload)
        await firestore_run(self.db.collection("payments").document(record.id).set, self._payment_doc(record))
        return record

    async def update_payment_record(self, payment_id: str, updates: PaymentRecordUpdate) -> Optional[PaymentInitialization]:
        existing = await self.get_payment(payment_id)
        if existing is None:
            return None
        updated = apply_payment_update(existing, updates)
        await firestore_run(self.db.collection("payments").document(payment_id).set, self._payment_doc(updated))
        return updated

    async def list_payment_initializations(self) -> List[PaymentInitialization]:
        docs = await firestore_run(lambda: list(self.db.collection("payments").stream()))
        return [self._payment_from(doc) for doc in docs]

    # --- receipts ---
    async def create_or_update_receipt(self, payload: ReceiptUpsert) -> Receipt:
        receipts = self.db.collection("receipts")
        doc = await self._first(receipts.where(filter=FieldFilter("paymentId", "==", payload.payment_id)))
        if doc:
            record = merge_receipt(Receipt.model_validate(doc.to_dict()), payload, self.receipt_prefix)
        else:
            record = build_receipt(payload, self.receipt_prefix)
        await firestore_run(receipts.document(record.id).set, record.to_wire())
        return record

    async def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        doc = await firestore_run(self.db.collection("receipts").document(receipt_id).get)
        return Receipt.model_validate(doc.to_dict()) if doc.exists else None

    async def list_receipts(self) -> List[Receipt]:
        docs = await firestore_run(lambda: list(self.db.collection("receipts").stream()))
        receipts = [Receipt.model_validate(doc.to_dict()) for doc in docs]
        return sorted(receipts, key=lambda r: r.date_issued, reverse=True)

    # --- fee ledger ---
    async def create_fee_payment_record(self, details: SettlementDetails, context: ActorContext) -> FeeLedgerEntry:
        ledger = self.db.collection("fee_payments")
        taken = []
        candidate = canonical_receipt_number(details.receipt_number)
        if candidate:
            doc = await self._first(ledger.where(filter=FieldFilter("receiptNumber", "==", candidate)))
            if doc and not doc.to_dict().get("deletedAt"):
                taken.append(candidate)

        entry = build_ledger_entry(details, context, taken)
        await firestore_run(ledger.document(entry.id).set, entry.to_wire())
        return entry

    async def list_fee_payment_records(self, term: Optional[str] = None) -> List[FeeLedgerEntry]:
        docs = await firestore_run(lambda: list(self.db.collection("fee_payments").stream()))
        wanted = _term_key(term)
        entries = [FeeLedgerEntry.model_validate(doc.to_dict()) for doc in docs]
        entries = [
            e for e in entries
            if not e.deleted_at and (not wanted or _term_key(e.term) == wanted)
        ]
        return sorted(entries, key=lambda e: e.payment_date, reverse=True)

    # --- notifications ---
    async def add_notification(self, notification: Notification) -> Notification:
        await firestore_run(
            self.db.collection("notifications").document(notification.id).set,
            notification.to_wire(),
        )
        return notification

    async def list_notifications(self, role: Optional[str] = None, user_id: Optional[str] = None) -> List[Notification]:
        query = (
            self.db.collection("notifications")
            .order_by("createdAt", direction="DESCENDING")
            .limit(NOTIFICATION_HISTORY_LIMIT)
        )
        docs = await firestore_run(lambda: list(query.stream()))
        notifications = [Notification.model_validate(doc.to_dict()) for doc in docs]
        return [n for n in notifications if n.is_addressed_to(user_id=user_id, role=role)]


# ========================================
# BACKEND SELECTION
# ========================================
def get_store(settings) -> PaymentStore:
    backend = settings.STORAGE_BACKEND
    if backend == "file":
        logger.info(f"Using JSON file store at {settings.DATA_FILE}")
        return JsonFilePaymentStore(settings.DATA_FILE, receipt_prefix=settings.RECEIPT_PREFIX)
    if backend == "firestore":
        logger.info("Using Firestore store")
        return FirestorePaymentStore(get_firestore(settings.FIREBASE_KEY), receipt_prefix=settings.RECEIPT_PREFIX)
    logger.info("Using in-memory store")
    return MemoryPaymentStore(receipt_prefix=settings.RECEIPT_PREFIX)
