# services/verification.py
"""
Paystack verification pipeline.

A verification is a short sequence of named steps. Each step declares what
happens when it fails:

* ``FATAL`` - the failure escapes and the request ends in a 500
* ``LOG_AND_CONTINUE`` - the failure is logged and the pipeline moves on

Only the gateway call, the payment upsert and the receipt upsert are fatal.
Everything downstream of "payment marked completed" is best-effort, so a
payer who has paid is never shown an error because the ledger or the
notification feed is unavailable.
"""
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional

from veaportal.core.audit import record_developer_split
from veaportal.core.notifications import NotificationHub, build_payment_notification, publish_notification
from veaportal.core.security import sanitize_input
from veaportal.models.base import utcnow
from veaportal.models.ledger_model import DeveloperSplitAuditEntry, SYSTEM_SETTLEMENT_ACTOR, SettlementDetails
from veaportal.models.payment_model import PaymentInitialization, PaymentInitializationCreate, PaymentRecordUpdate
from veaportal.models.receipt_model import Receipt, ReceiptUpsert
from veaportal.services.metadata import (
    PaymentMetadata,
    humanize_fee_type,
    normalize_metadata,
    stamp_ledger_id,
    stamp_settlement,
)
from veaportal.services.payment_store import PaymentStore, reference_key
from veaportal.services.split import RevenueSplit, kobo_to_naira, split_revenue

logger = logging.getLogger("vea.verification")

RECEIPT_ISSUER = "Automated Verification"
UNSPECIFIED_TERM = "Unspecified"

MESSAGE_REFERENCE_REQUIRED = "Payment reference is required"
MESSAGE_VERIFIED = "Payment verified successfully"
MESSAGE_FAILED = "Payment verification failed"
MESSAGE_INTERNAL_ERROR = "Internal server error"


# ========================================
# STEPS
# ========================================
class StepPolicy(str, Enum):
    FATAL = "fatal"
    LOG_AND_CONTINUE = "log_and_continue"


@dataclass
class StepResult:
    step: str
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


async def run_step(step: str, policy: StepPolicy, fn, *args, **kwargs) -> StepResult:
    """Run one pipeline step and apply its failure policy."""
    try:
        value = fn(*args, **kwargs)
        if inspect.isawaitable(value):
            value = await value
        return StepResult(step=step, ok=True, value=value)
    except Exception as e:
        if policy is StepPolicy.FATAL:
            logger.error(f"❌ Step '{step}' failed: {e}")
            raise
        logger.error(f"⚠️ Step '{step}' failed, continuing: {e}", exc_info=True)
        return StepResult(step=step, ok=False, error=e)


@dataclass
class VerificationOutcome:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code == 200


def _failure(status_code: int, message: str) -> VerificationOutcome:
    return VerificationOutcome(status_code, {"status": False, "message": message})


# ----------------------------
# Gateway payload helpers
# ----------------------------
def _amount_kobo(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return max(int(Decimal(str(value)).to_integral_value(rounding=ROUND_HALF_UP)), 0)
    except (InvalidOperation, ValueError, TypeError):
        return 0


def naira_to_kobo(amount: Any) -> int:
    try:
        return max(int((Decimal(str(amount)) * 100).to_integral_value(rounding=ROUND_HALF_UP)), 0)
    except (InvalidOperation, ValueError, TypeError):
        return 0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp; values without an offset are taken as UTC."""
    if isinstance(value, str) and value.strip():
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _customer_email(gateway_data: Dict[str, Any]) -> str:
    customer = gateway_data.get("customer")
    if isinstance(customer, dict) and isinstance(customer.get("email"), str):
        return sanitize_input(customer["email"])
    return ""


# ========================================
# SERVICE
# ========================================
class VerificationService:
    def __init__(self, settings, store: PaymentStore, gateway, hub: Optional[NotificationHub] = None):
        self.settings = settings
        self.store = store
        self.gateway = gateway
        self.hub = hub

    # ----------------------------
    # Entry point
    # ----------------------------
    async def verify(self, reference: Optional[str]) -> VerificationOutcome:
        if not isinstance(reference, str) or not reference.strip():
            return _failure(400, MESSAGE_REFERENCE_REQUIRED)

        try:
            return await self._verify(reference.strip())
        except Exception as e:
            logger.error(f"❌ Payment verification error for {reference!r}: {e}", exc_info=True)
            return _failure(500, MESSAGE_INTERNAL_ERROR)

    async def _verify(self, reference: str) -> VerificationOutcome:
        sanitized_reference = sanitize_input(reference)

        result = await run_step("gateway_verify", StepPolicy.FATAL, self.gateway.verify_transaction, reference)
        response = result.value
        gateway_data = response.get("data")

        if not (response.get("status") and isinstance(gateway_data, dict) and gateway_data.get("status") == "success"):
            logger.warning(
                f"Paystack did not confirm {sanitized_reference}: {response.get('message') or 'no message'}"
            )
            await run_step("mark_failed", StepPolicy.LOG_AND_CONTINUE, self._mark_failed, sanitized_reference)
            return _failure(400, MESSAGE_FAILED)

        return await self._reconcile(sanitized_reference, gateway_data)

    # ----------------------------
    # Failure branch
    # ----------------------------
    async def _mark_failed(self, reference: str) -> Optional[PaymentInitialization]:
        existing = await self.store.find_payment_by_reference(reference)
        if existing is None:
            return None
        return await self.store.update_payment_record(existing.id, PaymentRecordUpdate(
            status="failed",
            metadata={"lastVerificationAttempt": utcnow().isoformat()},
        ))

    # ----------------------------
    # Success branch
    # ----------------------------
    async def _reconcile(self, sanitized_reference: str, gateway_data: Dict[str, Any]) -> VerificationOutcome:
        verified_at = utcnow()
        total_kobo = _amount_kobo(gateway_data.get("amount"))
        amount = kobo_to_naira(total_kobo)

        gateway_reference = gateway_data.get("reference")
        paystack_reference = (
            sanitize_input(gateway_reference)
            if isinstance(gateway_reference, str) and gateway_reference.strip()
            else sanitized_reference
        )
        customer_email = _customer_email(gateway_data)

        canonical, metadata = normalize_metadata(
            gateway_data.get("metadata"),
            channel=gateway_data.get("channel"),
            customer_email=customer_email,
        )
        stamp_settlement(metadata, paystack_reference=paystack_reference, amount=amount, verified_at=verified_at)

        payment = await self.store.find_payment_by_reference(paystack_reference)
        if payment is None and reference_key(paystack_reference) != reference_key(sanitized_reference):
            payment = await self.store.find_payment_by_reference(sanitized_reference)

        ledger_payment_id = None
        if payment is not None:
            ledger_payment_id = payment.ledger_payment_id()
            # Stored record may know the student better than the gateway payload
            stored = PaymentMetadata.from_bag(payment.metadata, channel=canonical.channel)
            if not stored.student_id and payment.student_id:
                stored.student_id = payment.student_id
            canonical = canonical.fill_from(stored)
            canonical.apply(metadata)

        split = split_revenue(total_kobo, self.settings.DEVELOPER_REVENUE_SHARE_PERCENTAGE)

        if not ledger_payment_id:
            details = self._settlement_details(canonical, split, gateway_data, paystack_reference, verified_at)
            ledger = await run_step(
                "ledger_write", StepPolicy.LOG_AND_CONTINUE,
                self.store.create_fee_payment_record, details, SYSTEM_SETTLEMENT_ACTOR,
            )
            if ledger.ok:
                ledger_payment_id = ledger.value.id
                logger.info(f"📒 Ledger entry {ledger_payment_id} recorded for {paystack_reference}")
        if ledger_payment_id:
            stamp_ledger_id(metadata, ledger_payment_id)

        await run_step(
            "developer_split_audit", StepPolicy.LOG_AND_CONTINUE,
            self._audit_split, paystack_reference, split, verified_at,
        )

        upsert = await run_step(
            "payment_upsert", StepPolicy.FATAL,
            self._upsert_payment, payment, canonical, metadata, paystack_reference, amount, customer_email,
        )
        payment = upsert.value

        final = canonical.fill_from(
            PaymentMetadata.from_bag(payment.metadata, channel=canonical.channel, customer_email=customer_email)
        )
        final.apply(metadata)

        receipt_result = await run_step(
            "receipt_upsert", StepPolicy.FATAL,
            self._upsert_receipt, payment, final, paystack_reference, amount, verified_at,
        )
        receipt: Receipt = receipt_result.value

        await run_step(
            "notify", StepPolicy.LOG_AND_CONTINUE,
            self._notify, payment, final, paystack_reference, amount,
        )

        logger.info(f"✅ Payment {paystack_reference} verified | {amount} | payment={payment.id}")
        return VerificationOutcome(200, {
            "status": True,
            "message": MESSAGE_VERIFIED,
            "data": {
                "reference": paystack_reference,
                "amount": amount,
                "customer": gateway_data.get("customer"),
                "metadata": metadata,
                "paid_at": gateway_data.get("paid_at"),
                "payment": payment.to_wire(),
                "receipt": receipt.to_wire(),
            },
        })

    # ----------------------------
    # Step bodies
    # ----------------------------
    @staticmethod
    def _settlement_details(
        canonical: PaymentMetadata,
        split: RevenueSplit,
        gateway_data: Dict[str, Any],
        paystack_reference: str,
        verified_at: datetime,
    ) -> SettlementDetails:
        return SettlementDetails(
            student_id=canonical.student_id,
            student_name=canonical.student_name,
            class_id=canonical.class_id,
            class_name=canonical.class_name,
            fee_type=humanize_fee_type(canonical.payment_type),
            amount=split.school_net_amount,
            payment_date=parse_timestamp(gateway_data.get("paid_at")) or verified_at,
            payment_method=canonical.channel,
            payment_reference=paystack_reference,
            term=canonical.term or UNSPECIFIED_TERM,
            school_fee_config_id=canonical.school_fee_config_id,
            event_fee_ids=list(canonical.event_fee_ids),
        )

    async def _audit_split(self, reference: str, split: RevenueSplit, recorded_at: datetime) -> bool:
        configuration = await self.gateway.ensure_partner_split_configuration()
        entry = DeveloperSplitAuditEntry(
            reference=reference,
            gross_amount_kobo=split.gross_kobo,
            developer_share_kobo=split.developer_share_kobo,
            school_net_amount_kobo=split.school_net_kobo,
            split_code=configuration.split_code,
            subaccount_code=configuration.subaccount_code,
            recorded_at=recorded_at,
        )
        return record_developer_split(entry, self.settings.AUDIT_LOG_PATH)

    async def _upsert_payment(
        self,
        payment: Optional[PaymentInitialization],
        canonical: PaymentMetadata,
        metadata: Dict[str, Any],
        paystack_reference: str,
        amount: float,
        customer_email: str,
    ) -> PaymentInitialization:
        if payment is None:
            return await self.store.record_payment_initialization(PaymentInitializationCreate(
                reference=paystack_reference,
                amount=amount,
                student_id=canonical.student_id,
                payment_type=canonical.payment_type,
                email=customer_email or self.settings.FALLBACK_PAYMENT_EMAIL,
                status="completed",
                paystack_reference=paystack_reference,
                metadata=metadata,
            ))

        updated = await self.store.update_payment_record(payment.id, PaymentRecordUpdate(
            status="completed",
            amount=amount,
            student_id=canonical.student_id or payment.student_id,
            payment_type=canonical.payment_type,
            email=customer_email or payment.email,
            reference=paystack_reference,
            paystack_reference=paystack_reference,
            metadata=metadata,
        ))
        return updated or payment

    async def _upsert_receipt(
        self,
        payment: PaymentInitialization,
        final: PaymentMetadata,
        paystack_reference: str,
        amount: float,
        verified_at: datetime,
    ) -> Receipt:
        receipt_metadata = {
            "paymentType": final.payment_type,
            "term": final.term,
            "session": final.session,
            "verifiedAt": verified_at.isoformat(),
            "channel": final.channel,
        }
        return await self.store.create_or_update_receipt(ReceiptUpsert(
            payment_id=payment.id,
            student_name=final.student_name,
            amount=amount,
            reference=paystack_reference,
            issued_by=RECEIPT_ISSUER,
            metadata={k: v for k, v in receipt_metadata.items() if v is not None},
        ))

    async def _notify(self, payment: PaymentInitialization, final: PaymentMetadata, reference: str, amount: float):
        notification = build_payment_notification(
            payment_id=payment.id,
            student_id=final.student_id,
            student_name=final.student_name,
            parent_name=final.parent_name,
            parent_email=final.parent_email,
            amount=amount,
            payment_type=final.payment_type,
            reference=reference,
            currency_symbol=self.settings.CURRENCY_SYMBOL,
        )
        await publish_notification(notification, store=self.store, target=self.hub)
        return notification

    # ========================================
    # LEDGER BACKFILL
    # ========================================
    async def backfill_ledger(self) -> int:
        """
        Write ledger entries for completed payments that never got one, and
        stamp the new id into their metadata. Returns how many were written.
        """
        written = 0
        for payment in await self.store.list_payment_initializations():
            if payment.status != "completed" or payment.ledger_payment_id():
                continue

            canonical = PaymentMetadata.from_bag(payment.metadata)
            if not canonical.student_id and payment.student_id:
                canonical.student_id = payment.student_id
            if canonical.payment_type == "general" and payment.payment_type:
                canonical.payment_type = payment.payment_type

            split = split_revenue(naira_to_kobo(payment.amount), self.settings.DEVELOPER_REVENUE_SHARE_PERCENTAGE)
            settled_at = parse_timestamp(payment.metadata.get("verifiedAt")) or payment.updated_at
            details = self._settlement_details(
                canonical, split, {}, payment.paystack_reference or payment.reference, settled_at,
            )

            ledger = await run_step(
                "ledger_backfill", StepPolicy.LOG_AND_CONTINUE,
                self.store.create_fee_payment_record, details, SYSTEM_SETTLEMENT_ACTOR,
            )
            if not ledger.ok:
                continue

            written += 1
            stamped = await run_step(
                "ledger_backfill_stamp", StepPolicy.LOG_AND_CONTINUE,
                self.store.update_payment_record,
                payment.id, PaymentRecordUpdate(metadata=stamp_ledger_id({}, ledger.value.id)),
            )
            if not stamped.ok:
                logger.error(f"❌ Ledger entry {ledger.value.id} written for payment {payment.id} but not stamped")

        logger.info(f"📒 Ledger backfill wrote {written} entries")
        return written
