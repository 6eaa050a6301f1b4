# services/initialization.py
import logging
from typing import Any, Dict

from veaportal.core.errors import GatewayError, GatewayRejected, PaymentValidationError
from veaportal.core.security import sanitize_input
from veaportal.models.base import utcnow
from veaportal.models.payment_model import InitializePaymentRequest, PaymentInitializationCreate
from veaportal.services.metadata import normalize_metadata, resolve_term_label, set_both
from veaportal.services.verification import StepPolicy, naira_to_kobo, run_step

logger = logging.getLogger("vea.initialize")


async def initialize_payment(settings, store, gateway, payload: InitializePaymentRequest) -> Dict[str, Any]:
    """
    Start a Paystack checkout and record it as a pending payment.

    Returns Paystack's initialize response with the public key attached.
    """
    email = sanitize_input(payload.email).lower()
    if not email or "@" not in email:
        raise PaymentValidationError("Valid email is required")

    amount_kobo = naira_to_kobo(payload.amount)
    if amount_kobo <= 0:
        raise PaymentValidationError("Amount must be greater than zero")

    raw_metadata = dict(payload.metadata or {})
    if payload.student_id:
        set_both(raw_metadata, "studentId", "student_id", payload.student_id)
    if payload.payment_type:
        set_both(raw_metadata, "paymentType", "payment_type", payload.payment_type)
    if payload.class_name:
        set_both(raw_metadata, "className", "class_name", payload.class_name)
    if payload.session:
        raw_metadata["session"] = payload.session
    raw_metadata["term"] = resolve_term_label(payload.term or raw_metadata.get("term"))

    canonical, metadata = normalize_metadata(raw_metadata)
    metadata["total_due"] = amount_kobo / 100

    try:
        split = await gateway.ensure_partner_split_configuration()
    except GatewayError as e:
        logger.error(f"Failed to prepare Paystack split configuration: {e.message}")
        raise

    response = await gateway.initialize_transaction(
        email=email,
        amount_kobo=amount_kobo,
        metadata=metadata,
        split_code=split.split_code,
        callback_url=f"{settings.FRONTEND_URL.rstrip('/')}/payment/callback",
    )
    if not response.get("status"):
        raise GatewayRejected(response.get("message") or "Payment initialization failed")

    data = response.get("data") or {}
    paystack_reference = data.get("reference")
    reference = paystack_reference or data.get("access_code") or f"paystack_{int(utcnow().timestamp() * 1000)}"

    await run_step(
        "record_initialization", StepPolicy.LOG_AND_CONTINUE,
        store.record_payment_initialization,
        PaymentInitializationCreate(
            reference=reference,
            amount=amount_kobo / 100,
            student_id=canonical.student_id,
            payment_type=canonical.payment_type,
            email=email,
            status="pending",
            paystack_reference=paystack_reference,
            metadata=metadata,
        ),
    )
    logger.info(f"💳 Payment initialized for {email} | {reference}")

    return {**response, "publicKey": settings.PAYSTACK_PUBLIC_KEY}
