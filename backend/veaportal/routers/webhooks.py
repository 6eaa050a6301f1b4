# routers/webhooks.py
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
import hashlib
import hmac
import json
import logging

from veaportal.core.config import settings
from veaportal.core.deps import get_verification_service
from veaportal.services.verification import VerificationService

router = APIRouter(prefix="/payments", tags=["Webhooks"])
logger = logging.getLogger("vea")


def signature_is_valid(payload: bytes, signature: str) -> bool:
    if not signature:
        return False
    computed = hmac.new(settings.paystack_secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()
    return hmac.compare_digest(computed, signature)


@router.post("/webhook")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: str = Header(None),
    service: VerificationService = Depends(get_verification_service),
):
    payload = await request.body()
    if not signature_is_valid(payload, x_paystack_signature):
        logger.warning("Invalid Paystack webhook signature received")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(400, "Invalid JSON payload")

    event_type = event.get("event") if isinstance(event, dict) else None
    event_data = (event.get("data") or {}) if isinstance(event, dict) else {}
    reference = event_data.get("reference") if isinstance(event_data, dict) else None

    if event_type != "charge.success" or not reference:
        logger.info(f"Webhook event ignored: {event_type}")
        return {"status": "ignored"}

    logger.info(f"✅ Webhook: charge.success for {reference}")
    outcome = await service.verify(str(reference))

    # 500 lets Paystack redeliver; anything else is final
    if outcome.status_code == 500:
        return JSONResponse(status_code=500, content=outcome.body)
    return {"status": "processed", "verified": outcome.ok}
