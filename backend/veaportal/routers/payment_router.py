# routers/payment_router.py
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from typing import Optional
import logging

from veaportal.core.config import settings
from veaportal.core.deps import get_gateway, get_payment_store, get_verification_service
from veaportal.core.errors import PaymentError
from veaportal.core.security import sanitize_input
from veaportal.models.base import utcnow
from veaportal.models.payment_model import (
    InitializePaymentRequest,
    PaymentRecordUpdate,
    UpdatePaymentRecordRequest,
)
from veaportal.services.initialization import initialize_payment
from veaportal.services.metadata import set_both
from veaportal.services.payment_store import PaymentStore
from veaportal.services.verification import VerificationService

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = logging.getLogger("vea")


# ========================================
# VERIFY (redirect callback)
# ========================================
@router.get("/verify")
async def verify_payment(
    reference: Optional[str] = Query(None),
    service: VerificationService = Depends(get_verification_service),
):
    outcome = await service.verify(reference)
    return JSONResponse(status_code=outcome.status_code, content=outcome.body)


# ========================================
# INITIALIZE
# ========================================
@router.post("/initialize")
async def initialize(
    payload: InitializePaymentRequest,
    store: PaymentStore = Depends(get_payment_store),
    gateway=Depends(get_gateway),
):
    try:
        return await initialize_payment(settings, store, gateway, payload)
    except PaymentError as e:
        status_code = e.status_code if e.status_code == 400 else 500
        return JSONResponse(status_code=status_code, content={"status": False, "message": e.message})


# ========================================
# PAYMENT RECORDS
# ========================================
def _normalize_status(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    status = sanitize_input(value).lower()
    return status if status in ("completed", "failed") else "pending"


@router.get("/records")
async def list_payment_records(store: PaymentStore = Depends(get_payment_store)):
    payments = await store.list_payment_initializations()
    return {"payments": [p.to_wire() for p in payments]}


@router.put("/records")
async def update_payment_record(
    payload: UpdatePaymentRecordRequest,
    store: PaymentStore = Depends(get_payment_store),
):
    if not payload.id:
        raise HTTPException(400, "Payment ID is required")

    metadata = {}
    if payload.access_granted is not None:
        metadata["accessGranted"] = payload.access_granted
        metadata["accessGrantedAt"] = utcnow().isoformat() if payload.access_granted else None
    if payload.student_name is not None:
        set_both(metadata, "studentName", "student_name", sanitize_input(payload.student_name))
    if payload.parent_name is not None:
        set_both(metadata, "parentName", "parent_name", sanitize_input(payload.parent_name))
    if payload.method is not None:
        metadata["method"] = sanitize_input(payload.method)
    metadata.update(payload.metadata or {})

    changes = {"metadata": metadata}
    if payload.status:
        changes["status"] = _normalize_status(payload.status)
    if payload.amount is not None:
        changes["amount"] = payload.amount
    if payload.student_id:
        changes["student_id"] = sanitize_input(payload.student_id)
    if payload.payment_type:
        changes["payment_type"] = sanitize_input(payload.payment_type)
    if payload.email:
        changes["email"] = sanitize_input(payload.email)
    if payload.reference:
        changes["reference"] = sanitize_input(payload.reference)

    updated = await store.update_payment_record(sanitize_input(payload.id), PaymentRecordUpdate(**changes))
    if updated is None:
        raise HTTPException(404, "Payment not found")

    logger.info(f"Payment record {updated.id} updated")
    return {"payment": updated.to_wire(), "message": "Payment updated successfully"}


# ========================================
# FEE LEDGER
# ========================================
@router.get("/ledger")
async def list_ledger(
    term: Optional[str] = Query(None),
    store: PaymentStore = Depends(get_payment_store),
):
    entries = await store.list_fee_payment_records(term=sanitize_input(term) if term else None)
    return {"payments": [e.to_wire() for e in entries]}
