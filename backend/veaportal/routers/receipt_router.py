# routers/receipt_router.py → SCHOOL FEE RECEIPTS
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from veaportal.core.config import settings
from veaportal.core.deps import get_payment_store
from veaportal.core.security import sanitize_input
from veaportal.models.receipt_model import CreateReceiptRequest, ReceiptUpsert
from veaportal.services.payment_store import PaymentStore
from veaportal.services.receipt_pdf import render_receipt_pdf
from veaportal.services.verification import parse_timestamp

router = APIRouter(prefix="/payments/receipts", tags=["Receipts"])


@router.get("")
async def list_receipts(store: PaymentStore = Depends(get_payment_store)):
    receipts = await store.list_receipts()
    return {"receipts": [r.to_wire() for r in receipts]}


@router.post("")
async def create_receipt(payload: CreateReceiptRequest, store: PaymentStore = Depends(get_payment_store)):
    if not payload.payment_id or not payload.payment_id.strip():
        raise HTTPException(400, "Payment ID is required")
    if not payload.student_name or not payload.student_name.strip():
        raise HTTPException(400, "Student name is required")
    if payload.amount is None or payload.amount < 0:
        raise HTTPException(400, "Amount must be a valid non-negative number")

    receipt = await store.create_or_update_receipt(ReceiptUpsert(
        payment_id=sanitize_input(payload.payment_id),
        student_name=sanitize_input(payload.student_name),
        amount=payload.amount,
        reference=sanitize_input(payload.reference) if payload.reference is not None else None,
        issued_by=sanitize_input(payload.issued_by) if payload.issued_by is not None else None,
        metadata=payload.metadata,
        receipt_number=sanitize_input(payload.receipt_number) if payload.receipt_number is not None else None,
        date_issued=parse_timestamp(payload.date_issued),
    ))
    return {"receipt": receipt.to_wire(), "message": "Receipt generated successfully"}


@router.get("/{receipt_id}.pdf")
async def download_receipt(receipt_id: str, store: PaymentStore = Depends(get_payment_store)):
    receipt = await store.get_receipt(receipt_id)
    if receipt is None:
        raise HTTPException(404, "Receipt not found")

    buffer = render_receipt_pdf(
        receipt,
        school_name=settings.PROJECT_NAME,
        currency_symbol=settings.CURRENCY_SYMBOL,
        portal_url=settings.FRONTEND_URL,
    )
    filename = receipt.receipt_number.replace("/", "-")
    return StreamingResponse(
        buffer,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="receipt_{filename}.pdf"',
            "Cache-Control": "no-cache",
        },
    )
