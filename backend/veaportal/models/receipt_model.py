# models/receipt_model.py
from pydantic import Field
from typing import Any, Dict, Optional
from datetime import datetime

from veaportal.models.base import PortalModel, utcnow


class Receipt(PortalModel):
    """One receipt per payment. receipt_number never changes once issued."""
    id: str
    payment_id: str
    receipt_number: str
    student_name: str
    amount: float                       # gross, what the payer actually paid
    reference: Optional[str] = None
    issued_by: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    date_issued: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ReceiptUpsert(PortalModel):
    payment_id: str
    student_name: str
    amount: float = Field(..., ge=0)
    reference: Optional[str] = None
    issued_by: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    receipt_number: Optional[str] = None
    date_issued: Optional[datetime] = None


class CreateReceiptRequest(PortalModel):
    """Accountant-entered receipt. Validated by the route so errors stay 400s."""
    payment_id: Optional[str] = None
    student_name: Optional[str] = None
    amount: Optional[float] = None
    reference: Optional[str] = None
    issued_by: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    receipt_number: Optional[str] = None
    date_issued: Optional[str] = None
