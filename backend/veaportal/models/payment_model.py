# models/payment_model.py
from pydantic import Field, field_validator
from typing import Any, Dict, Literal, Optional
from datetime import datetime

from veaportal.models.base import PortalModel, utcnow

PaymentStatus = Literal["pending", "completed", "failed"]


class PaymentInitialization(PortalModel):
    """One payment intent / settlement, keyed by gateway reference."""
    id: str
    reference: str
    paystack_reference: Optional[str] = None

    amount: float
    student_id: Optional[str] = None
    payment_type: str = "general"
    email: str = ""

    status: PaymentStatus = "pending"
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_never_none(cls, value):
        return value or {}

    def ledger_payment_id(self) -> Optional[str]:
        """The ledger guard stamped into metadata, in either casing."""
        for key in ("ledgerPaymentId", "ledger_payment_id"):
            value = self.metadata.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return None


class PaymentInitializationCreate(PortalModel):
    reference: str
    amount: float
    student_id: Optional[str] = None
    payment_type: str = "general"
    email: str = ""
    status: Optional[PaymentStatus] = None
    paystack_reference: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PaymentRecordUpdate(PortalModel):
    """Partial update. Unset fields are left alone; metadata is shallow-merged."""
    reference: Optional[str] = None
    paystack_reference: Optional[str] = None
    amount: Optional[float] = None
    student_id: Optional[str] = None
    payment_type: Optional[str] = None
    email: Optional[str] = None
    status: Optional[PaymentStatus] = None
    metadata: Optional[Dict[str, Any]] = None


# ----------------------------
# Request bodies
# ----------------------------
class InitializePaymentRequest(PortalModel):
    email: str = ""
    amount: float = 0
    student_id: Optional[str] = None
    payment_type: Optional[str] = None
    term: Optional[str] = None
    session: Optional[str] = None
    class_name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UpdatePaymentRecordRequest(PortalModel):
    id: Optional[str] = None
    status: Optional[str] = None
    amount: Optional[float] = None
    student_id: Optional[str] = None
    payment_type: Optional[str] = None
    email: Optional[str] = None
    reference: Optional[str] = None
    access_granted: Optional[bool] = None
    student_name: Optional[str] = None
    parent_name: Optional[str] = None
    method: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
