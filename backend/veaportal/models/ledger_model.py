# models/ledger_model.py
from pydantic import Field
from typing import List, Optional
from datetime import datetime

from veaportal.models.base import PortalModel, utcnow


class ActorContext(PortalModel):
    """Who a ledger write is attributed to."""
    user_id: str
    user_name: str


# Fixed identity for settlements written by the verification pipeline
SYSTEM_SETTLEMENT_ACTOR = ActorContext(
    user_id="system_paystack",
    user_name="Automated Paystack Settlement",
)


class SettlementDetails(PortalModel):
    student_id: Optional[str] = None
    student_name: str
    class_id: Optional[str] = None
    class_name: Optional[str] = None
    fee_type: str = "General"
    amount: float                      # school net, not gross
    payment_date: Optional[datetime] = None
    payment_method: str
    payment_reference: Optional[str] = None
    term: str
    receipt_number: Optional[str] = None
    school_fee_config_id: Optional[str] = None
    event_fee_ids: List[str] = Field(default_factory=list)


class FeeLedgerEntry(PortalModel):
    id: str
    student_id: Optional[str] = None
    student_name: str
    class_id: Optional[str] = None
    class_name: Optional[str] = None
    fee_type: str
    amount: float
    payment_date: datetime
    payment_method: str
    receipt_number: str
    payment_reference: Optional[str] = None
    term: str

    created_by: str
    created_by_name: str
    last_modified_by: str
    last_modified_by_name: str

    school_fee_config_id: Optional[str] = None
    event_fee_ids: List[str] = Field(default_factory=list)

    deleted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class DeveloperSplitAuditEntry(PortalModel):
    reference: str
    gross_amount_kobo: int
    developer_share_kobo: int
    school_net_amount_kobo: int
    split_code: str
    subaccount_code: str
    recorded_at: datetime = Field(default_factory=utcnow)
