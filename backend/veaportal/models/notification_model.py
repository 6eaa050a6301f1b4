# models/notification_model.py
from pydantic import Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from uuid import uuid4

from veaportal.models.base import PortalModel, utcnow

PAYMENT_NOTIFICATION_ROLES = ["admin", "super_admin", "accountant"]


class Notification(PortalModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str
    body: str
    category: str = "info"
    created_at: datetime = Field(default_factory=utcnow)
    target_user_ids: List[str] = Field(default_factory=list)
    target_roles: List[str] = Field(default_factory=list)
    action_url: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)

    def is_addressed_to(self, user_id: Optional[str] = None, role: Optional[str] = None) -> bool:
        if user_id and user_id in self.target_user_ids:
            return True
        if role and role in self.target_roles:
            return True
        return "all" in self.target_roles
