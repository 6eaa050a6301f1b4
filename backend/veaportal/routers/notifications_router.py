from fastapi import APIRouter, Depends, Query
from typing import Optional

from veaportal.core.deps import get_payment_store
from veaportal.core.notifications import hub
from veaportal.services.payment_store import PaymentStore

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("")
async def get_notifications(
    role: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    store: PaymentStore = Depends(get_payment_store),
):
    notifications = hub.recent(role=role, user_id=user_id)
    if not notifications:
        # Hub is per process; fall back to what the store kept
        notifications = await store.list_notifications(role=role, user_id=user_id)
    return {"notifications": [n.to_wire() for n in notifications]}
