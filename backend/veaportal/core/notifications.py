# core/notifications.py
import logging
from collections import deque
from typing import Deque, List, Optional

from veaportal.models.notification_model import Notification, PAYMENT_NOTIFICATION_ROLES

logger = logging.getLogger("vea.notifications")

HISTORY_LIMIT = 200


class NotificationHub:
    """In-process feed of the most recent notifications, newest first."""

    def __init__(self, limit: int = HISTORY_LIMIT):
        self._history: Deque[Notification] = deque(maxlen=limit)

    def push(self, notification: Notification) -> None:
        self._history.appendleft(notification)

    def recent(self, role: Optional[str] = None, user_id: Optional[str] = None) -> List[Notification]:
        return [n for n in self._history if n.is_addressed_to(user_id=user_id, role=role)]

    def clear(self) -> None:
        self._history.clear()


hub = NotificationHub()


async def publish_notification(notification: Notification, store=None, target: NotificationHub = None) -> None:
    """Best-effort: failures are logged and never raised to the caller."""
    try:
        (target or hub).push(notification)
        if store is not None:
            await store.add_notification(notification)
        logger.info(f"🔔 Notification published: {notification.title}")
    except Exception as e:
        logger.error(f"Failed to publish notification '{notification.title}': {e}", exc_info=True)


def format_amount(amount: float) -> str:
    """1000.0 -> '1,000'; 1234.5 -> '1,234.5'."""
    return f"{amount:,.2f}".rstrip("0").rstrip(".")


def build_payment_notification(
    *,
    payment_id: str,
    student_id: Optional[str],
    student_name: str,
    parent_name: Optional[str],
    parent_email: Optional[str],
    amount: float,
    payment_type: str,
    reference: str,
    currency_symbol: str = "₦",
) -> Notification:
    title = f"Payment received from {parent_name}" if parent_name else "Payment verified"
    return Notification(
        title=title,
        body=f"{student_name} • {currency_symbol}{format_amount(amount)} ({payment_type})",
        category="payment",
        target_roles=list(PAYMENT_NOTIFICATION_ROLES),
        action_url="/?tab=payments",
        meta={
            "paymentId": payment_id,
            "studentId": student_id,
            "parentName": parent_name,
            "parentEmail": parent_email,
            "amount": amount,
            "paymentType": payment_type,
            "reference": reference,
        },
    )
