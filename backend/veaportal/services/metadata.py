# services/metadata.py
"""
Canonical payment metadata.

Payment metadata reaches us from three places (the Paystack payload, the
portal UI and the accountant console) and each of them spells keys its own
way. Business logic works on :class:`PaymentMetadata`; :meth:`PaymentMetadata.apply`
writes the resolved values back into a metadata bag in both snake_case and
camelCase so every reader finds the field it expects.
"""
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from veaportal.core.security import sanitize_input, sanitize_metadata

DEFAULT_STUDENT_NAME = "Student"
DEFAULT_PAYMENT_TYPE = "general"
DEFAULT_CHANNEL = "online"

PARENT_NAME_KEYS = (
    "parent_name", "parentName",
    "guardian_name", "guardianName",
    "customer_name", "customerName",
)
PARENT_EMAIL_KEYS = (
    "parent_email", "parentEmail",
    "guardian_email", "guardianEmail",
    "customer_email", "customerEmail",
    "email",
)

TERM_LABELS = {
    "first": "First Term",
    "first term": "First Term",
    "1st term": "First Term",
    "second": "Second Term",
    "second term": "Second Term",
    "2nd term": "Second Term",
    "third": "Third Term",
    "third term": "Third Term",
    "3rd term": "Third Term",
}


# --------------------------------------------------------------
# Field resolution helpers
# --------------------------------------------------------------
def first_text(metadata: Dict[str, Any], keys: Iterable[str], *, allow_numbers: bool = False) -> Optional[str]:
    """First non-blank string among ``keys``, sanitized."""
    for key in keys:
        value = metadata.get(key)
        if allow_numbers and isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            cleaned = sanitize_input(value)
            if cleaned:
                return cleaned
    return None


def resolve_student_id(metadata: Dict[str, Any]) -> Optional[str]:
    return first_text(metadata, ("student_id", "studentId"), allow_numbers=True)


def resolve_student_name(metadata: Dict[str, Any]) -> str:
    return first_text(metadata, ("student_name", "studentName")) or DEFAULT_STUDENT_NAME


def resolve_parent_name(metadata: Dict[str, Any]) -> Optional[str]:
    return first_text(metadata, PARENT_NAME_KEYS)


def resolve_parent_email(metadata: Dict[str, Any]) -> Optional[str]:
    email = first_text(metadata, PARENT_EMAIL_KEYS)
    return email.lower() if email else None


def resolve_payment_type(metadata: Dict[str, Any]) -> str:
    return first_text(metadata, ("payment_type", "paymentType")) or DEFAULT_PAYMENT_TYPE


def resolve_channel(channel: Any = None, metadata: Optional[Dict[str, Any]] = None) -> str:
    if isinstance(channel, str) and sanitize_input(channel):
        return sanitize_input(channel)
    if metadata:
        return first_text(metadata, ("payment_channel", "paymentChannel")) or DEFAULT_CHANNEL
    return DEFAULT_CHANNEL


def resolve_term_label(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        return "First Term"
    return TERM_LABELS.get(value.strip().lower(), value.strip())


def humanize_fee_type(payment_type: str) -> str:
    """``school_fee`` -> ``School Fee``; ``event-fee`` -> ``Event Fee``."""
    spaced = re.sub(r"[_-]+", " ", payment_type or "")
    return re.sub(r"\b\w", lambda match: match.group(0).upper(), spaced) or "General"


def resolve_event_fee_ids(metadata: Dict[str, Any]) -> List[str]:
    raw = metadata.get("event_fee_ids", metadata.get("eventFeeIds"))
    if not isinstance(raw, list):
        return []
    ids = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            continue
        text = str(value).strip()
        if text:
            ids.append(text)
    return ids


def set_both(bag: Dict[str, Any], camel_key: str, snake_key: str, value: Any) -> None:
    bag[camel_key] = value
    bag[snake_key] = value


def drop_both(bag: Dict[str, Any], camel_key: str, snake_key: str) -> None:
    bag.pop(camel_key, None)
    bag.pop(snake_key, None)


# --------------------------------------------------------------
# Canonical record
# --------------------------------------------------------------
@dataclass
class PaymentMetadata:
    student_id: Optional[str] = None
    student_name: str = DEFAULT_STUDENT_NAME
    parent_name: Optional[str] = None
    parent_email: Optional[str] = None
    payment_type: str = DEFAULT_PAYMENT_TYPE
    channel: str = DEFAULT_CHANNEL
    class_id: Optional[str] = None
    class_name: Optional[str] = None
    term: Optional[str] = None
    session: Optional[str] = None
    school_fee_config_id: Optional[str] = None
    event_fee_ids: List[str] = field(default_factory=list)

    @property
    def has_student_name(self) -> bool:
        return self.student_name != DEFAULT_STUDENT_NAME

    @classmethod
    def from_bag(
        cls,
        metadata: Dict[str, Any],
        *,
        channel: Any = None,
        customer_email: Optional[str] = None,
    ) -> "PaymentMetadata":
        parent_email = resolve_parent_email(metadata)
        if not parent_email and customer_email:
            parent_email = sanitize_input(customer_email).lower() or None

        return cls(
            student_id=resolve_student_id(metadata),
            student_name=resolve_student_name(metadata),
            parent_name=resolve_parent_name(metadata),
            parent_email=parent_email,
            payment_type=resolve_payment_type(metadata),
            channel=resolve_channel(channel, metadata),
            class_id=first_text(metadata, ("class_id", "classId")),
            class_name=first_text(metadata, ("class_name", "className")),
            term=first_text(metadata, ("term",)),
            session=first_text(metadata, ("session",)),
            school_fee_config_id=first_text(
                metadata, ("school_fee_configuration_id", "schoolFeeConfigurationId")
            ),
            event_fee_ids=resolve_event_fee_ids(metadata),
        )

    def fill_from(self, other: "PaymentMetadata") -> "PaymentMetadata":
        """Copy of self with absent or defaulted fields taken from ``other``."""
        return replace(
            self,
            student_id=self.student_id or other.student_id,
            student_name=self.student_name if self.has_student_name else other.student_name,
            parent_name=self.parent_name or other.parent_name,
            parent_email=self.parent_email or other.parent_email,
            class_id=self.class_id or other.class_id,
            class_name=self.class_name or other.class_name,
            term=self.term or other.term,
            session=self.session or other.session,
            school_fee_config_id=self.school_fee_config_id or other.school_fee_config_id,
            event_fee_ids=self.event_fee_ids or list(other.event_fee_ids),
        )

    def apply(self, bag: Dict[str, Any]) -> Dict[str, Any]:
        """Write every resolved field into ``bag`` under both casings."""
        if self.student_id:
            set_both(bag, "studentId", "student_id", self.student_id)
        else:
            # No student: the keys are removed rather than left blank
            drop_both(bag, "studentId", "student_id")

        set_both(bag, "studentName", "student_name", self.student_name)
        if self.parent_name:
            set_both(bag, "parentName", "parent_name", self.parent_name)
        if self.parent_email:
            set_both(bag, "parentEmail", "parent_email", self.parent_email)
        set_both(bag, "paymentType", "payment_type", self.payment_type)
        set_both(bag, "paymentChannel", "payment_channel", self.channel)
        if self.class_id:
            set_both(bag, "classId", "class_id", self.class_id)
        if self.class_name:
            set_both(bag, "className", "class_name", self.class_name)
        if self.term:
            bag["term"] = self.term
        if self.session:
            bag["session"] = self.session
        return bag


def normalize_metadata(
    raw: Any,
    *,
    channel: Any = None,
    customer_email: Optional[str] = None,
) -> tuple:
    """
    Sanitize an arbitrary metadata payload and canonicalize it.

    Returns ``(PaymentMetadata, bag)`` where ``bag`` is the sanitized input
    with both casings of every resolved field written in.
    """
    bag = sanitize_metadata(raw)
    canonical = PaymentMetadata.from_bag(bag, channel=channel, customer_email=customer_email)
    canonical.apply(bag)
    return canonical, bag


def stamp_settlement(
    bag: Dict[str, Any],
    *,
    paystack_reference: str,
    amount: float,
    verified_at: datetime,
) -> Dict[str, Any]:
    """Access/verification flags written on every successful verification."""
    stamp = verified_at.isoformat()
    bag["accessGranted"] = True
    bag["accessGrantedAt"] = stamp
    bag["verifiedAt"] = stamp
    bag["lastPaystackReference"] = paystack_reference
    set_both(bag, "totalPaid", "total_paid", amount)
    set_both(bag, "schoolFeePaid", "school_fee_paid", True)
    return bag


def stamp_ledger_id(bag: Dict[str, Any], ledger_payment_id: str) -> Dict[str, Any]:
    set_both(bag, "ledgerPaymentId", "ledger_payment_id", ledger_payment_id)
    return bag
