# core/deps.py
"""FastAPI dependency providers. Tests swap them via ``app.dependency_overrides``."""
from fastapi import Depends

from veaportal.core.config import settings
from veaportal.core.notifications import hub
from veaportal.core.paystack import PaystackClient
from veaportal.services.payment_store import PaymentStore, get_store
from veaportal.services.verification import VerificationService

_store = None
_gateway = None


def get_payment_store() -> PaymentStore:
    global _store
    if _store is None:
        _store = get_store(settings)
    return _store


def get_gateway() -> PaystackClient:
    global _gateway
    if _gateway is None:
        _gateway = PaystackClient(settings)
    return _gateway


def build_verification_service(store: PaymentStore, gateway) -> VerificationService:
    return VerificationService(settings=settings, store=store, gateway=gateway, hub=hub)


def get_verification_service(
    store: PaymentStore = Depends(get_payment_store),
    gateway=Depends(get_gateway),
) -> VerificationService:
    return build_verification_service(store, gateway)
