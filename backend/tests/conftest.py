import os

os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_vea_portal")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest

from veaportal.core.config import Settings
from veaportal.core.notifications import NotificationHub
from veaportal.core.paystack import PartnerSplitConfiguration
from veaportal.services.payment_store import MemoryPaymentStore
from veaportal.services.verification import VerificationService


def success_payload(
    reference="REF-001",
    amount=100000,
    metadata=None,
    channel="card",
    email="Parent@Example.com",
    paid_at="2025-01-15T10:00:00.000Z",
):
    return {
        "status": True,
        "message": "Verification successful",
        "data": {
            "status": "success",
            "reference": reference,
            "amount": amount,
            "channel": channel,
            "paid_at": paid_at,
            "customer": {"email": email},
            "metadata": metadata if metadata is not None else {},
        },
    }


class FakeGateway:
    """Stands in for PaystackClient; responses are keyed by reference."""

    def __init__(self):
        self.responses = {}
        self.verify_calls = []
        self.initialize_calls = []
        self.initialize_response = {
            "status": True,
            "message": "Authorization URL created",
            "data": {
                "authorization_url": "https://checkout.paystack.com/abc123",
                "access_code": "abc123",
                "reference": "INIT-REF-1",
            },
        }

    async def verify_transaction(self, reference):
        self.verify_calls.append(reference)
        response = self.responses.get(reference)
        if isinstance(response, Exception):
            raise response
        return response or {"status": False, "message": "Transaction reference not found"}

    async def initialize_transaction(self, **kwargs):
        self.initialize_calls.append(kwargs)
        return self.initialize_response

    async def ensure_partner_split_configuration(self):
        return PartnerSplitConfiguration(split_code="SPL_test", subaccount_code="ACCT_test")


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        AUDIT_LOG_PATH=str(tmp_path / "audit" / "paystack-split.log"),
        DEVELOPER_REVENUE_SHARE_PERCENTAGE=10,
        FRONTEND_URL="http://portal.test",
    )


@pytest.fixture
def store():
    return MemoryPaymentStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notification_hub():
    return NotificationHub()


@pytest.fixture
def service(test_settings, store, gateway, notification_hub):
    return VerificationService(settings=test_settings, store=store, gateway=gateway, hub=notification_hub)


@pytest.fixture
def client(test_settings, store, gateway):
    from fastapi.testclient import TestClient

    from main import app
    from veaportal.core import deps
    from veaportal.core.notifications import hub

    hub.clear()
    app.dependency_overrides[deps.get_payment_store] = lambda: store
    app.dependency_overrides[deps.get_gateway] = lambda: gateway
    app.dependency_overrides[deps.get_verification_service] = lambda: VerificationService(
        settings=test_settings, store=store, gateway=gateway, hub=hub,
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    hub.clear()
