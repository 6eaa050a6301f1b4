# core/config.py
from pydantic import Field
from pydantic_settings import BaseSettings
from typing import Literal, Optional


class Settings(BaseSettings):
    # ────────────────────────────────
    # 1. APP & ENVIRONMENT
    # ────────────────────────────────
    PROJECT_NAME: str = "VEA Portal"
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=True)
    FRONTEND_URL: str = Field(
        default="http://localhost:3000",
        description="Base URL of the portal UI (CORS origin, receipt footer)"
    )

    # ────────────────────────────────
    # 2. PAYSTACK
    # ────────────────────────────────
    PAYSTACK_SECRET_KEY: str = Field(..., min_length=1)
    PAYSTACK_PUBLIC_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_TIMEOUT_SECONDS: float = 15.0

    # ────────────────────────────────
    # 3. REVENUE SPLIT
    # ────────────────────────────────
    DEVELOPER_REVENUE_SHARE_PERCENTAGE: float = Field(default=1.0, ge=0)
    PAYSTACK_PARTNER_SUBACCOUNT_CODE: Optional[str] = None
    PAYSTACK_PARTNER_SPLIT_CODE: Optional[str] = None
    PARTNER_ACCOUNT_NAME: str = "Umar Umar Muhammad"
    PARTNER_ACCOUNT_NUMBER: str = "3066490309"
    PARTNER_BANK_CODE: str = "011"

    # ────────────────────────────────
    # 4. STORAGE
    # ────────────────────────────────
    STORAGE_BACKEND: Literal["memory", "file", "firestore"] = "memory"
    DATA_FILE: str = ".data/vea-portal.json"
    # Base64-encoded Firebase service account JSON
    FIREBASE_KEY: Optional[str] = Field(
        default=None,
        description="Base64-encoded Firebase service account JSON"
    )
    AUDIT_LOG_PATH: str = ".developer-audit/paystack-split.log"

    # ────────────────────────────────
    # 5. RECEIPTS & NOTIFICATIONS
    # ────────────────────────────────
    CURRENCY_SYMBOL: str = "₦"
    RECEIPT_PREFIX: str = "VEA"
    FALLBACK_PAYMENT_EMAIL: str = "payments@vea-portal.local"

    # ────────────────────────────────
    # 6. TASK QUEUE (Celery)
    # ────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    model_config = {
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def paystack_secret(self) -> str:
        return self.PAYSTACK_SECRET_KEY.strip()


# Create singleton; raises at import when PAYSTACK_SECRET_KEY is missing
settings = Settings()
