# core/errors.py
from typing import Optional


class PaymentError(Exception):
    """Base class for everything the payment pipeline raises on purpose."""
    status_code = 500

    def __init__(self, message: str, *, reference: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reference = reference


class PaymentValidationError(PaymentError):
    status_code = 400


class GatewayRejected(PaymentError):
    """Paystack answered, but did not report a successful charge."""
    status_code = 400


class GatewayError(PaymentError):
    """Transport or parse failure while talking to Paystack."""
    status_code = 500


class LedgerWriteError(PaymentError):
    status_code = 400
