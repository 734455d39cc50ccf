"""
Error taxonomy shared by the services and the HTTP layer.

Every error carries the HTTP status code the API answers with; the single
exception handler in `app.main` renders them.
"""


class PaymentError(Exception):
    """Base class for all errors raised by the payment services."""

    status_code = 500

    def __init__(self, message: str, detail: str = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(PaymentError):
    """Bad or missing input supplied by the caller."""

    status_code = 400


class NotFoundError(PaymentError):
    """No transaction record exists for the identifier."""

    status_code = 404


class GatewayError(PaymentError):
    """The payment gateway failed: network, timeout, non-2xx or malformed body."""

    status_code = 500

    def __init__(self, message: str, detail: str = None, http_status: int = None):
        super().__init__(message, detail)
        self.http_status = http_status


class PersistenceError(PaymentError):
    """The store is unavailable or a conditional update exhausted its retries."""

    status_code = 500


class NotificationError(PaymentError):
    """Email dispatch failed. Caught inside the sender, never surfaced to callers."""

    status_code = 500


class WebhookSignatureError(PaymentError):
    """A webhook arrived without a valid gateway signature."""

    status_code = 401
