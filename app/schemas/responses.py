from typing import Any, Dict, Optional

from pydantic import BaseModel


class InitiatePaymentResponse(BaseModel):
    success: bool
    order_id: str
    payment_session_id: str
    merchantTransactionId: str


class VerifyPaymentResponse(BaseModel):
    success: bool
    status: str  # "SUCCESS" | "PENDING" | "FAILED"
    data: Dict[str, Any]


class WebhookAck(BaseModel):
    success: bool
    status: Optional[str] = None
    message: str = "Webhook processed"


class ErrorResponse(BaseModel):
    success: bool = False
    status: str = "FAILED"
    message: str
    error: Optional[str] = None  # only populated in debug mode
