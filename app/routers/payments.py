import json

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request

from app.config import Settings, get_settings
from app.dependencies import get_gateway, get_initiator, get_reconciler
from app.errors import ValidationError, WebhookSignatureError
from app.gateways.base import BaseGateway
from app.schemas.requests import InitiatePaymentRequest, VerifyPaymentRequest
from app.schemas.responses import InitiatePaymentResponse, VerifyPaymentResponse, WebhookAck
from app.services.initiation import InitiationRequest, OrderInitiator
from app.services.reconciliation import ReconciliationEngine

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/initiate", response_model=InitiatePaymentResponse)
async def initiate_payment(
    body: InitiatePaymentRequest,
    initiator: OrderInitiator = Depends(get_initiator),
):
    """
    Create a gateway order and an INITIATED transaction record.

    - 400 when amount, customerName, customerEmail or customerPhone is missing
    - 500 when the gateway rejects the order (no record is written)
    """
    result = await initiator.initiate(InitiationRequest(
        amount=body.amount,
        customer_name=body.customer_name,
        customer_email=body.customer_email,
        customer_phone=body.customer_phone,
        plan=body.plan,
        duration=body.duration,
        currency=body.currency,
        return_url=body.return_url,
    ))
    return InitiatePaymentResponse(
        success=True,
        order_id=result.gateway_order_id,
        payment_session_id=result.session_token,
        merchantTransactionId=result.transaction_id,
    )


@router.post("/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    body: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    engine: ReconciliationEngine = Depends(get_reconciler),
):
    """
    Poll the gateway for the order status and reconcile the transaction.

    Success emails are sent after the response is written.
    """
    if not body.order_id:
        raise ValidationError("Missing orderId")

    result = await engine.verify(body.order_id, defer=background_tasks.add_task)
    return VerifyPaymentResponse(
        success=result.success,
        status=result.status,
        data=result.payload,
    )


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    engine: ReconciliationEngine = Depends(get_reconciler),
    gateway: BaseGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    """
    Gateway push notification.

    Any event that maps onto a known transaction is acknowledged with 200,
    including payment failures, so the gateway stops retrying. Non-2xx is
    reserved for bodies we cannot use (400), unknown orders (404) and
    persistence failures that outlived the store's own retries (500).
    """
    raw_body = await request.body()

    if settings.gateway_verify_webhooks and not gateway.verify_webhook_signature(
        raw_body,
        request.headers.get("x-webhook-timestamp", ""),
        request.headers.get("x-webhook-signature", ""),
    ):
        logger.warning("webhook_signature_rejected")
        raise WebhookSignatureError("Invalid webhook signature")

    try:
        event = json.loads(raw_body)
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON")

    result = await engine.handle_webhook(event, defer=background_tasks.add_task)
    return WebhookAck(success=True, status=result.status)
