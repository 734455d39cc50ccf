"""
Cashfree PG client.

Only the two order endpoints the service needs:
- POST /orders           create an order, returns a payment session id
- GET  /orders/{id}      current order status (PAID / ACTIVE / EXPIRED / ...)

Responses are returned as-is inside GatewayOrder / GatewayOrderStatus; every
failure mode is surfaced as GatewayError.
"""
import base64
import hashlib
import hmac
from typing import Any, Dict, Optional

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import Settings
from app.errors import GatewayError
from app.gateways.base import (
    BaseGateway,
    CustomerDetails,
    GatewayOrder,
    GatewayOrderStatus,
    OrderUrls,
)

logger = structlog.get_logger(__name__)


def compute_webhook_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    """base64(HMAC-SHA256(timestamp + body)) keyed with the client secret."""
    message = timestamp.encode("utf-8") + raw_body
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        return str(body.get("message") or body.get("code") or body)
    return str(body)[:200]


class CashfreeGateway(BaseGateway):
    """
    Status field: `order_status`
    Status values: ACTIVE / PAID / EXPIRED / TERMINATED / TERMINATION_REQUESTED
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        api_version: str = "2022-09-01",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client_secret = client_secret
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "x-api-version": api_version,
                "x-client-id": client_id,
                "x-client-secret": client_secret,
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "CashfreeGateway":
        return cls(
            base_url=settings.gateway_base_url,
            client_id=settings.gateway_client_id,
            client_secret=settings.gateway_client_secret,
            api_version=settings.gateway_api_version,
            timeout=settings.gateway_timeout_seconds,
            transport=transport,
        )

    @property
    def gateway_name(self) -> str:
        return "cashfree"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_order(
        self,
        order_id: str,
        amount: float,
        currency: str,
        customer: CustomerDetails,
        urls: OrderUrls,
        note: Optional[str] = None,
    ) -> GatewayOrder:
        payload = {
            "order_id": order_id,
            "order_amount": amount,
            "order_currency": currency,
            "customer_details": {
                "customer_id": customer.customer_id,
                "customer_name": customer.name,
                "customer_email": customer.email,
                "customer_phone": customer.phone,
            },
            "order_meta": {
                "return_url": urls.return_url,
                "notify_url": urls.notify_url,
            },
        }
        if note:
            payload["order_note"] = note

        logger.info("gateway_create_order", order_id=order_id, amount=amount, currency=currency)
        try:
            resp = await self._client.post("/orders", json=payload)
        except httpx.TimeoutException as e:
            raise GatewayError("Gateway request timed out", detail=str(e)) from e
        except httpx.HTTPError as e:
            raise GatewayError("Gateway unreachable", detail=str(e)) from e

        data = self._parse(resp, order_id)
        session_token = data.get("payment_session_id")
        if not session_token:
            logger.warning("gateway_order_without_session", order_id=order_id)
            raise GatewayError("Payment initiation failed", detail=str(data)[:500])

        return GatewayOrder(
            order_id=data.get("order_id") or order_id,
            session_token=session_token,
            raw=data,
        )

    async def get_order_status(self, order_id: str) -> GatewayOrderStatus:
        try:
            resp = await self._fetch_order(order_id)
        except httpx.TimeoutException as e:
            raise GatewayError("Gateway request timed out", detail=str(e)) from e
        except httpx.HTTPError as e:
            raise GatewayError("Gateway unreachable", detail=str(e)) from e

        data = self._parse(resp, order_id)
        status = data.get("order_status")
        if not status:
            raise GatewayError("Gateway response has no order_status", detail=str(data)[:500])

        amount = data.get("order_amount")
        try:
            amount = float(amount) if amount is not None else None
        except (TypeError, ValueError):
            amount = None

        logger.info("gateway_order_status", order_id=order_id, order_status=status)
        return GatewayOrderStatus(
            status=str(status),
            amount=amount,
            currency=data.get("order_currency"),
            raw=data,
        )

    # Only connection-level failures are retried; timeouts surface immediately
    @retry(
        retry=retry_if_exception_type(httpx.NetworkError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, max=1),
        reraise=True,
    )
    async def _fetch_order(self, order_id: str) -> httpx.Response:
        return await self._client.get(f"/orders/{order_id}")

    def _parse(self, resp: httpx.Response, order_id: str) -> Dict[str, Any]:
        if resp.is_error:
            message = _error_message(resp)
            logger.warning(
                "gateway_error_response",
                order_id=order_id,
                status_code=resp.status_code,
                message=message,
            )
            raise GatewayError(
                f"Gateway returned {resp.status_code}: {message}",
                detail=resp.text[:500],
                http_status=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as e:
            raise GatewayError("Malformed gateway response", detail=resp.text[:500]) from e
        if not isinstance(data, dict):
            raise GatewayError("Malformed gateway response", detail=str(data)[:500])
        return data

    def verify_webhook_signature(self, raw_body: bytes, timestamp: str, signature: str) -> bool:
        if not timestamp or not signature:
            return False
        expected = compute_webhook_signature(self._client_secret, timestamp, raw_body)
        return hmac.compare_digest(expected, signature)
