from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class CustomerDetails:
    def __init__(self, customer_id: str, name: str, email: str, phone: str):
        self.customer_id = customer_id
        self.name = name
        self.email = email
        self.phone = phone


class OrderUrls:
    def __init__(self, return_url: str, notify_url: str):
        self.return_url = return_url
        self.notify_url = notify_url


class GatewayOrder:
    """Result of a successful create-order call."""

    def __init__(self, order_id: str, session_token: str, raw: Dict[str, Any]):
        self.order_id = order_id
        self.session_token = session_token
        self.raw = raw


class GatewayOrderStatus:
    """Current state of an order as reported by the gateway."""

    def __init__(
        self,
        status: str,
        amount: Optional[float],
        currency: Optional[str],
        raw: Dict[str, Any],
    ):
        self.status = status
        self.amount = amount
        self.currency = currency
        self.raw = raw


class BaseGateway(ABC):
    """Abstract base for payment gateway clients."""

    @abstractmethod
    async def create_order(
        self,
        order_id: str,
        amount: float,
        currency: str,
        customer: CustomerDetails,
        urls: OrderUrls,
        note: Optional[str] = None,
    ) -> GatewayOrder:
        """
        Create an order at the gateway.
        Raises GatewayError on non-2xx, transport failure or a malformed body.
        """
        pass

    @abstractmethod
    async def get_order_status(self, order_id: str) -> GatewayOrderStatus:
        """
        Fetch the current status of an order.
        Raises GatewayError on non-2xx, timeout or network error.
        """
        pass

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, timestamp: str, signature: str) -> bool:
        """True when the webhook signature headers match the raw request body."""
        pass

    @property
    @abstractmethod
    def gateway_name(self) -> str:
        pass
