"""
Order initiation: validate, create the gateway order, persist the record.

Nothing is written unless the gateway hands back a payment session, so a
failed initiation never leaves a partial transaction behind.
"""
import math
import random
import string
import time
from typing import Optional, Union

import structlog

from app.config import Settings
from app.errors import ValidationError
from app.gateways.base import BaseGateway, CustomerDetails, OrderUrls
from app.models import Transaction, TransactionStatus, utcnow
from app.services.store import TransactionStore

logger = structlog.get_logger(__name__)

PLACEHOLDER_PHONE = "9999999999"
MIN_PHONE_LENGTH = 10
SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_transaction_id(prefix: str) -> str:
    """<prefix>_<epoch ms>_<6 random chars>. Collisions are not deduplicated."""
    suffix = "".join(random.choices(SUFFIX_ALPHABET, k=6))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


def normalize_phone(phone: Optional[Union[str, int]]) -> str:
    phone = "" if phone is None else str(phone).strip()
    return phone if len(phone) >= MIN_PHONE_LENGTH else PLACEHOLDER_PHONE


def build_return_url(transaction_id: str, return_url: Optional[str], frontend_url: str) -> str:
    base = return_url or f"{frontend_url.rstrip('/')}/payment-status"
    separator = "&" if "?" in base else "?"
    return f"{base}{separator}order_id={transaction_id}"


def build_order_note(brand: str, plan: Optional[str], duration: Optional[str]) -> str:
    return f"{brand} - {plan or 'Hosting'} Plan for {duration or '12'} Month(s)"


class InitiationRequest:
    def __init__(
        self,
        amount,
        customer_name: Optional[str],
        customer_email: Optional[str],
        customer_phone: Optional[Union[str, int]],
        plan: Optional[str] = None,
        duration: Optional[str] = None,
        currency: Optional[str] = None,
        return_url: Optional[str] = None,
    ):
        self.amount = amount
        self.customer_name = customer_name
        self.customer_email = customer_email
        self.customer_phone = customer_phone
        self.plan = plan
        self.duration = duration
        self.currency = currency or "INR"
        self.return_url = return_url


class InitiationResult:
    def __init__(self, transaction_id: str, gateway_order_id: str, session_token: str):
        self.transaction_id = transaction_id
        self.gateway_order_id = gateway_order_id
        self.session_token = session_token


def validate_request(request: InitiationRequest) -> float:
    """Returns the amount as a float; raises ValidationError on missing fields."""
    missing = [
        label
        for label, value in (
            ("amount", request.amount),
            ("customerName", request.customer_name),
            ("customerEmail", request.customer_email),
            ("customerPhone", request.customer_phone),
        )
        if value is None or (isinstance(value, str) and not value.strip())
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    try:
        amount = float(request.amount)
    except (TypeError, ValueError):
        raise ValidationError("amount must be a number")
    if not math.isfinite(amount):
        raise ValidationError("amount must be a finite number")
    if amount <= 0:
        raise ValidationError("amount must be greater than zero")
    return amount


class OrderInitiator:
    def __init__(self, gateway: BaseGateway, store: TransactionStore, settings: Settings):
        self.gateway = gateway
        self.store = store
        self.settings = settings

    async def initiate(self, request: InitiationRequest) -> InitiationResult:
        """
        Raises:
            ValidationError: missing/invalid input (gateway not called)
            GatewayError: order creation failed (nothing persisted)
            PersistenceError: record could not be written
        """
        amount = validate_request(request)
        phone = normalize_phone(request.customer_phone)

        transaction_id = generate_transaction_id(self.settings.transaction_id_prefix)
        customer = CustomerDetails(
            customer_id=f"CUST_{int(time.time() * 1000)}",
            name=request.customer_name,
            email=request.customer_email,
            phone=phone,
        )
        urls = OrderUrls(
            return_url=build_return_url(
                transaction_id, request.return_url, self.settings.frontend_url
            ),
            notify_url=f"{self.settings.backend_url.rstrip('/')}/payment/webhook",
        )

        order = await self.gateway.create_order(
            order_id=transaction_id,
            amount=amount,
            currency=request.currency,
            customer=customer,
            urls=urls,
            note=build_order_note(self.settings.brand_name, request.plan, request.duration),
        )

        now = utcnow()
        self.store.create(Transaction(
            id=transaction_id,
            customer_name=request.customer_name,
            customer_email=request.customer_email,
            customer_phone=phone,
            gateway_customer_id=customer.customer_id,
            amount=amount,
            currency=request.currency,
            plan=request.plan,
            duration=None if request.duration is None else str(request.duration),
            status=TransactionStatus.INITIATED.value,
            gateway_order_id=order.order_id,
            session_token=order.session_token,
            return_url=urls.return_url,
            admin_email_sent=False,
            customer_email_sent=False,
            created_at=now,
            updated_at=now,
        ))

        logger.info(
            "payment_initiated",
            transaction_id=transaction_id,
            amount=amount,
            currency=request.currency,
            plan=request.plan,
        )
        return InitiationResult(
            transaction_id=transaction_id,
            gateway_order_id=order.order_id,
            session_token=order.session_token,
        )
