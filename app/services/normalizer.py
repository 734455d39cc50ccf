"""
Maps gateway order statuses onto transaction statuses and caller-facing
verification statuses, and reduces gateway payloads to the bounded snapshot
stored on the transaction.

The gateway's status vocabulary is treated as open: anything other than
PAID or ACTIVE counts as a failure.
"""
from typing import Any, Dict, Optional, Tuple

from app.errors import ValidationError
from app.models import TransactionStatus


GATEWAY_PAID = "PAID"
GATEWAY_ACTIVE = "ACTIVE"

GATEWAY_STATUS_TRANSITIONS = {
    GATEWAY_PAID: TransactionStatus.COMPLETED,
    GATEWAY_ACTIVE: TransactionStatus.PROCESSING,
}


# Caller-facing vocabulary
VERIFICATION_SUCCESS = "SUCCESS"
VERIFICATION_PENDING = "PENDING"
VERIFICATION_FAILED = "FAILED"

VERIFICATION_STATUSES = {
    TransactionStatus.INITIATED: VERIFICATION_PENDING,
    TransactionStatus.PROCESSING: VERIFICATION_PENDING,
    TransactionStatus.COMPLETED: VERIFICATION_SUCCESS,
    TransactionStatus.FAILED: VERIFICATION_FAILED,
}


def target_status(gateway_status: str) -> TransactionStatus:
    return GATEWAY_STATUS_TRANSITIONS.get(gateway_status, TransactionStatus.FAILED)


def verification_status(status: str) -> str:
    return VERIFICATION_STATUSES.get(TransactionStatus(status), VERIFICATION_FAILED)


def failure_reason(gateway_status: str) -> str:
    return f"gateway status: {gateway_status}"


# Fields kept in the stored snapshot, flattened from order / payment / event
ORDER_FIELDS = (
    "order_id",
    "cf_order_id",
    "order_status",
    "order_amount",
    "order_currency",
    "order_expiry_time",
    "order_note",
    "created_at",
)
PAYMENT_FIELDS = (
    "cf_payment_id",
    "payment_status",
    "payment_amount",
    "payment_currency",
    "payment_time",
    "payment_group",
    "payment_message",
    "bank_reference",
)
EVENT_FIELDS = ("type", "event_time")

SNAPSHOT_FIELDS = ORDER_FIELDS + PAYMENT_FIELDS + EVENT_FIELDS

MAX_FIELD_LENGTH = 256


def bound_payload(raw: Optional[Dict[str, Any]], source: Optional[str] = None) -> Dict[str, Any]:
    """
    Reduce a gateway payload to the whitelisted scalar fields.

    Strings are truncated to MAX_FIELD_LENGTH; nested values are stringified
    and truncated. Unknown fields are dropped.
    """
    snapshot: Dict[str, Any] = {}
    for key in SNAPSHOT_FIELDS:
        value = (raw or {}).get(key)
        if value is None:
            continue
        if isinstance(value, bool) or isinstance(value, (int, float)):
            snapshot[key] = value
        else:
            snapshot[key] = str(value)[:MAX_FIELD_LENGTH]
    if source:
        snapshot["source"] = source
    return snapshot


def extract_webhook_order(event: Any) -> Tuple[str, str, Dict[str, Any]]:
    """
    Pull (order_id, order_status, flat payload) out of a webhook envelope
    shaped like {"type", "event_time", "data": {"order": {...}, "payment": {...}}}.

    Raises:
        ValidationError: envelope is not an object, or order_id / order_status missing
    """
    if not isinstance(event, dict):
        raise ValidationError("Webhook body must be a JSON object")

    data = event.get("data")
    order = data.get("order") if isinstance(data, dict) else None
    if not isinstance(order, dict):
        raise ValidationError("Webhook body has no data.order")

    order_id = order.get("order_id")
    if not order_id:
        raise ValidationError("Webhook body has no order_id")
    order_status = order.get("order_status")
    if not order_status:
        raise ValidationError("Webhook body has no order_status")

    payment = data.get("payment")
    flat: Dict[str, Any] = {key: event.get(key) for key in EVENT_FIELDS}
    if isinstance(payment, dict):
        flat.update(payment)
    flat.update(order)
    return str(order_id), str(order_status), flat
