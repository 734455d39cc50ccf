"""
Payment-state reconciliation.

Both the client-initiated verify poll and the gateway webhook funnel into
`ReconciliationEngine.reconcile`, which:
1. Loads the transaction (unknown id -> NotFoundError, nothing written)
2. Maps the gateway status onto a target transaction status
3. Applies it with a conditional update whose WHERE clause only admits
   statuses ranked below the target (terminal records are never touched)
4. Re-reads the record and answers from the persisted status
5. For completed transactions, hands each unsent notification kind to the
   dispatcher, inline or as a deferred background task

The signals are unordered and at-least-once, so every step is idempotent.
"""
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy import func

from app.errors import NotFoundError, PersistenceError
from app.gateways.base import BaseGateway
from app.models import (
    NotificationKind,
    Transaction,
    TransactionStatus,
    transition_sources,
    utcnow,
)
from app.notifications.base import BaseNotifier, SuccessNotification
from app.services.normalizer import (
    VERIFICATION_SUCCESS,
    bound_payload,
    extract_webhook_order,
    failure_reason,
    target_status,
    verification_status,
)
from app.services.store import TransactionStore

logger = structlog.get_logger(__name__)


class ReconcileResult:
    def __init__(
        self,
        transaction_id: str,
        success: bool,
        status: str,
        transaction: Transaction,
        payload: Dict[str, Any],
        applied: bool,
    ):
        self.transaction_id = transaction_id
        self.success = success
        self.status = status
        self.transaction = transaction
        self.payload = payload
        self.applied = applied


class ReconciliationEngine:
    def __init__(
        self,
        store: TransactionStore,
        gateway: BaseGateway,
        notifier: BaseNotifier,
        claim_ttl_seconds: int = 300,
    ):
        self.store = store
        self.gateway = gateway
        self.notifier = notifier
        self.claim_ttl_seconds = claim_ttl_seconds

    async def verify(
        self, transaction_id: str, defer: Optional[Callable] = None
    ) -> ReconcileResult:
        """
        Fetch the order status from the gateway and reconcile it.

        Raises:
            NotFoundError: no record for transaction_id (gateway not called)
            GatewayError: the status lookup failed (nothing written)
        """
        if self.store.get(transaction_id) is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")

        order = await self.gateway.get_order_status(transaction_id)
        logger.info(
            "gateway_status_fetched",
            transaction_id=transaction_id,
            gateway=self.gateway.gateway_name,
            order_status=order.status,
        )
        return await self.reconcile(
            transaction_id, order.status, order.raw, defer=defer, source="verify"
        )

    async def handle_webhook(
        self, event: Any, defer: Optional[Callable] = None
    ) -> ReconcileResult:
        """
        Reconcile a gateway-pushed event.

        Raises:
            ValidationError: envelope lacks order_id or order_status
            NotFoundError: no record for the order
        """
        order_id, order_status, flat = extract_webhook_order(event)
        logger.info("webhook_received", transaction_id=order_id, order_status=order_status)
        return await self.reconcile(order_id, order_status, flat, defer=defer, source="webhook")

    async def reconcile(
        self,
        transaction_id: str,
        gateway_status: str,
        source_payload: Optional[Dict[str, Any]],
        defer: Optional[Callable] = None,
        source: Optional[str] = None,
    ) -> ReconcileResult:
        log = logger.bind(transaction_id=transaction_id, gateway_status=gateway_status)

        if self.store.get(transaction_id) is None:
            log.warning("reconcile_unknown_transaction")
            raise NotFoundError(f"Transaction {transaction_id} not found")

        payload = bound_payload(source_payload, source)
        target = target_status(gateway_status)
        now = utcnow()

        if target == TransactionStatus.COMPLETED:
            # Re-stamping an already completed record keeps the payload fresh
            applied = self.store.update_if_status(
                transaction_id,
                transition_sources(TransactionStatus.COMPLETED, restamp=True),
                {
                    "status": TransactionStatus.COMPLETED.value,
                    "updated_at": now,
                    "last_gateway_payload": payload,
                    "completed_at": func.coalesce(Transaction.completed_at, now),
                },
            )
        elif target == TransactionStatus.PROCESSING:
            applied = self.store.update_if_status(
                transaction_id,
                transition_sources(TransactionStatus.PROCESSING, restamp=True),
                {
                    "status": TransactionStatus.PROCESSING.value,
                    "updated_at": now,
                    "last_gateway_payload": payload,
                },
            )
        else:
            applied = self.store.update_if_status(
                transaction_id,
                transition_sources(TransactionStatus.FAILED),
                {
                    "status": TransactionStatus.FAILED.value,
                    "updated_at": now,
                    "last_gateway_payload": payload,
                    "failure_reason": failure_reason(gateway_status),
                },
            )

        txn = self.store.get(transaction_id)
        if applied:
            log.info("reconcile_applied", status=txn.status, source=source)
        elif target == TransactionStatus.COMPLETED and txn.status == TransactionStatus.FAILED.value:
            log.warning("reconcile_terminal_conflict", status=txn.status, source=source)
        else:
            log.info("reconcile_transition_refused", status=txn.status, target=target.value)

        status = verification_status(txn.status)

        if txn.status == TransactionStatus.COMPLETED.value and not all(
            txn.email_sent(kind) for kind in NotificationKind
        ):
            if defer is not None:
                defer(self.dispatch_notifications, transaction_id)
            else:
                await self.dispatch_notifications(transaction_id)

        return ReconcileResult(
            transaction_id=transaction_id,
            success=status == VERIFICATION_SUCCESS,
            status=status,
            transaction=txn,
            payload=payload,
            applied=applied,
        )

    async def dispatch_notifications(self, transaction_id: str) -> Dict[NotificationKind, bool]:
        """
        Send every success email kind not yet delivered for a completed transaction.

        Each kind is claimed atomically before sending, so concurrent callers
        never deliver the same kind twice. A failed send releases the claim and
        leaves the sent flag false for a later PAID signal to retry.

        May run after the HTTP response is written: failures are logged here,
        never raised.

        Returns:
            kind -> delivered, for the kinds this call attempted
        """
        log = logger.bind(transaction_id=transaction_id)
        results: Dict[NotificationKind, bool] = {}

        try:
            txn = self.store.get(transaction_id)
        except PersistenceError as e:
            log.error("notification_dispatch_aborted", error=str(e))
            return results
        if txn is None or txn.status != TransactionStatus.COMPLETED.value:
            return results

        payload = SuccessNotification.from_transaction(txn)
        for kind in NotificationKind:
            if txn.email_sent(kind):
                continue
            try:
                if not self.store.claim_notification(transaction_id, kind, self.claim_ttl_seconds):
                    log.info("notification_already_claimed", kind=kind.value)
                    continue

                delivered = await self.notifier.send_success_email(kind, payload)
                if delivered:
                    self.store.mark_notification_sent(transaction_id, kind)
                else:
                    self.store.release_notification(transaction_id, kind)
                    log.warning("notification_not_delivered", kind=kind.value)
            except PersistenceError as e:
                # The claim expires after claim_ttl_seconds and a later PAID retries
                log.error("notification_bookkeeping_failed", kind=kind.value, error=str(e))
                continue
            results[kind] = delivered

        return results
