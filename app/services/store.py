"""
Transaction store.

Thin persistence layer over SQLAlchemy. Every write is a single statement in
its own short transaction; status transitions go through `update_if`, an
`UPDATE ... WHERE id = :id AND <condition>` whose rowcount tells the caller
whether the write was applied. The database serializes concurrent writers on
the row, so two processes racing on the same transaction can never both see
their conditional write applied.
"""
from datetime import timedelta
from typing import Any, Dict, Iterable, Optional

import structlog
from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.errors import PersistenceError
from app.models import NotificationKind, Transaction, utcnow

logger = structlog.get_logger(__name__)

STORE_MAX_ATTEMPTS = 3
# Backoff sleeps on the calling thread, which is the event loop for engine calls
CONTENTION_WAIT = wait_exponential(multiplier=0.02, max=0.1)

# SQLite reports lock contention as OperationalError ("database is locked")
_retry_on_contention = retry(
    retry=retry_if_exception_type(OperationalError),
    stop=stop_after_attempt(STORE_MAX_ATTEMPTS),
    wait=CONTENTION_WAIT,
    reraise=True,
)


def _notification_columns(kind: NotificationKind):
    return (
        getattr(Transaction, f"{kind.value}_email_sent"),
        getattr(Transaction, f"{kind.value}_email_sent_at"),
        getattr(Transaction, f"{kind.value}_email_claimed_at"),
    )


class TransactionStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Reads / inserts
    # ------------------------------------------------------------------
    def create(self, txn: Transaction) -> Transaction:
        try:
            return self._insert(txn)
        except IntegrityError as e:
            if self.get(txn.id) is not None:
                raise PersistenceError(f"Transaction {txn.id} already exists", detail=str(e)) from e
            logger.error("store_create_rejected", transaction_id=txn.id, error=str(e))
            raise PersistenceError("Transaction record was rejected", detail=str(e)) from e
        except SQLAlchemyError as e:
            logger.error("store_create_failed", transaction_id=txn.id, error=str(e))
            raise PersistenceError("Could not persist transaction", detail=str(e)) from e

    @_retry_on_contention
    def _insert(self, txn: Transaction) -> Transaction:
        with self._session_factory() as session:
            session.add(txn)
            session.commit()
            session.refresh(txn)
            session.expunge(txn)
        return txn

    def get(self, transaction_id: str) -> Optional[Transaction]:
        try:
            with self._session_factory() as session:
                txn = session.get(Transaction, transaction_id)
                if txn is not None:
                    session.expunge(txn)
                return txn
        except SQLAlchemyError as e:
            logger.error("store_read_failed", transaction_id=transaction_id, error=str(e))
            raise PersistenceError("Could not read transaction", detail=str(e)) from e

    # ------------------------------------------------------------------
    # Conditional writes
    # ------------------------------------------------------------------
    def update_if(self, transaction_id: str, condition, fields: Dict[str, Any]) -> bool:
        """
        Apply `fields` to the record only if `condition` holds at write time.

        Args:
            transaction_id: record key
            condition: SQLAlchemy boolean clause over Transaction columns, or None
            fields: column name -> value (plain values or SQL expressions)

        Returns:
            True when the row was updated, False when the condition did not hold
            (or the record does not exist).

        Raises:
            PersistenceError: store unavailable, or contention persisted past
            STORE_MAX_ATTEMPTS attempts.
        """
        try:
            applied = self._conditional_update(transaction_id, condition, fields)
        except SQLAlchemyError as e:
            logger.error(
                "store_update_failed",
                transaction_id=transaction_id,
                fields=sorted(fields),
                error=str(e),
            )
            raise PersistenceError("Could not update transaction", detail=str(e)) from e

        logger.debug(
            "store_conditional_update",
            transaction_id=transaction_id,
            fields=sorted(fields),
            applied=applied,
        )
        return applied

    @_retry_on_contention
    def _conditional_update(self, transaction_id: str, condition, fields: Dict[str, Any]) -> bool:
        stmt = update(Transaction).where(Transaction.id == transaction_id)
        if condition is not None:
            stmt = stmt.where(condition)
        stmt = stmt.values(**fields).execution_options(synchronize_session=False)
        with self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def update_if_status(
        self, transaction_id: str, allowed_statuses: Iterable, fields: Dict[str, Any]
    ) -> bool:
        statuses = [getattr(s, "value", s) for s in allowed_statuses]
        return self.update_if(transaction_id, Transaction.status.in_(statuses), fields)

    # ------------------------------------------------------------------
    # Notification bookkeeping
    # ------------------------------------------------------------------
    def claim_notification(
        self, transaction_id: str, kind: NotificationKind, ttl_seconds: int
    ) -> bool:
        """
        Take the exclusive right to send `kind` for this transaction.

        A claim older than `ttl_seconds` belongs to a sender that died before
        finishing and may be taken over.
        """
        sent, _, claimed_at = _notification_columns(kind)
        now = utcnow()
        abandoned_before = now - timedelta(seconds=ttl_seconds)
        condition = and_(
            sent == False,  # noqa: E712
            or_(claimed_at.is_(None), claimed_at < abandoned_before),
        )
        return self.update_if(transaction_id, condition, {claimed_at.key: now})

    def mark_notification_sent(self, transaction_id: str, kind: NotificationKind) -> bool:
        sent, sent_at, _ = _notification_columns(kind)
        return self.update_if(
            transaction_id,
            sent == False,  # noqa: E712
            {sent.key: True, sent_at.key: utcnow()},
        )

    def release_notification(self, transaction_id: str, kind: NotificationKind) -> bool:
        sent, _, claimed_at = _notification_columns(kind)
        return self.update_if(
            transaction_id,
            sent == False,  # noqa: E712
            {claimed_at.key: None},
        )
