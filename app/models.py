import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, JSON, String

from app.database import Base


class TransactionStatus(str, enum.Enum):
    INITIATED = "INITIATED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# COMPLETED and FAILED share a rank: neither may replace the other
STATUS_RANK = {
    TransactionStatus.INITIATED: 0,
    TransactionStatus.PROCESSING: 1,
    TransactionStatus.COMPLETED: 2,
    TransactionStatus.FAILED: 2,
}

TERMINAL_STATUSES = (TransactionStatus.COMPLETED, TransactionStatus.FAILED)


def transition_sources(target: TransactionStatus, restamp: bool = False) -> list:
    """Statuses a record may be in for a write to `target` to be allowed."""
    sources = [s for s in TransactionStatus if STATUS_RANK[s] < STATUS_RANK[target]]
    if restamp:
        sources.append(target)
    return sources


class NotificationKind(str, enum.Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"


def utcnow() -> datetime:
    """Naive UTC, which is what SQLite DateTime columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String, primary_key=True)
    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=False)
    customer_phone = Column(String, nullable=False)
    gateway_customer_id = Column(String, nullable=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    plan = Column(String, nullable=True)
    duration = Column(String, nullable=True)
    status = Column(String, nullable=False, default=TransactionStatus.INITIATED.value, index=True)
    gateway_order_id = Column(String, nullable=True)
    session_token = Column(String, nullable=True)
    return_url = Column(String, nullable=True)
    last_gateway_payload = Column(JSON, nullable=True)
    failure_reason = Column(String, nullable=True)

    admin_email_sent = Column(Boolean, nullable=False, default=False)
    admin_email_sent_at = Column(DateTime, nullable=True)
    admin_email_claimed_at = Column(DateTime, nullable=True)
    customer_email_sent = Column(Boolean, nullable=False, default=False)
    customer_email_sent_at = Column(DateTime, nullable=True)
    customer_email_claimed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)

    def email_sent(self, kind: NotificationKind) -> bool:
        return bool(getattr(self, f"{kind.value}_email_sent"))

    @property
    def is_terminal(self) -> bool:
        return self.status in {s.value for s in TERMINAL_STATUSES}
