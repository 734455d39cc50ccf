from abc import ABC, abstractmethod
from typing import Optional

from app.models import NotificationKind, Transaction


class SuccessNotification:
    """Everything a success email needs, detached from the ORM record."""

    def __init__(
        self,
        transaction_id: str,
        customer_name: str,
        customer_email: str,
        customer_phone: Optional[str],
        amount: float,
        currency: str,
        plan: Optional[str],
        duration: Optional[str],
    ):
        self.transaction_id = transaction_id
        self.customer_name = customer_name
        self.customer_email = customer_email
        self.customer_phone = customer_phone
        self.amount = amount
        self.currency = currency
        self.plan = plan
        self.duration = duration

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "SuccessNotification":
        return cls(
            transaction_id=txn.id,
            customer_name=txn.customer_name,
            customer_email=txn.customer_email,
            customer_phone=txn.customer_phone,
            amount=txn.amount,
            currency=txn.currency,
            plan=txn.plan,
            duration=txn.duration,
        )


class BaseNotifier(ABC):
    """Abstract base for notification senders."""

    @abstractmethod
    async def send_success_email(
        self, kind: NotificationKind, payload: SuccessNotification
    ) -> bool:
        """
        Dispatch one success email of the given kind.
        Returns True on confirmed dispatch. Must never raise.
        """
        pass
