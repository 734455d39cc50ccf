"""
SMTP notification sender.

smtplib is blocking, so each dispatch runs in a worker thread. Any delivery
failure is logged and reported as False; nothing escapes `send_success_email`.
"""
import asyncio
import smtplib
from email.message import EmailMessage

import structlog

from app.config import Settings
from app.errors import NotificationError
from app.models import NotificationKind
from app.notifications.base import BaseNotifier, SuccessNotification
from app.notifications.templates import render_admin_alert, render_customer_confirmation

logger = structlog.get_logger(__name__)

SMTP_TIMEOUT_SECONDS = 15


class SmtpNotifier(BaseNotifier):
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        admin_recipient: str,
        brand: str,
        username: str = "",
        password: str = "",
        secure: bool = False,
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.admin_recipient = admin_recipient
        self.brand = brand
        self.username = username
        self.password = password
        self.secure = secure

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpNotifier":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.email_from,
            admin_recipient=settings.admin_email,
            brand=settings.brand_name,
            username=settings.smtp_user,
            password=settings.smtp_password,
            secure=settings.smtp_secure,
        )

    def build_message(self, kind: NotificationKind, payload: SuccessNotification) -> EmailMessage:
        if kind == NotificationKind.ADMIN:
            subject, html = render_admin_alert(payload, self.brand)
            recipient = self.admin_recipient
        else:
            subject, html = render_customer_confirmation(payload, self.brand)
            recipient = payload.customer_email

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f'"{self.brand} Notifications" <{self.sender}>'
        msg["To"] = recipient
        msg.set_content(f"{subject}\n\nTransaction ID: {payload.transaction_id}")
        msg.add_alternative(html, subtype="html")
        return msg

    async def send_success_email(
        self, kind: NotificationKind, payload: SuccessNotification
    ) -> bool:
        try:
            msg = self.build_message(kind, payload)
            await asyncio.to_thread(self._deliver, msg)
        except NotificationError as e:
            logger.error(
                "notification_failed",
                kind=kind.value,
                transaction_id=payload.transaction_id,
                error=str(e),
                detail=e.detail,
            )
            return False
        except (ValueError, TypeError) as e:
            # Malformed addresses or header values
            logger.error(
                "notification_failed",
                kind=kind.value,
                transaction_id=payload.transaction_id,
                error=str(e),
            )
            return False

        logger.info("notification_sent", kind=kind.value, transaction_id=payload.transaction_id)
        return True

    def _deliver(self, msg: EmailMessage) -> None:
        try:
            if self.secure:
                smtp = smtplib.SMTP_SSL(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS)
            else:
                smtp = smtplib.SMTP(self.host, self.port, timeout=SMTP_TIMEOUT_SECONDS)
            with smtp:
                if not self.secure:
                    smtp.ehlo()
                    if smtp.has_extn("starttls"):
                        smtp.starttls()
                        smtp.ehlo()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery to {msg['To']} failed", detail=str(e)) from e
