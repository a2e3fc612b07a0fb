"""Post-charge notifications: payer receipt and admin alert.

Dispatch is fire-and-forget from the payment path. Each dispatch runs as a
detached asyncio task that logs and records its own failures; nothing it does
can change the outcome of the payment that triggered it.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable

import resend

from teampay.common.logging import logger
from teampay.common.metrics import notifications_sent_total
from teampay.services.notification.models import NotificationLog
from teampay.services.notification.templates import (
    RenderedEmail,
    admin_notification_email,
    payment_receipt_email,
)


@dataclass(frozen=True)
class NotificationOutcome:
    kind: str
    recipient: str | None
    success: bool
    message_id: str | None = None
    error: str | None = None


class ResendEmailSender:
    """Blocking Resend SDK calls, pushed to a worker thread by the dispatcher."""

    def __init__(self, api_key: str, from_email: str, reply_to: str) -> None:
        self.api_key = api_key
        self.from_email = from_email
        self.reply_to = reply_to

    def send(self, to: str, email: RenderedEmail) -> str | None:
        if not self.api_key:
            raise RuntimeError("RESEND_API_KEY is not configured")
        resend.api_key = self.api_key
        response = resend.Emails.send(
            {
                "from": self.from_email,
                "to": [to],
                "subject": email.subject,
                "html": email.html,
                "text": email.text,
                "reply_to": self.reply_to,
            }
        )
        return response.get("id") if isinstance(response, dict) else getattr(response, "id", None)


class NotificationDispatcher:
    """Schedules receipt + admin emails without blocking the caller."""

    def __init__(
        self,
        session_factory,
        sender,
        settings,
        service_name: str = "teampay-api",
        admin_lookup: Callable[[str], str | None] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.sender = sender
        self.admin_email = settings.admin_email
        self.support_email = settings.support_email
        self.app_url = settings.app_url
        self.service_name = service_name
        self.admin_lookup = admin_lookup or settings.collection_admin_emails.get
        self._tasks: set[asyncio.Task] = set()

    def admin_recipient(self, collection) -> str:
        """The collection owner's address, else the configured admin inbox."""

        admin_id = getattr(collection, "admin_id", None)
        if admin_id:
            try:
                email = self.admin_lookup(admin_id)
            except Exception as exc:
                logger.warning("collection admin lookup failed admin_id=%s error=%s", admin_id, exc)
                email = None
            if email:
                return email
        return self.admin_email

    def dispatch(self, payment, collection, receipt_url: str | None = None) -> asyncio.Task:
        """Start delivery in the background and return the detached task."""

        task = asyncio.create_task(self.send_payment_emails(payment, collection, receipt_url))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("notification task cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("notification task crashed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for in-flight notification tasks (used on shutdown)."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def send_payment_emails(self, payment, collection, receipt_url: str | None = None) -> list[NotificationOutcome]:
        """Send both emails concurrently and persist one log row per recipient."""

        receipt, admin = await asyncio.gather(
            self._send_receipt(payment, collection, receipt_url),
            self._send_admin_alert(payment, collection),
            return_exceptions=True,
        )
        outcomes = []
        for kind, result in (("receipt", receipt), ("admin", admin)):
            if isinstance(result, BaseException):
                result = NotificationOutcome(kind=kind, recipient=None, success=False, error=str(result))
            outcomes.append(result)
        self._record(payment.id, outcomes)
        return outcomes

    async def _send_receipt(self, payment, collection, receipt_url: str | None) -> NotificationOutcome:
        if not payment.payer_email:
            return NotificationOutcome(kind="receipt", recipient=None, success=False, error="no payer email")
        email = payment_receipt_email(payment, collection, receipt_url, self.support_email)
        return await self._deliver("receipt", payment.payer_email, email)

    async def _send_admin_alert(self, payment, collection) -> NotificationOutcome:
        email = admin_notification_email(payment, collection, self.app_url)
        return await self._deliver("admin", self.admin_recipient(collection), email)

    async def _deliver(self, kind: str, recipient: str, email: RenderedEmail) -> NotificationOutcome:
        try:
            message_id = await asyncio.to_thread(self.sender.send, recipient, email)
        except Exception as exc:
            logger.error("notification send failed kind=%s error=%s", kind, exc)
            notifications_sent_total.labels(service=self.service_name, kind=kind, outcome="failed").inc()
            return NotificationOutcome(kind=kind, recipient=recipient, success=False, error=str(exc))
        logger.info("notification sent kind=%s message_id=%s", kind, message_id)
        notifications_sent_total.labels(service=self.service_name, kind=kind, outcome="sent").inc()
        return NotificationOutcome(kind=kind, recipient=recipient, success=True, message_id=message_id)

    def _record(self, payment_id: str, outcomes: list[NotificationOutcome]) -> None:
        try:
            with self.session_factory() as db:
                for outcome in outcomes:
                    db.add(
                        NotificationLog(
                            payment_id=payment_id,
                            kind=outcome.kind,
                            recipient=outcome.recipient or "",
                            success=outcome.success,
                            provider_message_id=outcome.message_id,
                            error=outcome.error,
                        )
                    )
                db.commit()
        except Exception as exc:
            logger.exception("notification log write failed: %s", exc)
