"""Best-effort notifications.

Notifications are sent after the mutation they describe has committed, in
background tasks. A failed or slow notification never reaches the caller:
the task's exception is logged and dropped.

Usage:
    relay = NotificationRelay()
    relay.fire("disbursement", dispatcher.notify_disbursement(...))
    ...
    await relay.drain()   # at shutdown, or in tests before asserting
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from loan_lifecycle.domain.enums import Role
from loan_lifecycle.infrastructure.record_store import mapper
from loan_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine
    from decimal import Decimal

    from loan_lifecycle.config import Settings
    from loan_lifecycle.infrastructure.record_store.client import RecordStoreClient

logger = get_logger(__name__)


class NotificationRelay:
    """Runs notification coroutines as tracked background tasks."""

    def __init__(self) -> None:
        self._pending: set[asyncio.Task[None]] = set()

    def fire(self, kind: str, notification: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(notification)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._finished(kind, t))

    def _finished(self, kind: str, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("notification.cancelled", kind=kind)
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("notification.failed", kind=kind, error=str(exc))
        else:
            logger.debug("notification.sent", kind=kind)

    async def drain(self) -> None:
        """Wait for every in-flight notification to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def _format_amount(amount: Decimal) -> str:
    return f"₹{amount:,.2f}"


class WebhookNotificationDispatcher:
    """Posts in-app notifications to the Notifications table webhook."""

    def __init__(
        self,
        client: RecordStoreClient,
        settings: Settings,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._client = client
        self._path = settings.notifications_post_path
        self._clock = clock

    async def _send(
        self,
        recipient: str,
        notification_type: str,
        title: str,
        message: str,
        **related: str,
    ) -> None:
        notification_id = f"NOTIF-{uuid.uuid4().hex[:16].upper()}"
        await self._client.post_record(
            self._path,
            mapper.notification_record(
                notification_id=notification_id,
                recipient=recipient,
                recipient_role=Role.CLIENT.value,
                notification_type=notification_type,
                title=title,
                message=message,
                created_at=self._clock(),
                **related,
            ),
        )

    async def notify_disbursement(
        self, file_id: str, client_id: str, amount: Decimal, recipient: str
    ) -> None:
        await self._send(
            recipient,
            "disbursement",
            "Loan Disbursed",
            f"Your loan application {file_id} has been disbursed. "
            f"Amount: {_format_amount(amount)}",
            related_file=file_id,
            related_client=client_id,
        )

    async def notify_commission_created(
        self, entry_id: str, client_id: str, amount: Decimal, recipient: str
    ) -> None:
        await self._send(
            recipient,
            "commission",
            "Commission Credited",
            f"Commission of {_format_amount(amount)} has been credited to your account.",
            related_client=client_id,
            related_ledger_entry=entry_id,
        )

    async def notify_payout_approved(
        self, entry_id: str, client_id: str, amount: Decimal, recipient: str
    ) -> None:
        await self._send(
            recipient,
            "payout_approved",
            "Payout Approved",
            f"Your payout request of {_format_amount(amount)} has been approved.",
            related_client=client_id,
            related_ledger_entry=entry_id,
        )

    async def notify_payout_rejected(
        self, entry_id: str, client_id: str, reason: str, recipient: str
    ) -> None:
        await self._send(
            recipient,
            "payout_rejected",
            "Payout Request Rejected",
            f"Your payout request has been rejected. Reason: {reason}",
            related_client=client_id,
            related_ledger_entry=entry_id,
        )
