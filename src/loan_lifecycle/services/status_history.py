"""Status history trail for loan applications.

One entry is appended for every successful transition, after the status
write. Entries are never edited. Reads sort by changed_at so the last entry
always describes the application's current status, whatever order the
store returns rows in.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from loan_lifecycle.domain.models import StatusHistoryEntry
from loan_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from loan_lifecycle.domain.ports import StatusHistoryStore

logger = get_logger(__name__)


class StatusHistoryRecorder:
    """Appends and reads the per-file transition trail."""

    def __init__(
        self,
        store: StatusHistoryStore,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._store = store
        self._clock = clock

    async def record(
        self,
        actor: str,
        file_id: str,
        from_status: str,
        to_status: str,
        reason: str | None = None,
    ) -> StatusHistoryEntry:
        entry = StatusHistoryEntry(
            file_id=file_id,
            from_status=from_status,
            to_status=to_status,
            changed_by=actor,
            changed_at=self._clock(),
            reason=reason,
        )
        stored = await self._store.append(entry)
        logger.info(
            "history.recorded",
            file_id=file_id,
            from_status=from_status,
            to_status=to_status,
            actor=actor,
        )
        return stored

    async def history(self, file_id: str) -> list[StatusHistoryEntry]:
        """Entries for ``file_id``, oldest first. Ties keep store order."""
        entries = await self._store.list_for_file(file_id)
        return sorted(entries, key=lambda e: e.changed_at)

    async def last_status(self, file_id: str) -> str | None:
        entries = await self.history(file_id)
        return entries[-1].to_status if entries else None
