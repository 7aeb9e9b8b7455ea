"""Audit trail writer.

Every transition and every ledger mutation writes one row to the file
audit log. Audit writes are part of the operation: a failure propagates to
the caller like any other record-store failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loan_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    from loan_lifecycle.domain.enums import AuditAction
    from loan_lifecycle.domain.ports import AuditSink

logger = get_logger(__name__)


class AuditTrail:
    """Thin typed front for an AuditSink."""

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    async def record(
        self,
        actor: str,
        file_id: str,
        action: AuditAction,
        message: str,
        resolved: bool = False,
    ) -> None:
        await self._sink.append(
            actor=actor,
            file_id=file_id,
            action_type=action.value,
            message=message,
            resolved=resolved,
        )
        logger.debug("audit.recorded", file_id=file_id, action=action.value, actor=actor)
