"""Repository classes for the webhook-backed record store.

Repositories encapsulate the table webhooks and the loose-schema mapping,
and hand canonical domain records to the service layer. They implement the
Protocols in domain/ports.py.

The record store has no server-side filtering, so reads fetch the table and
filter locally.
"""

from __future__ import annotations

import dataclasses
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from loan_lifecycle.domain.exceptions import ConflictError
from loan_lifecycle.infrastructure.record_store import mapper
from loan_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from decimal import Decimal

    from loan_lifecycle.config import Settings
    from loan_lifecycle.domain.models import (
        CommissionLedgerEntry,
        LoanApplication,
        StatusHistoryEntry,
    )
    from loan_lifecycle.infrastructure.record_store.client import RecordStoreClient

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LoanApplicationRepository:
    """Data access for the Loan Application table."""

    def __init__(
        self,
        client: RecordStoreClient,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._get_path = settings.loan_applications_get_path
        self._post_path = settings.loan_applications_post_path
        self._clock = clock

    async def get(self, application_id: str) -> LoanApplication | None:
        """Fetch an application by record id or File ID."""
        for record in await self._client.fetch_table(self._get_path):
            if application_id in (
                str(record.get("id")),
                mapper.text(record, "File ID", "fileId"),
            ):
                return mapper.application_from_record(record)
        return None

    async def list_all(self) -> list[LoanApplication]:
        records = await self._client.fetch_table(self._get_path)
        return [mapper.application_from_record(r) for r in records]

    async def upsert(
        self,
        application: LoanApplication,
        expected_version: str | None = None,
    ) -> LoanApplication:
        """Write the full record back, stamping a fresh Last Updated.

        The version check re-reads the record before posting. It narrows the
        lost-update window but is not atomic: the webhook offers no
        compare-and-set.
        """
        if expected_version is not None:
            current = await self.get(application.id)
            actual = current.version if current else None
            if actual != expected_version:
                logger.warning(
                    "loan.version_conflict",
                    application_id=application.id,
                    expected=expected_version,
                    actual=actual,
                )
                raise ConflictError(application.id, expected_version, actual)

        stamp = self._clock()
        if application.last_updated is not None and stamp <= application.last_updated:
            stamp = application.last_updated + timedelta(microseconds=1)
        application.last_updated = stamp

        await self._client.post_record(self._post_path, mapper.application_to_record(application))
        return application


class CommissionLedgerRepository:
    """Data access for the Commission Ledger table."""

    def __init__(self, client: RecordStoreClient, settings: Settings) -> None:
        self._client = client
        self._get_path = settings.commission_ledger_get_path
        self._post_path = settings.commission_ledger_post_path

    async def append(self, entry: CommissionLedgerEntry) -> CommissionLedgerEntry:
        await self._client.post_record(self._post_path, mapper.ledger_entry_to_record(entry))
        logger.debug("ledger.entry_written", entry_id=entry.id, state=entry.ledger_state.value)
        return entry

    async def get(self, entry_id: str) -> CommissionLedgerEntry | None:
        for entry in await self._all():
            if entry_id in (entry.id, str(entry.raw.get("id"))):
                return entry
        return None

    async def list_entries(
        self,
        client_id: str | None = None,
        loan_file_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> list[CommissionLedgerEntry]:
        entries = await self._all()
        if client_id is not None:
            entries = [e for e in entries if e.client_id == client_id]
        if loan_file_id is not None:
            entries = [e for e in entries if e.loan_file_id == loan_file_id]
        if idempotency_key is not None:
            entries = [e for e in entries if e.idempotency_key == idempotency_key]
        return entries

    async def update(self, entry: CommissionLedgerEntry) -> CommissionLedgerEntry:
        # The POST webhook upserts on id.
        return await self.append(entry)

    async def _all(self) -> list[CommissionLedgerEntry]:
        records = await self._client.fetch_table(self._get_path)
        return [mapper.ledger_entry_from_record(r) for r in records]


class StatusHistoryRepository:
    """Data access for the Status History table (append-only)."""

    def __init__(self, client: RecordStoreClient, settings: Settings) -> None:
        self._client = client
        self._get_path = settings.status_history_get_path
        self._post_path = settings.status_history_post_path

    async def append(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        if entry.id is None:
            entry = dataclasses.replace(entry, id=f"HIST-{uuid.uuid4().hex[:16].upper()}")
        await self._client.post_record(self._post_path, mapper.history_to_record(entry))
        return entry

    async def list_for_file(self, file_id: str) -> list[StatusHistoryEntry]:
        entries = []
        for record in await self._client.fetch_table(self._get_path):
            entry = mapper.history_from_record(record)
            if entry is None:
                logger.warning("history.unreadable_row", record_id=record.get("id"))
                continue
            if entry.file_id == file_id:
                entries.append(entry)
        return entries


class FileAuditLogRepository:
    """Write-only access to the File Auditing Log table."""

    def __init__(
        self,
        client: RecordStoreClient,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._post_path = settings.file_audit_log_post_path
        self._clock = clock

    async def append(
        self,
        actor: str,
        file_id: str,
        action_type: str,
        message: str,
        resolved: bool = False,
    ) -> None:
        log_id = f"AUDIT-{uuid.uuid4().hex[:16].upper()}"
        await self._client.post_record(
            self._post_path,
            mapper.audit_record(
                log_id=log_id,
                actor=actor,
                file_id=file_id,
                action_type=action_type,
                message=message,
                target_role="",
                resolved=resolved,
                timestamp=self._clock(),
            ),
        )


class ClientRepository:
    """Read-only lookups against the Clients table."""

    def __init__(self, client: RecordStoreClient, settings: Settings) -> None:
        self._client = client
        self._get_path = settings.clients_get_path

    async def commission_rate(self, client_id: str) -> Decimal | None:
        record = await self._find(client_id)
        return mapper.client_commission_rate(record) if record else None

    async def contact_email(self, client_id: str) -> str | None:
        record = await self._find(client_id)
        return mapper.client_contact_email(record) if record else None

    async def managed_clients(self, kam_id: str) -> set[str]:
        """Ids (record id and Client ID) of every client assigned to ``kam_id``."""
        managed: set[str] = set()
        for record in await self._client.fetch_table(self._get_path):
            if mapper.client_assigned_kam(record) == kam_id:
                managed.update(mapper.client_ids(record))
        return managed

    async def _find(self, client_id: str) -> dict | None:
        for record in await self._client.fetch_table(self._get_path):
            if mapper.client_matches(record, client_id):
                return record
        return None
