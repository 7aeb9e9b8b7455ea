"""Collaborator Protocols consumed by the lifecycle services.

These are Protocols (structural subtyping) so the webhook-backed
repositories and the in-memory test doubles don't need to inherit from a
base class. They just need to match the shape.

The domain layer has ZERO imports from httpx or any external service.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from decimal import Decimal

    from loan_lifecycle.domain.models import (
        CommissionLedgerEntry,
        LoanApplication,
        StatusHistoryEntry,
    )


@runtime_checkable
class LoanApplicationStore(Protocol):
    """Read/write access to loan application records."""

    async def get(self, application_id: str) -> LoanApplication | None: ...

    async def list_all(self) -> list[LoanApplication]: ...

    async def upsert(
        self,
        application: LoanApplication,
        expected_version: str | None = None,
    ) -> LoanApplication:
        """Write the full record back.

        When ``expected_version`` is given and the stored record's version
        differs, raise ConflictError instead of writing.
        """
        ...


@runtime_checkable
class CommissionLedgerStore(Protocol):
    """Append/amend access to the commission ledger."""

    async def append(self, entry: CommissionLedgerEntry) -> CommissionLedgerEntry: ...

    async def get(self, entry_id: str) -> CommissionLedgerEntry | None: ...

    async def list_entries(
        self,
        client_id: str | None = None,
        loan_file_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> list[CommissionLedgerEntry]: ...

    async def update(self, entry: CommissionLedgerEntry) -> CommissionLedgerEntry: ...


@runtime_checkable
class StatusHistoryStore(Protocol):
    """Append-only store of status transitions."""

    async def append(self, entry: StatusHistoryEntry) -> StatusHistoryEntry: ...

    async def list_for_file(self, file_id: str) -> list[StatusHistoryEntry]:
        """Return entries for one file in any order."""
        ...


@runtime_checkable
class AuditSink(Protocol):
    """Write-only audit log."""

    async def append(
        self,
        actor: str,
        file_id: str,
        action_type: str,
        message: str,
        resolved: bool = False,
    ) -> None: ...


@runtime_checkable
class ClientDirectory(Protocol):
    """Lookups against the client master records."""

    async def commission_rate(self, client_id: str) -> Decimal | None: ...

    async def contact_email(self, client_id: str) -> str | None: ...

    async def managed_clients(self, kam_id: str) -> set[str]: ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Best-effort notifications fired after a mutation commits."""

    async def notify_disbursement(
        self, file_id: str, client_id: str, amount: Decimal, recipient: str
    ) -> None: ...

    async def notify_commission_created(
        self, entry_id: str, client_id: str, amount: Decimal, recipient: str
    ) -> None: ...

    async def notify_payout_approved(
        self, entry_id: str, client_id: str, amount: Decimal, recipient: str
    ) -> None: ...

    async def notify_payout_rejected(
        self, entry_id: str, client_id: str, reason: str, recipient: str
    ) -> None: ...
