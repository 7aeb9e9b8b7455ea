"""Dispute handling on commission ledger entries.

Clients flag their own entries and the credit team may flag any. The
credit team then resolves (accepting, optionally with a corrected amount)
or rejects the dispute. The state rules live in domain/disputes.py; this
service adds authorization, persistence and the audit trail.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from loan_lifecycle.domain import disputes
from loan_lifecycle.domain.commission import to_decimal
from loan_lifecycle.domain.enums import AuditAction, Role
from loan_lifecycle.domain.exceptions import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from loan_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from decimal import Decimal

    from loan_lifecycle.domain.models import CallerIdentity, CommissionLedgerEntry
    from loan_lifecycle.domain.ports import CommissionLedgerStore
    from loan_lifecycle.services.audit import AuditTrail

logger = get_logger(__name__)

_FLAGGING_ROLES = frozenset({Role.CLIENT, Role.CREDIT_TEAM})


class DisputeLifecycleManager:
    """Flags and resolves disputes on ledger entries."""

    def __init__(
        self,
        ledger: CommissionLedgerStore,
        audit: AuditTrail,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._ledger = ledger
        self._audit = audit
        self._clock = clock

    async def flag_dispute(
        self,
        entry_id: str,
        reason: str,
        raised_by: CallerIdentity,
    ) -> CommissionLedgerEntry:
        """Open a dispute on an entry.

        Raises:
            NotFoundError: No such entry.
            AuthorizationError: A client flagging another client's entry, or a
                role other than client or credit team.
            ValidationError: Empty reason.
            DisputeStateError: The entry already has an open dispute.
        """
        if not reason or not reason.strip():
            raise ValidationError("A dispute reason is required", field="reason")

        entry = await self._get_entry_or_raise(entry_id)
        if raised_by.role not in _FLAGGING_ROLES:
            raise AuthorizationError(f"Role {raised_by.role} may not flag disputes")
        if raised_by.role is Role.CLIENT and raised_by.client_id != entry.client_id:
            raise AuthorizationError(f"Ledger entry {entry_id} does not belong to this client")

        disputes.apply_flag(entry, reason.strip(), raised_by.email, self._clock())
        entry = await self._ledger.update(entry)

        await self._audit.record(
            raised_by.email,
            entry.loan_file_id or "",
            AuditAction.LEDGER_DISPUTE_FLAGGED,
            f"Ledger entry {entry.id} disputed: {reason.strip()}",
        )
        logger.info("ledger.dispute_flagged", entry_id=entry.id, actor=raised_by.email)
        return entry

    async def resolve_dispute(
        self,
        actor: CallerIdentity,
        entry_id: str,
        resolved: bool,
        adjusted_amount: Decimal | float | str | None = None,
        notes: str | None = None,
    ) -> CommissionLedgerEntry:
        """Close the open dispute on an entry. Credit team only.

        ``resolved=True`` accepts the dispute and, when ``adjusted_amount`` is
        given, replaces the entry's payout amount. ``resolved=False`` rejects it.
        """
        if actor.role is not Role.CREDIT_TEAM:
            raise AuthorizationError("Only the credit team may resolve disputes")

        amount = None
        if adjusted_amount is not None:
            amount = to_decimal(adjusted_amount, "adjusted_amount")

        entry = await self._get_entry_or_raise(entry_id)
        disputes.apply_resolution(
            entry,
            resolved=resolved,
            resolved_by=actor.email,
            now=self._clock(),
            adjusted_amount=amount if resolved else None,
            notes=notes,
        )
        entry = await self._ledger.update(entry)

        outcome = "resolved" if resolved else "rejected"
        message = f"Dispute on ledger entry {entry.id} {outcome}"
        if resolved and amount is not None:
            message += f"; amount adjusted to {amount}"
        if notes:
            message += f". Notes: {notes}"
        await self._audit.record(
            actor.email,
            entry.loan_file_id or "",
            AuditAction.LEDGER_DISPUTE_RESOLVED,
            message,
            resolved=True,
        )
        logger.info(
            "ledger.dispute_resolved",
            entry_id=entry.id,
            outcome=outcome,
            adjusted_amount=str(amount) if amount is not None else None,
        )
        return entry

    async def _get_entry_or_raise(self, entry_id: str) -> CommissionLedgerEntry:
        entry = await self._ledger.get(entry_id)
        if entry is None:
            raise NotFoundError("Ledger entry", entry_id)
        return entry
