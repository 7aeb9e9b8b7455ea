"""Payout Service: payout requests, approvals and client balances.

A client asks for the commission on one of its entries to be paid out
(payout_request_status: none -> requested). The credit team then either
approves, which marks the original paid and books one negative settlement
entry, or rejects, which books nothing. A settlement carries the key
"payout:<entry id>", so a retried approval reuses the entry an earlier
attempt already wrote. An approval can never exceed the entry amount or
the client's confirmed balance.

Balances are computed from CONFIRMED entries only; pending and voided
disbursement entries never count.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from loan_lifecycle.domain.commission import new_ledger_entry_id, settlement_key, to_decimal
from loan_lifecycle.domain.enums import (
    AuditAction,
    DisputeStatus,
    EntryType,
    LedgerEntryState,
    PayoutRequestStatus,
    Role,
)
from loan_lifecycle.domain.exceptions import (
    AuthorizationError,
    NotFoundError,
    PayoutStateError,
    ValidationError,
)
from loan_lifecycle.domain.models import ClientBalance, CommissionLedgerEntry
from loan_lifecycle.logging_config import get_logger
from loan_lifecycle.services.notifications import NotificationRelay

if TYPE_CHECKING:
    from collections.abc import Callable

    from loan_lifecycle.domain.models import CallerIdentity
    from loan_lifecycle.domain.ports import (
        ClientDirectory,
        CommissionLedgerStore,
        NotificationDispatcher,
    )
    from loan_lifecycle.services.audit import AuditTrail

logger = get_logger(__name__)

# Request states the credit team can still act on.
_SETTLED_OR_UNREQUESTED = frozenset({PayoutRequestStatus.NONE, PayoutRequestStatus.PAID})
_REQUESTABLE = frozenset({PayoutRequestStatus.NONE, PayoutRequestStatus.REJECTED})


class PayoutApprovalWorkflow:
    """Payout request sub-workflow on commission ledger entries."""

    def __init__(
        self,
        ledger: CommissionLedgerStore,
        audit: AuditTrail,
        clients: ClientDirectory,
        notifier: NotificationDispatcher,
        relay: NotificationRelay | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        id_factory: Callable[[], str] = new_ledger_entry_id,
    ) -> None:
        self._ledger = ledger
        self._audit = audit
        self._clients = clients
        self._notifier = notifier
        self.relay = relay or NotificationRelay()
        self._clock = clock
        self._id_factory = id_factory

    # ------------------------------------------------------------------
    # Client side
    # ------------------------------------------------------------------

    async def request_payout(
        self,
        entry_id: str,
        caller: CallerIdentity,
    ) -> CommissionLedgerEntry:
        """Flag one of the caller's own entries for payout."""
        if caller.role is not Role.CLIENT:
            raise AuthorizationError("Only clients can request payouts")

        entry = await self._get_entry_or_raise(entry_id)
        if entry.client_id != caller.client_id:
            raise AuthorizationError(f"Ledger entry {entry_id} does not belong to this client")
        if not entry.counts_towards_balance:
            raise PayoutStateError(
                entry.id, entry.payout_request_status.value, "entry is not confirmed"
            )
        if entry.payout_amount <= 0:
            raise ValidationError(
                "Payout can only be requested for a positive amount", field="payout_amount"
            )
        if entry.payout_request_status not in _REQUESTABLE:
            raise PayoutStateError(
                entry.id, entry.payout_request_status.value, "payout already requested"
            )
        if await self._available_balance(entry.client_id) <= 0:
            raise ValidationError("No balance available for payout", field="payout_amount")

        entry.payout_request_status = PayoutRequestStatus.REQUESTED
        entry = await self._ledger.update(entry)

        await self._audit.record(
            caller.email,
            entry.loan_file_id or "",
            AuditAction.PAYOUT_REQUESTED,
            f"Payout requested for ledger entry {entry.id}: {entry.payout_amount}",
        )
        logger.info("ledger.payout_requested", entry_id=entry.id, client_id=entry.client_id)
        return entry

    # ------------------------------------------------------------------
    # Credit team
    # ------------------------------------------------------------------

    async def approve_payout(
        self,
        entry_id: str,
        approved_amount: Decimal | float | str,
        note: str | None,
        actor: CallerIdentity,
    ) -> tuple[CommissionLedgerEntry, CommissionLedgerEntry]:
        """Settle a payout request.

        Returns:
            (original entry marked paid, new settlement entry)
        """
        self._require_credit_team(actor)
        amount = to_decimal(approved_amount, "approved_amount")
        if amount <= 0:
            raise ValidationError("approved_amount must be positive", field="approved_amount")

        entry = await self._get_entry_or_raise(entry_id)
        self._require_open_request(entry)
        if amount > entry.payout_amount:
            raise ValidationError(
                f"approved_amount {amount} exceeds the entry amount {entry.payout_amount}",
                field="approved_amount",
            )
        available = await self._available_balance(
            entry.client_id, ignore_key=settlement_key(entry.id)
        )
        if amount > available:
            raise ValidationError(
                f"approved_amount {amount} exceeds the available balance {available}",
                field="approved_amount",
            )

        entry.payout_request_status = PayoutRequestStatus.PAID
        entry = await self._ledger.update(entry)

        settlement: CommissionLedgerEntry | None = None
        try:
            settlement = await self._book_settlement(entry, amount, note)
            message = f"Payout approved: {amount}"
            if note:
                message += f". {note}"
            await self._audit.record(
                actor.email, entry.loan_file_id or "", AuditAction.PAYOUT_APPROVED, message
            )
        except (Exception, asyncio.CancelledError) as exc:
            logger.error(
                "ledger.payout_approval_failed",
                entry_id=entry.id,
                settlement_id=settlement.id if settlement else None,
                error=str(exc) or type(exc).__name__,
            )
            await self._undo_approval(entry, settlement)
            raise

        logger.info(
            "ledger.payout_approved",
            entry_id=entry.id,
            settlement_id=settlement.id,
            amount=str(amount),
        )

        self.relay.fire(
            "payout_approved",
            self._notify_approved(entry.id, entry.client_id, amount),
        )
        return entry, settlement

    async def reject_payout(
        self,
        entry_id: str,
        reason: str,
        actor: CallerIdentity,
    ) -> CommissionLedgerEntry:
        self._require_credit_team(actor)
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required", field="reason")

        entry = await self._get_entry_or_raise(entry_id)
        self._require_open_request(entry)

        entry.payout_request_status = PayoutRequestStatus.REJECTED
        entry = await self._ledger.update(entry)
        for orphan in await self._live_settlements(entry.id):
            orphan.ledger_state = LedgerEntryState.VOIDED
            await self._ledger.update(orphan)
            logger.warning("ledger.settlement_voided", entry_id=entry.id, settlement_id=orphan.id)

        await self._audit.record(
            actor.email,
            entry.loan_file_id or "",
            AuditAction.PAYOUT_REJECTED,
            f"Payout rejected: {reason.strip()}",
        )
        logger.info("ledger.payout_rejected", entry_id=entry.id)

        self.relay.fire(
            "payout_rejected",
            self._notify_rejected(entry.id, entry.client_id, reason.strip()),
        )
        return entry

    async def pending_requests(self, actor: CallerIdentity) -> list[CommissionLedgerEntry]:
        """Entries awaiting a credit-team decision, oldest first."""
        self._require_credit_team(actor)
        entries = await self._ledger.list_entries()
        pending = [
            e
            for e in entries
            if e.payout_request_status is PayoutRequestStatus.REQUESTED
            and e.counts_towards_balance
        ]
        return sorted(pending, key=lambda e: e.date)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def ledger_entries(
        self,
        caller: CallerIdentity,
        client_id: str | None = None,
        loan_file_id: str | None = None,
    ) -> list[CommissionLedgerEntry]:
        """List entries visible to the caller.

        Clients see their own entries, KAMs the entries of clients assigned
        to them, the credit team everything. Other roles have no ledger view.
        """
        if caller.role is Role.CLIENT:
            if client_id is not None and client_id != caller.client_id:
                raise AuthorizationError("Clients may only view their own ledger")
            client_id = caller.client_id
        elif caller.role is Role.KAM:
            managed = await self._managed_clients(caller)
            if client_id is not None and client_id not in managed:
                raise AuthorizationError(f"Client {client_id} is not managed by this KAM")
            entries = await self._ledger.list_entries(
                client_id=client_id, loan_file_id=loan_file_id
            )
            visible = [e for e in entries if e.client_id in managed]
            return sorted(visible, key=lambda e: e.date, reverse=True)
        elif caller.role is not Role.CREDIT_TEAM:
            raise AuthorizationError(f"Role {caller.role} may not view the commission ledger")
        entries = await self._ledger.list_entries(client_id=client_id, loan_file_id=loan_file_id)
        return sorted(entries, key=lambda e: e.date, reverse=True)

    async def client_balance(self, client_id: str, caller: CallerIdentity) -> ClientBalance:
        if caller.role is Role.CLIENT:
            if caller.client_id != client_id:
                raise AuthorizationError("Clients may only view their own balance")
        elif caller.role is Role.KAM:
            if client_id not in await self._managed_clients(caller):
                raise AuthorizationError(f"Client {client_id} is not managed by this KAM")
        elif caller.role is not Role.CREDIT_TEAM:
            raise AuthorizationError(f"Role {caller.role} may not view the commission ledger")

        entries = [
            e
            for e in await self._ledger.list_entries(client_id=client_id)
            if e.counts_towards_balance
        ]
        total_in = sum((e.payout_amount for e in entries if e.payout_amount > 0), Decimal(0))
        total_out = sum((-e.payout_amount for e in entries if e.payout_amount < 0), Decimal(0))
        return ClientBalance(
            client_id=client_id,
            current_balance=total_in - total_out,
            total_payouts=total_in,
            total_payins=total_out,
            pending_payout_requests=sum(
                1 for e in entries if e.payout_request_status is PayoutRequestStatus.REQUESTED
            ),
            disputed_entries=sum(
                1 for e in entries if e.dispute_status is DisputeStatus.FLAGGED
            ),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get_entry_or_raise(self, entry_id: str) -> CommissionLedgerEntry:
        entry = await self._ledger.get(entry_id)
        if entry is None:
            raise NotFoundError("Ledger entry", entry_id)
        return entry

    async def _managed_clients(self, caller: CallerIdentity) -> set[str]:
        if not caller.kam_id:
            return set()
        return await self._clients.managed_clients(caller.kam_id)

    async def _live_settlements(self, entry_id: str) -> list[CommissionLedgerEntry]:
        return [
            e
            for e in await self._ledger.list_entries(idempotency_key=settlement_key(entry_id))
            if e.ledger_state is not LedgerEntryState.VOIDED
        ]

    async def _available_balance(self, client_id: str, ignore_key: str | None = None) -> Decimal:
        """Confirmed balance, leaving out entries carrying ``ignore_key``."""
        return sum(
            (
                e.payout_amount
                for e in await self._ledger.list_entries(client_id=client_id)
                if e.counts_towards_balance
                and (ignore_key is None or e.idempotency_key != ignore_key)
            ),
            Decimal(0),
        )

    async def _book_settlement(
        self,
        entry: CommissionLedgerEntry,
        amount: Decimal,
        note: str | None,
    ) -> CommissionLedgerEntry:
        """Write the settlement debit, reusing one a previous attempt left behind."""
        description = f"Payout approved: {note or 'Commission payout'}"
        existing = await self._live_settlements(entry.id)
        if existing:
            settlement = existing[0]
            settlement.payout_amount = -amount
            settlement.description = description
            logger.info("ledger.settlement_reused", entry_id=entry.id, settlement_id=settlement.id)
            return await self._ledger.update(settlement)

        settlement = CommissionLedgerEntry(
            id=self._id_factory(),
            client_id=entry.client_id,
            loan_file_id=entry.loan_file_id,
            date=self._clock().date(),
            payout_amount=-amount,
            entry_type=EntryType.PAYIN,
            description=description,
            dispute_status=DisputeStatus.NONE,
            payout_request_status=PayoutRequestStatus.PAID,
            ledger_state=LedgerEntryState.CONFIRMED,
            idempotency_key=settlement_key(entry.id),
        )
        return await self._ledger.append(settlement)

    async def _undo_approval(
        self,
        entry: CommissionLedgerEntry,
        settlement: CommissionLedgerEntry | None,
    ) -> None:
        """Reopen the request and void the settlement. Failures are logged only."""
        if settlement is not None:
            try:
                settlement.ledger_state = LedgerEntryState.VOIDED
                await self._ledger.update(settlement)
            except Exception as exc:
                logger.error("ledger.void_failed", entry_id=settlement.id, error=str(exc))
        try:
            entry.payout_request_status = PayoutRequestStatus.REQUESTED
            await self._ledger.update(entry)
            logger.info("ledger.payout_approval_rolled_back", entry_id=entry.id)
        except Exception as exc:
            logger.error("ledger.rollback_failed", entry_id=entry.id, error=str(exc))

    @staticmethod
    def _require_credit_team(actor: CallerIdentity) -> None:
        if actor.role is not Role.CREDIT_TEAM:
            raise AuthorizationError("Only the credit team may act on payout requests")

    @staticmethod
    def _require_open_request(entry: CommissionLedgerEntry) -> None:
        if entry.payout_request_status in _SETTLED_OR_UNREQUESTED:
            detail = (
                "payout already paid"
                if entry.payout_request_status is PayoutRequestStatus.PAID
                else "no payout requested"
            )
            raise PayoutStateError(entry.id, entry.payout_request_status.value, detail)

    async def _notify_approved(self, entry_id: str, client_id: str, amount: Decimal) -> None:
        recipient = await self._clients.contact_email(client_id) or client_id
        await self._notifier.notify_payout_approved(entry_id, client_id, amount, recipient)

    async def _notify_rejected(self, entry_id: str, client_id: str, reason: str) -> None:
        recipient = await self._clients.contact_email(client_id) or client_id
        await self._notifier.notify_payout_rejected(entry_id, client_id, reason, recipient)
