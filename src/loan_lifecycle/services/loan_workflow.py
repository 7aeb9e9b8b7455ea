"""Loan Workflow Service: application lifecycle use cases.

This is the application layer that coordinates between:
    - Status normalizer and transition guard (domain)
    - Application store (optimistic-concurrency writes)
    - Status history recorder and audit trail
    - Commission calculator and ledger (disbursement only)
    - Notification relay (after commit, best effort)

Every action follows the same path: load, normalize the stored status,
validate the move for the caller's role, write the status against the
version that was read, append history, write audit. Nothing is written when
validation fails. If history or audit fails after the status write, the
previous record is written back (version checked), a reverse history row is
added when the forward one landed, and a rollback audit row is written
before the error is re-raised.

Disbursement is a saga over three stores that share no transaction:

    1. reject duplicates (ledger idempotency key, optional Redis claim)
    2. resolve the client's commission rate
    3. append the ledger entry as PENDING
    4. write status=disbursed (version checked)
    5. append history and audit
    6. mark the ledger entry CONFIRMED

Any failure after step 3 voids the entry and, if step 4 went through,
restores the previous status before re-raising.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from loan_lifecycle.domain.commission import disbursement_key, to_decimal
from loan_lifecycle.domain.enums import (
    AuditAction,
    LedgerEntryState,
    LenderDecision,
    LoanStatus,
    Role,
)
from loan_lifecycle.domain.exceptions import (
    AuthorizationError,
    DuplicateOperationError,
    NotFoundError,
    TransitionError,
    ValidationError,
)
from loan_lifecycle.domain.state_machine import (
    TRANSITION_ROLES,
    allowed_next_statuses,
    validate_transition,
)
from loan_lifecycle.domain.status_aliases import normalize_status
from loan_lifecycle.logging_config import get_logger
from loan_lifecycle.services.notifications import NotificationRelay

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import date
    from decimal import Decimal

    from loan_lifecycle.domain.commission import CommissionCalculator
    from loan_lifecycle.domain.models import (
        CallerIdentity,
        CommissionLedgerEntry,
        LedgerResult,
        LoanApplication,
        StatusHistoryEntry,
    )
    from loan_lifecycle.domain.ports import (
        ClientDirectory,
        CommissionLedgerStore,
        LoanApplicationStore,
        NotificationDispatcher,
    )
    from loan_lifecycle.infrastructure.redis_client import IdempotencyGuard
    from loan_lifecycle.services.audit import AuditTrail
    from loan_lifecycle.services.status_history import StatusHistoryRecorder

logger = get_logger(__name__)


@dataclass(frozen=True)
class ApplicationStatus:
    """Current status plus the moves open to the caller."""

    application: LoanApplication
    status: str
    allowed_next: list[LoanStatus]


@dataclass(frozen=True)
class DisbursementOutcome:
    application: LoanApplication
    ledger: LedgerResult


class LoanWorkflowService:
    """Manages the loan application lifecycle."""

    def __init__(
        self,
        applications: LoanApplicationStore,
        ledger: CommissionLedgerStore,
        history: StatusHistoryRecorder,
        audit: AuditTrail,
        clients: ClientDirectory,
        notifier: NotificationDispatcher,
        calculator: CommissionCalculator,
        relay: NotificationRelay | None = None,
        idempotency: IdempotencyGuard | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._applications = applications
        self._ledger = ledger
        self._history = history
        self._audit = audit
        self._clients = clients
        self._notifier = notifier
        self._calculator = calculator
        self.relay = relay or NotificationRelay()
        self._idempotency = idempotency
        self._clock = clock

    # ------------------------------------------------------------------
    # Client actions
    # ------------------------------------------------------------------

    async def submit(self, application_id: str, caller: CallerIdentity) -> LoanApplication:
        """Submit a draft (or answer a query) for KAM review."""
        return await self._transition(application_id, LoanStatus.UNDER_KAM_REVIEW, caller)

    async def withdraw(
        self,
        application_id: str,
        caller: CallerIdentity,
        reason: str | None = None,
    ) -> LoanApplication:
        return await self._transition(application_id, LoanStatus.WITHDRAWN, caller, reason)

    # ------------------------------------------------------------------
    # KAM review
    # ------------------------------------------------------------------

    async def forward_to_credit(
        self,
        application_id: str,
        caller: CallerIdentity,
        notes: str | None = None,
    ) -> LoanApplication:
        return await self._transition(
            application_id, LoanStatus.PENDING_CREDIT_REVIEW, caller, notes
        )

    async def raise_client_query(
        self,
        application_id: str,
        caller: CallerIdentity,
        message: str,
    ) -> LoanApplication:
        """Send the application back to the client with a question."""
        self._require_text(message, "message")
        return await self._transition(
            application_id, LoanStatus.QUERY_WITH_CLIENT, caller, message
        )

    # ------------------------------------------------------------------
    # Credit review
    # ------------------------------------------------------------------

    async def raise_credit_query(
        self,
        application_id: str,
        caller: CallerIdentity,
        message: str,
    ) -> LoanApplication:
        """Send the application back to the KAM with a question."""
        self._require_text(message, "message")
        return await self._transition(
            application_id, LoanStatus.CREDIT_QUERY_WITH_KAM, caller, message
        )

    async def mark_in_negotiation(
        self,
        application_id: str,
        caller: CallerIdentity,
        notes: str | None = None,
    ) -> LoanApplication:
        return await self._transition(application_id, LoanStatus.IN_NEGOTIATION, caller, notes)

    async def send_to_nbfc(
        self,
        application_id: str,
        caller: CallerIdentity,
        nbfc_ids: list[str],
    ) -> LoanApplication:
        """Share the file with one or more lending partners."""
        partners = [n.strip() for n in nbfc_ids if n and n.strip()]
        if not partners:
            raise ValidationError("At least one NBFC must be selected", field="nbfc_ids")

        def assign(application: LoanApplication) -> None:
            application.assigned_nbfc = ", ".join(partners)

        return await self._transition(
            application_id,
            LoanStatus.SENT_TO_NBFC,
            caller,
            f"Sent to NBFC: {', '.join(partners)}",
            mutate=assign,
        )

    # ------------------------------------------------------------------
    # Lender decision
    # ------------------------------------------------------------------

    async def record_nbfc_decision(
        self,
        application_id: str,
        caller: CallerIdentity,
        decision: LenderDecision,
        approved_amount: Decimal | float | str | None = None,
        remarks: str | None = None,
    ) -> LoanApplication:
        """Record a lending partner's decision on a file sent to it.

        Approved moves the file to approved and stores the sanctioned amount.
        Rejected moves it to rejected. Needs Clarification only records the
        decision fields; the status stays sent_to_nbfc.
        """
        decided_on = self._clock().date()

        if decision is LenderDecision.NEEDS_CLARIFICATION:
            application = await self._get_application_or_raise(application_id)
            current = normalize_status(application.status)
            if caller.role not in TRANSITION_ROLES[LoanStatus.APPROVED]:
                raise AuthorizationError(
                    f"Role {caller.role} may not record lender decisions"
                )
            if current != LoanStatus.SENT_TO_NBFC:
                raise ValidationError(
                    f"Application {application.file_id} is not awaiting a lender decision "
                    f"(status: {current})",
                    field="decision",
                )
            self._require_text(remarks, "remarks")
            before = copy.deepcopy(application)
            application.lender_decision_status = decision.value
            application.lender_decision_remarks = remarks
            application.lender_decision_date = decided_on
            application = await self._applications.upsert(
                application, expected_version=before.version
            )
            try:
                await self._audit.record(
                    caller.email,
                    application.file_id,
                    AuditAction.NBFC_DECISION,
                    f"Lender requested clarification: {remarks}",
                )
            except (Exception, asyncio.CancelledError):
                await self._roll_back(
                    before,
                    application,
                    caller,
                    AuditAction.NBFC_DECISION_ROLLED_BACK,
                    "Lender clarification request rolled back",
                )
                raise
            logger.info("loan.nbfc_clarification", file_id=application.file_id)
            return application

        if decision is LenderDecision.APPROVED:
            amount = to_decimal(approved_amount, "approved_amount")
            if amount <= 0:
                raise ValidationError("approved_amount must be positive", field="approved_amount")
            target = LoanStatus.APPROVED
        else:
            amount = None
            target = LoanStatus.REJECTED

        def apply_decision(application: LoanApplication) -> None:
            application.lender_decision_status = decision.value
            application.lender_decision_remarks = remarks
            application.lender_decision_date = decided_on
            if amount is not None:
                application.approved_amount = amount

        message = f"Lender decision: {decision.value}"
        if amount is not None:
            message += f" (approved amount {amount})"
        if remarks:
            message += f". Remarks: {remarks}"
        return await self._transition(
            application_id,
            target,
            caller,
            remarks,
            mutate=apply_decision,
            extra_audit=(AuditAction.NBFC_DECISION, message),
        )

    # ------------------------------------------------------------------
    # Disbursement (saga)
    # ------------------------------------------------------------------

    async def mark_disbursed(
        self,
        application_id: str,
        caller: CallerIdentity,
        disbursed_amount: Decimal | float | str,
        disbursed_date: date | None = None,
    ) -> DisbursementOutcome:
        """Disburse an approved application and book its commission.

        Raises:
            TransitionError: The application is not approved, or the caller
                may not disburse.
            DuplicateOperationError: This file was already disbursed on this date.
        """
        application = await self._get_application_or_raise(application_id)
        self._check_ownership(application, caller)
        previous_status = normalize_status(application.status)
        self._validate(application, previous_status, LoanStatus.DISBURSED, caller)

        amount = to_decimal(disbursed_amount, "disbursed_amount")
        if amount <= 0:
            raise ValidationError("disbursed_amount must be positive", field="disbursed_amount")
        disbursed_on = disbursed_date or self._clock().date()
        key = disbursement_key(application.file_id, disbursed_on)

        live = [
            e
            for e in await self._ledger.list_entries(idempotency_key=key)
            if e.ledger_state is not LedgerEntryState.VOIDED
        ]
        if live:
            logger.warning("loan.duplicate_disbursement", file_id=application.file_id, key=key)
            raise DuplicateOperationError(key)
        if self._idempotency is not None and not await self._idempotency.claim(key):
            logger.warning("loan.disbursement_in_flight", file_id=application.file_id, key=key)
            raise DuplicateOperationError(key)

        try:
            outcome = await self._run_disbursement(
                application, caller, previous_status, amount, disbursed_on
            )
        except (Exception, asyncio.CancelledError):
            if self._idempotency is not None:
                await self._idempotency.release(key)
            raise

        entry = outcome.ledger.entry
        self.relay.fire(
            "disbursement",
            self._notify_client(
                application.client_id,
                lambda to: self._notifier.notify_disbursement(
                    application.file_id, application.client_id, amount, to
                ),
            ),
        )
        if outcome.ledger.commission_amount > 0:
            self.relay.fire(
                "commission_created",
                self._notify_client(
                    application.client_id,
                    lambda to: self._notifier.notify_commission_created(
                        entry.id, application.client_id, entry.payout_amount, to
                    ),
                ),
            )
        return outcome

    async def _run_disbursement(
        self,
        application: LoanApplication,
        caller: CallerIdentity,
        previous_status: str,
        amount: Decimal,
        disbursed_on: date,
    ) -> DisbursementOutcome:
        rate = await self._clients.commission_rate(application.client_id)
        result = self._calculator.calculate(
            loan_file_id=application.file_id,
            client_id=application.client_id,
            disbursed_amount=amount,
            disbursed_date=disbursed_on,
            commission_rate=rate,
        )
        entry = await self._ledger.append(result.entry)
        logger.info(
            "ledger.entry_pending",
            entry_id=entry.id,
            file_id=application.file_id,
            payout_amount=str(entry.payout_amount),
        )

        previous_amounts = (application.disbursed_amount, application.approved_amount)
        expected = application.version
        status_written = False
        history_entry: StatusHistoryEntry | None = None
        try:
            application.status = LoanStatus.DISBURSED.value
            application.disbursed_amount = amount
            if application.approved_amount is None:
                application.approved_amount = amount
            application = await self._applications.upsert(application, expected_version=expected)
            status_written = True

            history_entry = await self._history.record(
                caller.email,
                application.file_id,
                previous_status,
                LoanStatus.DISBURSED.value,
                f"Disbursed {amount} on {disbursed_on.isoformat()}",
            )
            await self._audit.record(
                caller.email,
                application.file_id,
                AuditAction.DISBURSED,
                f"Loan disbursed: {amount} on {disbursed_on.isoformat()}",
            )
            await self._audit.record(
                caller.email,
                application.file_id,
                AuditAction.COMMISSION_CREATED,
                f"{entry.description} [{entry.id}]",
            )

            entry.ledger_state = LedgerEntryState.CONFIRMED
            entry = await self._ledger.update(entry)
        except (Exception, asyncio.CancelledError) as exc:
            logger.error(
                "loan.disbursement_failed",
                file_id=application.file_id,
                entry_id=entry.id,
                status_written=status_written,
                error=str(exc) or type(exc).__name__,
            )
            await self._compensate_disbursement(
                application,
                entry,
                caller,
                previous_status,
                previous_amounts,
                restore_status=status_written,
                revert_history=history_entry is not None,
            )
            raise

        logger.info(
            "loan.disbursed",
            file_id=application.file_id,
            entry_id=entry.id,
            commission=str(result.commission_amount),
            rate=str(result.commission_rate),
        )
        return DisbursementOutcome(application=application, ledger=result)

    async def _compensate_disbursement(
        self,
        application: LoanApplication,
        entry: CommissionLedgerEntry,
        caller: CallerIdentity,
        previous_status: str,
        previous_amounts: tuple[Decimal | None, Decimal | None],
        restore_status: bool,
        revert_history: bool,
    ) -> None:
        """Undo a half-finished disbursement. Each step is attempted independently.

        Failures here are logged and left for manual repair; the caller
        re-raises the original error.
        """
        try:
            entry.ledger_state = LedgerEntryState.VOIDED
            await self._ledger.update(entry)
            logger.info("ledger.entry_voided", entry_id=entry.id)
        except Exception as exc:
            logger.error("ledger.void_failed", entry_id=entry.id, error=str(exc))

        if not restore_status:
            return

        try:
            application.status = previous_status
            application.disbursed_amount, application.approved_amount = previous_amounts
            await self._applications.upsert(application, expected_version=application.version)
            if revert_history:
                await self._history.record(
                    caller.email,
                    application.file_id,
                    LoanStatus.DISBURSED.value,
                    previous_status,
                    "Disbursement rolled back",
                )
            await self._audit.record(
                caller.email,
                application.file_id,
                AuditAction.DISBURSEMENT_ROLLED_BACK,
                f"Disbursement rolled back; status restored to {previous_status}",
            )
            logger.info(
                "loan.disbursement_rolled_back",
                file_id=application.file_id,
                status=previous_status,
            )
        except Exception as exc:
            logger.error(
                "loan.rollback_failed",
                file_id=application.file_id,
                error=str(exc),
            )

    # ------------------------------------------------------------------
    # Post-disbursement
    # ------------------------------------------------------------------

    async def close(
        self,
        application_id: str,
        caller: CallerIdentity,
        reason: str | None = None,
    ) -> LoanApplication:
        return await self._transition(application_id, LoanStatus.CLOSED, caller, reason)

    # ------------------------------------------------------------------
    # Generic transition and queries
    # ------------------------------------------------------------------

    async def transition(
        self,
        application_id: str,
        target: str,
        caller: CallerIdentity,
        reason: str | None = None,
    ) -> LoanApplication:
        """Move to an arbitrary target status (normalized first).

        Disbursement carries an amount and books commission, so it only goes
        through mark_disbursed.
        """
        target_status = normalize_status(target)
        if target_status == LoanStatus.DISBURSED:
            raise ValidationError(
                "Disbursement requires an amount; use the disburse action",
                field="target_status",
            )
        return await self._transition(application_id, target_status, caller, reason)

    async def get_status(self, application_id: str, caller: CallerIdentity) -> ApplicationStatus:
        application = await self._get_application_or_raise(application_id)
        self._check_ownership(application, caller)
        status = normalize_status(application.status)
        return ApplicationStatus(
            application=application,
            status=status,
            allowed_next=allowed_next_statuses(status, caller.role.value),
        )

    async def get_history(
        self, application_id: str, caller: CallerIdentity
    ) -> list[StatusHistoryEntry]:
        application = await self._get_application_or_raise(application_id)
        self._check_ownership(application, caller)
        return await self._history.history(application.file_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        application_id: str,
        target: str,
        caller: CallerIdentity,
        reason: str | None = None,
        mutate: Callable[[LoanApplication], None] | None = None,
        extra_audit: tuple[AuditAction, str] | None = None,
    ) -> LoanApplication:
        application = await self._get_application_or_raise(application_id)
        self._check_ownership(application, caller)
        current = normalize_status(application.status)
        self._validate(application, current, target, caller)

        before = copy.deepcopy(application)
        application.status = str(target)
        if mutate is not None:
            mutate(application)
        application = await self._applications.upsert(
            application, expected_version=before.version
        )

        history_written = False
        try:
            await self._history.record(
                caller.email, application.file_id, current, str(target), reason
            )
            history_written = True
            message = f"Status changed from {current} to {target}"
            if reason:
                message += f": {reason}"
            await self._audit.record(
                caller.email, application.file_id, AuditAction.STATUS_CHANGE, message
            )
            if extra_audit is not None:
                await self._audit.record(caller.email, application.file_id, *extra_audit)
        except (Exception, asyncio.CancelledError) as exc:
            logger.error(
                "loan.transition_failed",
                file_id=application.file_id,
                from_status=current,
                to_status=str(target),
                history_written=history_written,
                error=str(exc) or type(exc).__name__,
            )
            await self._roll_back(
                before,
                application,
                caller,
                AuditAction.STATUS_CHANGE_ROLLED_BACK,
                f"Status change to {target} rolled back; status restored to {current}",
                reverse_history=(str(target), current) if history_written else None,
            )
            raise

        logger.info(
            "loan.transitioned",
            file_id=application.file_id,
            from_status=current,
            to_status=str(target),
            actor=caller.email,
        )
        return application

    async def _roll_back(
        self,
        before: LoanApplication,
        written: LoanApplication,
        caller: CallerIdentity,
        action: AuditAction,
        message: str,
        reverse_history: tuple[str, str] | None = None,
    ) -> None:
        """Write ``before`` back over ``written`` and record the undo.

        Failures here are logged and left for manual repair; the caller
        re-raises the original error.
        """
        try:
            restored = replace(before, last_updated=written.last_updated)
            await self._applications.upsert(restored, expected_version=written.version)
            if reverse_history is not None:
                from_status, to_status = reverse_history
                await self._history.record(
                    caller.email, written.file_id, from_status, to_status, "Rolled back"
                )
            await self._audit.record(caller.email, written.file_id, action, message)
            logger.info("loan.write_rolled_back", file_id=written.file_id, action=str(action))
        except Exception as exc:
            logger.error("loan.rollback_failed", file_id=written.file_id, error=str(exc))

    def _validate(
        self,
        application: LoanApplication,
        current: str,
        target: str,
        caller: CallerIdentity,
    ) -> None:
        try:
            validate_transition(current, str(target), caller.role.value)
        except TransitionError as exc:
            logger.warning(
                "loan.transition_rejected",
                file_id=application.file_id,
                from_status=current,
                to_status=str(target),
                role=caller.role.value,
                reason_code=exc.reason_code,
            )
            raise

    async def _get_application_or_raise(self, application_id: str) -> LoanApplication:
        application = await self._applications.get(application_id)
        if application is None:
            raise NotFoundError("Loan application", application_id)
        return application

    @staticmethod
    def _check_ownership(application: LoanApplication, caller: CallerIdentity) -> None:
        if caller.role is Role.CLIENT and caller.client_id != application.client_id:
            raise AuthorizationError(
                f"Application {application.file_id} does not belong to this client"
            )

    @staticmethod
    def _require_text(value: str | None, field: str) -> None:
        if value is None or not value.strip():
            raise ValidationError(f"{field} is required", field=field)

    async def _notify_client(
        self,
        client_id: str,
        send: Callable[[str], Awaitable[None]],
    ) -> None:
        recipient = await self._clients.contact_email(client_id) or client_id
        await send(recipient)
