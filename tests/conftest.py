"""Shared test fixtures for the loan lifecycle test suite.

Provides:
    - In-memory stores implementing the domain ports
    - A recording notifier and a client directory stub
    - A ticking clock so timestamps are deterministic and strictly increasing
    - Caller identities for each role
    - A harness wiring all three services to the same stores
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal

import pytest

from loan_lifecycle.domain.commission import CommissionCalculator
from loan_lifecycle.domain.enums import (
    EntryType,
    LedgerEntryState,
    PayoutRequestStatus,
    Role,
)
from loan_lifecycle.domain.exceptions import ConflictError
from loan_lifecycle.domain.models import (
    CallerIdentity,
    CommissionLedgerEntry,
    LoanApplication,
    StatusHistoryEntry,
)
from loan_lifecycle.services.audit import AuditTrail
from loan_lifecycle.services.dispute_service import DisputeLifecycleManager
from loan_lifecycle.services.loan_workflow import LoanWorkflowService
from loan_lifecycle.services.notifications import NotificationRelay
from loan_lifecycle.services.payout_service import PayoutApprovalWorkflow
from loan_lifecycle.services.status_history import StatusHistoryRecorder

CLIENT_ID = "CL-001"
OTHER_CLIENT_ID = "CL-002"
KAM_ID = "KAM-01"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class TickingClock:
    """Returns a fixed start time, advancing one second on every call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 10, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------


class InMemoryApplicationStore:
    """LoanApplicationStore with the same version check as the webhook repository."""

    def __init__(self, clock: TickingClock) -> None:
        self._records: dict[str, LoanApplication] = {}
        self._clock = clock
        self.fail_next_upsert: Exception | None = None
        self.bump_after_next_read = False
        self.upserts = 0

    def add(self, application: LoanApplication) -> None:
        self._records[application.id] = copy.deepcopy(application)

    def stored(self, application_id: str) -> LoanApplication:
        return self._records[application_id]

    async def get(self, application_id: str) -> LoanApplication | None:
        for record in self._records.values():
            if application_id in (record.id, record.file_id):
                result = copy.deepcopy(record)
                if self.bump_after_next_read:
                    # Simulates another writer landing between read and write.
                    self.bump_after_next_read = False
                    record.last_updated = self._clock()
                return result
        return None

    async def list_all(self) -> list[LoanApplication]:
        return [copy.deepcopy(r) for r in self._records.values()]

    async def upsert(
        self,
        application: LoanApplication,
        expected_version: str | None = None,
    ) -> LoanApplication:
        if self.fail_next_upsert is not None:
            exc, self.fail_next_upsert = self.fail_next_upsert, None
            raise exc
        if expected_version is not None:
            current = self._records.get(application.id)
            actual = current.version if current else None
            if actual != expected_version:
                raise ConflictError(application.id, expected_version, actual)
        application.last_updated = self._clock()
        self._records[application.id] = copy.deepcopy(application)
        self.upserts += 1
        return application


class InMemoryLedgerStore:
    def __init__(self) -> None:
        self._entries: dict[str, CommissionLedgerEntry] = {}
        self.fail_next_update: Exception | None = None
        self.fail_next_append: Exception | None = None

    def all(self) -> list[CommissionLedgerEntry]:
        return list(self._entries.values())

    async def append(self, entry: CommissionLedgerEntry) -> CommissionLedgerEntry:
        if self.fail_next_append is not None:
            exc, self.fail_next_append = self.fail_next_append, None
            raise exc
        self._entries[entry.id] = copy.deepcopy(entry)
        return entry

    async def get(self, entry_id: str) -> CommissionLedgerEntry | None:
        entry = self._entries.get(entry_id)
        return copy.deepcopy(entry) if entry else None

    async def list_entries(
        self,
        client_id: str | None = None,
        loan_file_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> list[CommissionLedgerEntry]:
        entries = [copy.deepcopy(e) for e in self._entries.values()]
        if client_id is not None:
            entries = [e for e in entries if e.client_id == client_id]
        if loan_file_id is not None:
            entries = [e for e in entries if e.loan_file_id == loan_file_id]
        if idempotency_key is not None:
            entries = [e for e in entries if e.idempotency_key == idempotency_key]
        return entries

    async def update(self, entry: CommissionLedgerEntry) -> CommissionLedgerEntry:
        if self.fail_next_update is not None:
            exc, self.fail_next_update = self.fail_next_update, None
            raise exc
        self._entries[entry.id] = copy.deepcopy(entry)
        return entry


class InMemoryHistoryStore:
    def __init__(self) -> None:
        self.entries: list[StatusHistoryEntry] = []
        self.fail_next_append: Exception | None = None

    async def append(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        if self.fail_next_append is not None:
            exc, self.fail_next_append = self.fail_next_append, None
            raise exc
        stored = replace(entry, id=entry.id or f"HIST-{len(self.entries) + 1}")
        self.entries.append(stored)
        return stored

    async def list_for_file(self, file_id: str) -> list[StatusHistoryEntry]:
        return [e for e in self.entries if e.file_id == file_id]


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.rows: list[dict] = []
        self.fail_actions: set[str] = set()

    async def append(
        self,
        actor: str,
        file_id: str,
        action_type: str,
        message: str,
        resolved: bool = False,
    ) -> None:
        if action_type in self.fail_actions:
            raise RuntimeError(f"audit log unavailable for {action_type}")
        self.rows.append(
            {
                "actor": actor,
                "file_id": file_id,
                "action_type": action_type,
                "message": message,
                "resolved": resolved,
            }
        )

    def actions(self) -> list[str]:
        return [r["action_type"] for r in self.rows]


class StubClientDirectory:
    def __init__(self) -> None:
        self.rates: dict[str, Decimal] = {}
        self.emails: dict[str, str] = {CLIENT_ID: "owner@acme.in"}
        self.managed: dict[str, set[str]] = {KAM_ID: {CLIENT_ID}}

    async def commission_rate(self, client_id: str) -> Decimal | None:
        return self.rates.get(client_id)

    async def contact_email(self, client_id: str) -> str | None:
        return self.emails.get(client_id)

    async def managed_clients(self, kam_id: str) -> set[str]:
        return set(self.managed.get(kam_id, set()))


class RecordingNotifier:
    """NotificationDispatcher that records calls, or raises when ``fail`` is set."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: list[tuple] = []
        self.fail = fail

    async def _record(self, *call: object) -> None:
        if self.fail:
            raise RuntimeError("notification webhook down")
        self.calls.append(call)

    async def notify_disbursement(self, file_id, client_id, amount, recipient) -> None:
        await self._record("disbursement", file_id, client_id, amount, recipient)

    async def notify_commission_created(self, entry_id, client_id, amount, recipient) -> None:
        await self._record("commission", entry_id, client_id, amount, recipient)

    async def notify_payout_approved(self, entry_id, client_id, amount, recipient) -> None:
        await self._record("payout_approved", entry_id, client_id, amount, recipient)

    async def notify_payout_rejected(self, entry_id, client_id, reason, recipient) -> None:
        await self._record("payout_rejected", entry_id, client_id, reason, recipient)

    def kinds(self) -> list[str]:
        return [c[0] for c in self.calls]


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    clock: TickingClock
    applications: InMemoryApplicationStore
    ledger: InMemoryLedgerStore
    history_store: InMemoryHistoryStore
    audit_sink: InMemoryAuditSink
    clients: StubClientDirectory
    notifier: RecordingNotifier
    relay: NotificationRelay
    workflow: LoanWorkflowService
    disputes: DisputeLifecycleManager
    payouts: PayoutApprovalWorkflow
    _ids: list[int] = field(default_factory=lambda: [0])

    def next_id(self) -> str:
        self._ids[0] += 1
        return f"LEDGER-{self._ids[0]:04d}"

    def seed_application(
        self,
        file_id: str = "SF-001",
        status: str = "draft",
        client_id: str = CLIENT_ID,
        approved_amount: Decimal | None = None,
    ) -> LoanApplication:
        application = LoanApplication(
            id=f"rec{file_id}",
            file_id=file_id,
            client_id=client_id,
            status=status,
            requested_amount=Decimal("1000000"),
            approved_amount=approved_amount,
            last_updated=datetime(2024, 2, 1, 9, 0, tzinfo=UTC),
        )
        self.applications.add(application)
        return application

    def seed_entry(
        self,
        amount: Decimal = Decimal("5000"),
        client_id: str = CLIENT_ID,
        loan_file_id: str = "SF-001",
        payout_request_status: PayoutRequestStatus = PayoutRequestStatus.NONE,
        ledger_state: LedgerEntryState = LedgerEntryState.CONFIRMED,
        entry_date: date = date(2024, 2, 15),
        idempotency_key: str | None = None,
    ) -> CommissionLedgerEntry:
        entry = CommissionLedgerEntry(
            id=self.next_id(),
            client_id=client_id,
            loan_file_id=loan_file_id,
            date=entry_date,
            payout_amount=amount,
            entry_type=EntryType.PAYOUT if amount >= 0 else EntryType.PAYIN,
            description=f"Commission for {loan_file_id}",
            payout_request_status=payout_request_status,
            ledger_state=ledger_state,
            idempotency_key=idempotency_key,
        )
        self.ledger._entries[entry.id] = copy.deepcopy(entry)
        return entry


def build_harness(notifier: RecordingNotifier | None = None, idempotency=None) -> Harness:
    clock = TickingClock()
    applications = InMemoryApplicationStore(clock)
    ledger = InMemoryLedgerStore()
    history_store = InMemoryHistoryStore()
    audit_sink = InMemoryAuditSink()
    clients = StubClientDirectory()
    notifier = notifier or RecordingNotifier()
    relay = NotificationRelay()
    audit = AuditTrail(audit_sink)
    counter = iter(range(1, 10_000))

    workflow = LoanWorkflowService(
        applications=applications,
        ledger=ledger,
        history=StatusHistoryRecorder(history_store, clock=clock),
        audit=audit,
        clients=clients,
        notifier=notifier,
        calculator=CommissionCalculator(
            Decimal("1.5"), id_factory=lambda: f"LEDGER-D{next(counter):03d}"
        ),
        relay=relay,
        idempotency=idempotency,
        clock=clock,
    )
    disputes = DisputeLifecycleManager(ledger=ledger, audit=audit, clock=clock)
    payouts = PayoutApprovalWorkflow(
        ledger=ledger,
        audit=audit,
        clients=clients,
        notifier=notifier,
        relay=relay,
        clock=clock,
        id_factory=lambda: f"LEDGER-S{next(counter):03d}",
    )
    return Harness(
        clock=clock,
        applications=applications,
        ledger=ledger,
        history_store=history_store,
        audit_sink=audit_sink,
        clients=clients,
        notifier=notifier,
        relay=relay,
        workflow=workflow,
        disputes=disputes,
        payouts=payouts,
    )


@pytest.fixture
def harness() -> Harness:
    return build_harness()


@pytest.fixture
def make_harness():
    """Factory for harnesses with a custom notifier or idempotency guard."""
    return build_harness


@pytest.fixture
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail=True)


# ---------------------------------------------------------------------------
# Callers
# ---------------------------------------------------------------------------


@pytest.fixture
def client_caller() -> CallerIdentity:
    return CallerIdentity(email="owner@acme.in", role=Role.CLIENT, client_id=CLIENT_ID)


@pytest.fixture
def other_client_caller() -> CallerIdentity:
    return CallerIdentity(email="someone@other.in", role=Role.CLIENT, client_id=OTHER_CLIENT_ID)


@pytest.fixture
def kam_caller() -> CallerIdentity:
    return CallerIdentity(email="kam@seven.in", role=Role.KAM, kam_id=KAM_ID)


@pytest.fixture
def credit_caller() -> CallerIdentity:
    return CallerIdentity(email="credit@seven.in", role=Role.CREDIT_TEAM)


@pytest.fixture
def nbfc_caller() -> CallerIdentity:
    return CallerIdentity(email="desk@lender.in", role=Role.NBFC)
