"""Canonical domain records.

The record store is schema-loose: the same field can arrive under a display
label ("File ID") or a machine key ("fileId"), numbers come back as strings,
and statuses use legacy spellings. None of that leaks past the mapper in
infrastructure/record_store/mapper.py. Code in domain/ and services/ only
ever sees these dataclasses.

Money is Decimal throughout.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loan_lifecycle.domain.enums import (
    DisputeStatus,
    EntryType,
    LedgerEntryState,
    LoanStatus,
    PayoutRequestStatus,
    Role,
)

if TYPE_CHECKING:
    from datetime import date, datetime
    from decimal import Decimal


@dataclass(frozen=True)
class CallerIdentity:
    """Who is making a request. Supplied with every mutating call.

    Attributes:
        email: Actor identity written to history and audit entries.
        role: One of the Role values.
        client_id: Set for client users; scopes ledger access.
        kam_id: Set for KAM users.
    """

    email: str
    role: Role
    client_id: str | None = None
    kam_id: str | None = None


@dataclass
class LoanApplication:
    """A loan application as the lifecycle engine sees it.

    ``raw`` keeps the loose record exactly as fetched so an upsert can send
    the full record back with only the fields this engine owns replaced.
    """

    id: str
    file_id: str
    client_id: str
    status: str = LoanStatus.DRAFT.value
    product_id: str | None = None
    requested_amount: Decimal | None = None
    approved_amount: Decimal | None = None
    disbursed_amount: Decimal | None = None
    assigned_nbfc: str | None = None
    lender_decision_status: str | None = None
    lender_decision_remarks: str | None = None
    lender_decision_date: date | None = None
    created_at: datetime | None = None
    last_updated: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def version(self) -> str:
        """Optimistic-concurrency token.

        The last-updated timestamp as stored, or a fingerprint of the fetched
        record for rows that were never stamped.
        """
        if self.last_updated is not None:
            return self.last_updated.isoformat()
        body = json.dumps(self.raw, sort_keys=True, default=str).encode()
        return f"raw:{hashlib.sha256(body).hexdigest()[:16]}"


@dataclass(frozen=True)
class StatusHistoryEntry:
    """One immutable status transition record."""

    file_id: str
    from_status: str
    to_status: str
    changed_by: str
    changed_at: datetime
    reason: str | None = None
    id: str | None = None


@dataclass
class DisputeRecord:
    """Dispute details embedded on a ledger entry."""

    reason: str
    raised_by: str
    raised_at: datetime
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None
    adjusted_amount: Decimal | None = None


@dataclass
class CommissionLedgerEntry:
    """One credit (Payout) or debit (Payin) against a client's commission balance."""

    id: str
    client_id: str
    loan_file_id: str | None
    date: date
    payout_amount: Decimal
    entry_type: EntryType
    description: str
    disbursed_amount: Decimal | None = None
    commission_rate: Decimal | None = None
    dispute_status: DisputeStatus = DisputeStatus.NONE
    payout_request_status: PayoutRequestStatus = PayoutRequestStatus.NONE
    dispute: DisputeRecord | None = None
    ledger_state: LedgerEntryState = LedgerEntryState.CONFIRMED
    idempotency_key: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def counts_towards_balance(self) -> bool:
        return self.ledger_state is LedgerEntryState.CONFIRMED


@dataclass(frozen=True)
class LedgerResult:
    """Output of CommissionCalculator.calculate."""

    entry: CommissionLedgerEntry
    commission_amount: Decimal
    commission_rate: Decimal
    entry_type: EntryType

    @property
    def payout_amount(self) -> Decimal:
        return self.entry.payout_amount


@dataclass(frozen=True)
class ClientBalance:
    """Aggregate view of one client's confirmed ledger entries."""

    client_id: str
    current_balance: Decimal
    total_payouts: Decimal
    total_payins: Decimal
    pending_payout_requests: int
    disputed_entries: int
