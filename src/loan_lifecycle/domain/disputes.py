"""Dispute sub-state machine on ledger entries.

States: none -> flagged -> resolved | rejected

A resolved or rejected entry can be flagged again, which starts a new
dispute. Flagging an entry that is already flagged is an error, as is
resolving anything that is not flagged.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loan_lifecycle.domain.enums import DisputeStatus
from loan_lifecycle.domain.exceptions import DisputeStateError
from loan_lifecycle.domain.models import DisputeRecord

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal

    from loan_lifecycle.domain.models import CommissionLedgerEntry

FLAGGABLE = frozenset({DisputeStatus.NONE, DisputeStatus.RESOLVED, DisputeStatus.REJECTED})


def apply_flag(
    entry: CommissionLedgerEntry,
    reason: str,
    raised_by: str,
    now: datetime,
) -> CommissionLedgerEntry:
    """Move ``entry`` to flagged and attach a fresh DisputeRecord."""
    if entry.dispute_status not in FLAGGABLE:
        raise DisputeStateError(entry.id, entry.dispute_status.value, "already flagged")
    entry.dispute_status = DisputeStatus.FLAGGED
    entry.dispute = DisputeRecord(reason=reason, raised_by=raised_by, raised_at=now)
    return entry


def apply_resolution(
    entry: CommissionLedgerEntry,
    resolved: bool,
    resolved_by: str,
    now: datetime,
    adjusted_amount: Decimal | None = None,
    notes: str | None = None,
) -> CommissionLedgerEntry:
    """Close the open dispute on ``entry``.

    Accepting (``resolved=True``) overwrites payout_amount when an adjusted
    amount is given. Rejecting leaves the amount alone.
    """
    if entry.dispute_status is not DisputeStatus.FLAGGED:
        raise DisputeStateError(entry.id, entry.dispute_status.value, "no open dispute to resolve")

    if entry.dispute is None:
        # Flagged in the store without details (legacy rows).
        entry.dispute = DisputeRecord(reason="", raised_by="", raised_at=now)

    entry.dispute.resolved_by = resolved_by
    entry.dispute.resolved_at = now
    entry.dispute.resolution_notes = notes

    if resolved:
        entry.dispute_status = DisputeStatus.RESOLVED
        if adjusted_amount is not None:
            entry.dispute.adjusted_amount = adjusted_amount
            entry.payout_amount = adjusted_amount
            entry.description = (
                f"{entry.description} [Dispute resolved: amount adjusted to {adjusted_amount}]"
            )
    else:
        entry.dispute_status = DisputeStatus.REJECTED
    return entry
