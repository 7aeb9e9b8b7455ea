"""Pydantic schemas for the commission ledger API."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from loan_lifecycle.domain.enums import (
    DisputeStatus,
    EntryType,
    LedgerEntryState,
    PayoutRequestStatus,
)

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class FlagDisputeRequest(BaseModel):
    reason: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        examples=["Commission rate should be 2%, not 1.5%"],
    )


class ResolveDisputeRequest(BaseModel):
    """Credit team decision on an open dispute."""

    resolved: bool = Field(..., description="True accepts the dispute, False rejects it")
    adjusted_amount: Decimal | None = Field(
        default=None,
        description="Corrected payout amount; only applied when resolved is true",
    )
    notes: str | None = Field(default=None, max_length=2000)


class ApprovePayoutRequest(BaseModel):
    approved_amount: Decimal = Field(..., gt=0, examples=[5000])
    note: str | None = Field(default=None, max_length=2000)


class RejectPayoutRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reason: str
    raised_by: str
    raised_at: dt.datetime
    resolved_by: str | None = None
    resolved_at: dt.datetime | None = None
    resolution_notes: str | None = None
    adjusted_amount: Decimal | None = None


class LedgerEntryResponse(BaseModel):
    """A single commission ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    client_id: str
    loan_file_id: str | None = None
    date: dt.date
    payout_amount: Decimal
    entry_type: EntryType
    description: str
    disbursed_amount: Decimal | None = None
    commission_rate: Decimal | None = None
    dispute_status: DisputeStatus
    payout_request_status: PayoutRequestStatus
    ledger_state: LedgerEntryState
    dispute: DisputeResponse | None = None


class PayoutApprovalResponse(BaseModel):
    entry: LedgerEntryResponse
    settlement: LedgerEntryResponse


class ClientBalanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    client_id: str
    current_balance: Decimal
    total_payouts: Decimal
    total_payins: Decimal
    pending_payout_requests: int
    disputed_entries: int
