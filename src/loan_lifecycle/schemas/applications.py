"""Pydantic schemas for the loan application API.

These schemas define the request/response shapes for the REST API. They
are separate from the domain dataclasses so the wire format can evolve
without touching the lifecycle engine.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from loan_lifecycle.domain.enums import EntryType, LenderDecision
from loan_lifecycle.schemas.ledger import LedgerEntryResponse

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class ReasonRequest(BaseModel):
    """Optional free-text note attached to a transition."""

    reason: str | None = Field(default=None, max_length=2000)


class QueryRequest(BaseModel):
    """Question sent back to the previous party in the review chain."""

    message: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        examples=["Please upload the last 6 months of bank statements"],
    )


class SendToNbfcRequest(BaseModel):
    nbfc_ids: list[str] = Field(
        ...,
        min_length=1,
        description="Lending partners the file is shared with",
        examples=[["NBFC-001", "NBFC-004"]],
    )


class NbfcDecisionRequest(BaseModel):
    """Lender decision recorded on behalf of an NBFC partner."""

    decision: LenderDecision
    approved_amount: Decimal | None = Field(
        default=None,
        gt=0,
        description="Sanctioned amount; required when the decision is Approved",
    )
    remarks: str | None = Field(default=None, max_length=2000)


class DisburseRequest(BaseModel):
    disbursed_amount: Decimal = Field(..., gt=0, examples=[1000000])
    disbursed_date: date | None = Field(
        default=None,
        description="Defaults to today (UTC)",
    )


class TransitionRequest(BaseModel):
    """Generic move to any target status the caller's role allows."""

    target_status: str = Field(..., min_length=1, examples=["pending_credit_review"])
    reason: str | None = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ApplicationResponse(BaseModel):
    """Application as returned after a lifecycle action."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    file_id: str
    client_id: str
    status: str
    product_id: str | None = None
    requested_amount: Decimal | None = None
    approved_amount: Decimal | None = None
    disbursed_amount: Decimal | None = None
    assigned_nbfc: str | None = None
    lender_decision_status: str | None = None
    lender_decision_remarks: str | None = None
    lender_decision_date: date | None = None
    last_updated: datetime | None = None


class ApplicationStatusResponse(BaseModel):
    """Lightweight status check with the caller's next possible moves."""

    application_id: str
    file_id: str
    status: str
    allowed_next_statuses: list[str]


class StatusHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    file_id: str
    from_status: str
    to_status: str
    changed_by: str
    changed_at: datetime
    reason: str | None = None


class DisbursementResponse(BaseModel):
    application: ApplicationResponse
    ledger_entry: LedgerEntryResponse
    commission_amount: Decimal
    commission_rate: Decimal
    entry_type: EntryType
