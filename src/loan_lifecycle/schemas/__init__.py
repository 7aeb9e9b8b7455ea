"""Pydantic API schemas."""

from loan_lifecycle.schemas.applications import (
    ApplicationResponse,
    ApplicationStatusResponse,
    DisburseRequest,
    DisbursementResponse,
    NbfcDecisionRequest,
    QueryRequest,
    ReasonRequest,
    SendToNbfcRequest,
    StatusHistoryResponse,
    TransitionRequest,
)
from loan_lifecycle.schemas.health import HealthResponse
from loan_lifecycle.schemas.ledger import (
    ApprovePayoutRequest,
    ClientBalanceResponse,
    DisputeResponse,
    FlagDisputeRequest,
    LedgerEntryResponse,
    PayoutApprovalResponse,
    RejectPayoutRequest,
    ResolveDisputeRequest,
)

__all__ = [
    "ApplicationResponse",
    "ApplicationStatusResponse",
    "DisburseRequest",
    "DisbursementResponse",
    "NbfcDecisionRequest",
    "QueryRequest",
    "ReasonRequest",
    "SendToNbfcRequest",
    "StatusHistoryResponse",
    "TransitionRequest",
    "HealthResponse",
    "ApprovePayoutRequest",
    "ClientBalanceResponse",
    "DisputeResponse",
    "FlagDisputeRequest",
    "LedgerEntryResponse",
    "PayoutApprovalResponse",
    "RejectPayoutRequest",
    "ResolveDisputeRequest",
]
