"""Commission ledger REST API routes.

Routes:
    GET    /api/v1/ledger                              - List entries (clients see their own)
    GET    /api/v1/ledger/balance/{client_id}          - Client balance summary
    GET    /api/v1/ledger/payout-requests              - Open payout requests (credit team)
    POST   /api/v1/ledger/{entry_id}/dispute           - Flag a dispute
    POST   /api/v1/ledger/{entry_id}/dispute/resolve   - Resolve or reject a dispute
    POST   /api/v1/ledger/{entry_id}/payout-request    - Client requests payout
    POST   /api/v1/ledger/{entry_id}/payout/approve    - Approve and settle a payout
    POST   /api/v1/ledger/{entry_id}/payout/reject     - Reject a payout request
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Query

from loan_lifecycle.api.deps import (
    get_app_settings,
    get_caller,
    get_dispute_manager,
    get_payout_workflow,
)
from loan_lifecycle.config import Settings
from loan_lifecycle.domain.models import CallerIdentity
from loan_lifecycle.schemas.ledger import (
    ApprovePayoutRequest,
    ClientBalanceResponse,
    FlagDisputeRequest,
    LedgerEntryResponse,
    PayoutApprovalResponse,
    RejectPayoutRequest,
    ResolveDisputeRequest,
)
from loan_lifecycle.services.dispute_service import DisputeLifecycleManager
from loan_lifecycle.services.payout_service import PayoutApprovalWorkflow

router = APIRouter(prefix="/api/v1/ledger", tags=["Ledger"])


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("", response_model=list[LedgerEntryResponse], summary="List ledger entries")
async def list_entries(
    client_id: str | None = Query(default=None),
    loan_file_id: str | None = Query(default=None),
    caller: CallerIdentity = Depends(get_caller),
    svc: PayoutApprovalWorkflow = Depends(get_payout_workflow),
    settings: Settings = Depends(get_app_settings),
) -> list[LedgerEntryResponse]:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        entries = await svc.ledger_entries(caller, client_id=client_id, loan_file_id=loan_file_id)
    return [LedgerEntryResponse.model_validate(e) for e in entries]


@router.get(
    "/balance/{client_id}",
    response_model=ClientBalanceResponse,
    summary="Get a client's commission balance",
)
async def get_balance(
    client_id: str,
    caller: CallerIdentity = Depends(get_caller),
    svc: PayoutApprovalWorkflow = Depends(get_payout_workflow),
    settings: Settings = Depends(get_app_settings),
) -> ClientBalanceResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        balance = await svc.client_balance(client_id, caller)
    return ClientBalanceResponse.model_validate(balance)


@router.get(
    "/payout-requests",
    response_model=list[LedgerEntryResponse],
    summary="List open payout requests",
)
async def list_payout_requests(
    caller: CallerIdentity = Depends(get_caller),
    svc: PayoutApprovalWorkflow = Depends(get_payout_workflow),
    settings: Settings = Depends(get_app_settings),
) -> list[LedgerEntryResponse]:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        entries = await svc.pending_requests(caller)
    return [LedgerEntryResponse.model_validate(e) for e in entries]


# ---------------------------------------------------------------------------
# Disputes
# ---------------------------------------------------------------------------


@router.post(
    "/{entry_id}/dispute",
    response_model=LedgerEntryResponse,
    summary="Flag a dispute on a ledger entry",
)
async def flag_dispute(
    entry_id: str,
    request: FlagDisputeRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: DisputeLifecycleManager = Depends(get_dispute_manager),
    settings: Settings = Depends(get_app_settings),
) -> LedgerEntryResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        entry = await svc.flag_dispute(entry_id, request.reason, caller)
    return LedgerEntryResponse.model_validate(entry)


@router.post(
    "/{entry_id}/dispute/resolve",
    response_model=LedgerEntryResponse,
    summary="Resolve or reject a dispute",
)
async def resolve_dispute(
    entry_id: str,
    request: ResolveDisputeRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: DisputeLifecycleManager = Depends(get_dispute_manager),
    settings: Settings = Depends(get_app_settings),
) -> LedgerEntryResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        entry = await svc.resolve_dispute(
            caller,
            entry_id,
            resolved=request.resolved,
            adjusted_amount=request.adjusted_amount,
            notes=request.notes,
        )
    return LedgerEntryResponse.model_validate(entry)


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------


@router.post(
    "/{entry_id}/payout-request",
    response_model=LedgerEntryResponse,
    summary="Request payout of an entry",
)
async def request_payout(
    entry_id: str,
    caller: CallerIdentity = Depends(get_caller),
    svc: PayoutApprovalWorkflow = Depends(get_payout_workflow),
    settings: Settings = Depends(get_app_settings),
) -> LedgerEntryResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        entry = await svc.request_payout(entry_id, caller)
    return LedgerEntryResponse.model_validate(entry)


@router.post(
    "/{entry_id}/payout/approve",
    response_model=PayoutApprovalResponse,
    summary="Approve a payout request",
)
async def approve_payout(
    entry_id: str,
    request: ApprovePayoutRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: PayoutApprovalWorkflow = Depends(get_payout_workflow),
    settings: Settings = Depends(get_app_settings),
) -> PayoutApprovalResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        entry, settlement = await svc.approve_payout(
            entry_id, request.approved_amount, request.note, caller
        )
    return PayoutApprovalResponse(
        entry=LedgerEntryResponse.model_validate(entry),
        settlement=LedgerEntryResponse.model_validate(settlement),
    )


@router.post(
    "/{entry_id}/payout/reject",
    response_model=LedgerEntryResponse,
    summary="Reject a payout request",
)
async def reject_payout(
    entry_id: str,
    request: RejectPayoutRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: PayoutApprovalWorkflow = Depends(get_payout_workflow),
    settings: Settings = Depends(get_app_settings),
) -> LedgerEntryResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        entry = await svc.reject_payout(entry_id, request.reason, caller)
    return LedgerEntryResponse.model_validate(entry)
