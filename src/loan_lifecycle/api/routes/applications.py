"""Loan application REST API routes.

Each lifecycle action is its own endpoint; the caller's role comes from the
identity headers and the transition guard decides whether the move is
allowed. Every call runs under the configured operation deadline.

Routes:
    GET    /api/v1/applications/{id}/status             - Status + allowed next moves
    GET    /api/v1/applications/{id}/history            - Status history, oldest first
    POST   /api/v1/applications/{id}/submit             - Client submits for KAM review
    POST   /api/v1/applications/{id}/withdraw           - Client withdraws
    POST   /api/v1/applications/{id}/forward-to-credit  - KAM forwards to credit
    POST   /api/v1/applications/{id}/client-query       - KAM queries the client
    POST   /api/v1/applications/{id}/credit-query       - Credit queries the KAM
    POST   /api/v1/applications/{id}/negotiation        - Credit starts negotiation
    POST   /api/v1/applications/{id}/send-to-nbfc       - Credit shares with lenders
    POST   /api/v1/applications/{id}/nbfc-decision      - Record a lender decision
    POST   /api/v1/applications/{id}/disburse           - Disburse + book commission
    POST   /api/v1/applications/{id}/close              - Close a disbursed file
    POST   /api/v1/applications/{id}/transition         - Generic move to a target status
"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends

from loan_lifecycle.api.deps import get_app_settings, get_caller, get_workflow_service
from loan_lifecycle.config import Settings
from loan_lifecycle.domain.models import CallerIdentity
from loan_lifecycle.logging_config import get_logger
from loan_lifecycle.schemas.applications import (
    ApplicationResponse,
    ApplicationStatusResponse,
    DisbursementResponse,
    DisburseRequest,
    NbfcDecisionRequest,
    QueryRequest,
    ReasonRequest,
    SendToNbfcRequest,
    StatusHistoryResponse,
    TransitionRequest,
)
from loan_lifecycle.schemas.ledger import LedgerEntryResponse
from loan_lifecycle.services.loan_workflow import LoanWorkflowService

router = APIRouter(prefix="/api/v1/applications", tags=["Applications"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get(
    "/{application_id}/status",
    response_model=ApplicationStatusResponse,
    summary="Get application status",
)
async def get_status(
    application_id: str,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> ApplicationStatusResponse:
    """Current canonical status and the statuses this caller may move it to."""
    async with asyncio.timeout(settings.operation_deadline_seconds):
        view = await svc.get_status(application_id, caller)
    return ApplicationStatusResponse(
        application_id=view.application.id,
        file_id=view.application.file_id,
        status=view.status,
        allowed_next_statuses=[s.value for s in view.allowed_next],
    )


@router.get(
    "/{application_id}/history",
    response_model=list[StatusHistoryResponse],
    summary="Get status history",
)
async def get_history(
    application_id: str,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> list[StatusHistoryResponse]:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        entries = await svc.get_history(application_id, caller)
    return [StatusHistoryResponse.model_validate(e) for e in entries]


# ---------------------------------------------------------------------------
# Client actions
# ---------------------------------------------------------------------------


@router.post(
    "/{application_id}/submit",
    response_model=ApplicationResponse,
    summary="Submit for KAM review",
)
async def submit(
    application_id: str,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> ApplicationResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        application = await svc.submit(application_id, caller)
    return ApplicationResponse.model_validate(application)


@router.post(
    "/{application_id}/withdraw",
    response_model=ApplicationResponse,
    summary="Withdraw the application",
)
async def withdraw(
    application_id: str,
    request: ReasonRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> ApplicationResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        application = await svc.withdraw(application_id, caller, request.reason)
    return ApplicationResponse.model_validate(application)


# ---------------------------------------------------------------------------
# KAM / credit review
# ---------------------------------------------------------------------------


@router.post(
    "/{application_id}/forward-to-credit",
    response_model=ApplicationResponse,
    summary="Forward to credit review",
)
async def forward_to_credit(
    application_id: str,
    request: ReasonRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> ApplicationResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        application = await svc.forward_to_credit(application_id, caller, request.reason)
    return ApplicationResponse.model_validate(application)


@router.post(
    "/{application_id}/client-query",
    response_model=ApplicationResponse,
    summary="Raise a query with the client",
)
async def raise_client_query(
    application_id: str,
    request: QueryRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> ApplicationResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        application = await svc.raise_client_query(application_id, caller, request.message)
    return ApplicationResponse.model_validate(application)


@router.post(
    "/{application_id}/credit-query",
    response_model=ApplicationResponse,
    summary="Raise a credit query with the KAM",
)
async def raise_credit_query(
    application_id: str,
    request: QueryRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> ApplicationResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        application = await svc.raise_credit_query(application_id, caller, request.message)
    return ApplicationResponse.model_validate(application)


@router.post(
    "/{application_id}/negotiation",
    response_model=ApplicationResponse,
    summary="Start negotiation",
)
async def mark_in_negotiation(
    application_id: str,
    request: ReasonRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> ApplicationResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        application = await svc.mark_in_negotiation(application_id, caller, request.reason)
    return ApplicationResponse.model_validate(application)


@router.post(
    "/{application_id}/send-to-nbfc",
    response_model=ApplicationResponse,
    summary="Send to lending partners",
)
async def send_to_nbfc(
    application_id: str,
    request: SendToNbfcRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> ApplicationResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        application = await svc.send_to_nbfc(application_id, caller, request.nbfc_ids)
    return ApplicationResponse.model_validate(application)


@router.post(
    "/{application_id}/nbfc-decision",
    response_model=ApplicationResponse,
    summary="Record a lender decision",
)
async def record_nbfc_decision(
    application_id: str,
    request: NbfcDecisionRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> ApplicationResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        application = await svc.record_nbfc_decision(
            application_id,
            caller,
            decision=request.decision,
            approved_amount=request.approved_amount,
            remarks=request.remarks,
        )
    return ApplicationResponse.model_validate(application)


# ---------------------------------------------------------------------------
# Disbursement and closure
# ---------------------------------------------------------------------------


@router.post(
    "/{application_id}/disburse",
    response_model=DisbursementResponse,
    summary="Disburse and book commission",
)
async def disburse(
    application_id: str,
    request: DisburseRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> DisbursementResponse:
    """Mark an approved application disbursed and create its commission entry.

    Repeating the call for the same file and date returns 409.
    """
    async with asyncio.timeout(settings.operation_deadline_seconds):
        outcome = await svc.mark_disbursed(
            application_id,
            caller,
            disbursed_amount=request.disbursed_amount,
            disbursed_date=request.disbursed_date,
        )
    return DisbursementResponse(
        application=ApplicationResponse.model_validate(outcome.application),
        ledger_entry=LedgerEntryResponse.model_validate(outcome.ledger.entry),
        commission_amount=outcome.ledger.commission_amount,
        commission_rate=outcome.ledger.commission_rate,
        entry_type=outcome.ledger.entry_type,
    )


@router.post(
    "/{application_id}/close",
    response_model=ApplicationResponse,
    summary="Close a disbursed application",
)
async def close(
    application_id: str,
    request: ReasonRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> ApplicationResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        application = await svc.close(application_id, caller, request.reason)
    return ApplicationResponse.model_validate(application)


@router.post(
    "/{application_id}/transition",
    response_model=ApplicationResponse,
    summary="Move to a target status",
)
async def transition(
    application_id: str,
    request: TransitionRequest,
    caller: CallerIdentity = Depends(get_caller),
    svc: LoanWorkflowService = Depends(get_workflow_service),
    settings: Settings = Depends(get_app_settings),
) -> ApplicationResponse:
    async with asyncio.timeout(settings.operation_deadline_seconds):
        application = await svc.transition(
            application_id, request.target_status, caller, request.reason
        )
    logger.debug("api.transition", application_id=application_id, target=request.target_status)
    return ApplicationResponse.model_validate(application)
