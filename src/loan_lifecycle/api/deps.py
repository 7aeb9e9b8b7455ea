"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the caller's
identity, configuration, and services wired to the record-store client
opened in the app lifespan.
"""

from __future__ import annotations

from fastapi import Depends, Header, Request

from loan_lifecycle.config import Settings, get_settings
from loan_lifecycle.domain.commission import CommissionCalculator
from loan_lifecycle.domain.enums import Role
from loan_lifecycle.domain.exceptions import AuthorizationError
from loan_lifecycle.domain.models import CallerIdentity
from loan_lifecycle.infrastructure.record_store.client import RecordStoreClient
from loan_lifecycle.infrastructure.record_store.repositories import (
    ClientRepository,
    CommissionLedgerRepository,
    FileAuditLogRepository,
    LoanApplicationRepository,
    StatusHistoryRepository,
)
from loan_lifecycle.infrastructure.redis_client import IdempotencyGuard
from loan_lifecycle.logging_config import bind_caller
from loan_lifecycle.services.audit import AuditTrail
from loan_lifecycle.services.dispute_service import DisputeLifecycleManager
from loan_lifecycle.services.loan_workflow import LoanWorkflowService
from loan_lifecycle.services.notifications import NotificationRelay, WebhookNotificationDispatcher
from loan_lifecycle.services.payout_service import PayoutApprovalWorkflow
from loan_lifecycle.services.status_history import StatusHistoryRecorder


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_record_store(request: Request) -> RecordStoreClient:
    """Provide the record-store client opened at startup."""
    return request.app.state.record_store


def get_notification_relay(request: Request) -> NotificationRelay:
    return request.app.state.notification_relay


def get_idempotency_guard(request: Request) -> IdempotencyGuard | None:
    return getattr(request.app.state, "idempotency_guard", None)


async def get_caller(
    x_user_email: str = Header(..., description="Authenticated user's email"),
    x_user_role: str = Header(..., description="One of client, kam, credit_team, nbfc, admin"),
    x_client_id: str | None = Header(default=None),
    x_kam_id: str | None = Header(default=None),
) -> CallerIdentity:
    """Build the caller identity from headers set by the upstream gateway."""
    try:
        role = Role(x_user_role.strip().lower())
    except ValueError as err:
        raise AuthorizationError(f"Unknown role: {x_user_role}") from err
    if role is Role.CLIENT and not x_client_id:
        raise AuthorizationError("Client callers must carry X-Client-Id")
    caller = CallerIdentity(
        email=x_user_email,
        role=role,
        client_id=x_client_id,
        kam_id=x_kam_id,
    )
    bind_caller(caller)
    return caller


def get_workflow_service(
    client: RecordStoreClient = Depends(get_record_store),
    settings: Settings = Depends(get_app_settings),
    relay: NotificationRelay = Depends(get_notification_relay),
    guard: IdempotencyGuard | None = Depends(get_idempotency_guard),
) -> LoanWorkflowService:
    """Provide a LoanWorkflowService bound to the record store."""
    return LoanWorkflowService(
        applications=LoanApplicationRepository(client, settings),
        ledger=CommissionLedgerRepository(client, settings),
        history=StatusHistoryRecorder(StatusHistoryRepository(client, settings)),
        audit=AuditTrail(FileAuditLogRepository(client, settings)),
        clients=ClientRepository(client, settings),
        notifier=WebhookNotificationDispatcher(client, settings),
        calculator=CommissionCalculator(settings.default_commission_rate),
        relay=relay,
        idempotency=guard,
    )


def get_dispute_manager(
    client: RecordStoreClient = Depends(get_record_store),
    settings: Settings = Depends(get_app_settings),
) -> DisputeLifecycleManager:
    return DisputeLifecycleManager(
        ledger=CommissionLedgerRepository(client, settings),
        audit=AuditTrail(FileAuditLogRepository(client, settings)),
    )


def get_payout_workflow(
    client: RecordStoreClient = Depends(get_record_store),
    settings: Settings = Depends(get_app_settings),
    relay: NotificationRelay = Depends(get_notification_relay),
) -> PayoutApprovalWorkflow:
    return PayoutApprovalWorkflow(
        ledger=CommissionLedgerRepository(client, settings),
        audit=AuditTrail(FileAuditLogRepository(client, settings)),
        clients=ClientRepository(client, settings),
        notifier=WebhookNotificationDispatcher(client, settings),
        relay=relay,
    )
