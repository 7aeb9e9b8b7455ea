"""Application services: use case orchestration."""

from loan_lifecycle.services.audit import AuditTrail
from loan_lifecycle.services.dispute_service import DisputeLifecycleManager
from loan_lifecycle.services.loan_workflow import LoanWorkflowService
from loan_lifecycle.services.notifications import NotificationRelay, WebhookNotificationDispatcher
from loan_lifecycle.services.payout_service import PayoutApprovalWorkflow
from loan_lifecycle.services.status_history import StatusHistoryRecorder

__all__ = [
    "AuditTrail",
    "DisputeLifecycleManager",
    "LoanWorkflowService",
    "NotificationRelay",
    "PayoutApprovalWorkflow",
    "StatusHistoryRecorder",
    "WebhookNotificationDispatcher",
]
