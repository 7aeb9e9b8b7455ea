"""Webhook-backed record store: HTTP client, loose-schema mapper, repositories."""

from loan_lifecycle.infrastructure.record_store.client import RecordStoreClient, parse_records
from loan_lifecycle.infrastructure.record_store.repositories import (
    ClientRepository,
    CommissionLedgerRepository,
    FileAuditLogRepository,
    LoanApplicationRepository,
    StatusHistoryRepository,
)

__all__ = [
    "RecordStoreClient",
    "parse_records",
    "ClientRepository",
    "CommissionLedgerRepository",
    "FileAuditLogRepository",
    "LoanApplicationRepository",
    "StatusHistoryRepository",
]
