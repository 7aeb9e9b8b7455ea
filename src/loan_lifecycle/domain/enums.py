"""Domain enumerations for the loan lifecycle engine.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no FastAPI, no HTTP imports).
"""

import enum


class LoanStatus(enum.StrEnum):
    """Lifecycle states of a loan application.

    Transitions are enforced by the LoanStatusMachine guard.
    See domain/state_machine.py for the transition table.
    """

    DRAFT = "draft"
    UNDER_KAM_REVIEW = "under_kam_review"
    QUERY_WITH_CLIENT = "query_with_client"
    PENDING_CREDIT_REVIEW = "pending_credit_review"
    CREDIT_QUERY_WITH_KAM = "credit_query_with_kam"
    IN_NEGOTIATION = "in_negotiation"
    SENT_TO_NBFC = "sent_to_nbfc"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"
    WITHDRAWN = "withdrawn"
    CLOSED = "closed"


TERMINAL_STATUSES = frozenset(
    {LoanStatus.DISBURSED, LoanStatus.WITHDRAWN, LoanStatus.CLOSED}
)


class Role(enum.StrEnum):
    """Caller roles supplied with every mutating request."""

    CLIENT = "client"
    KAM = "kam"
    CREDIT_TEAM = "credit_team"
    NBFC = "nbfc"
    ADMIN = "admin"


class EntryType(enum.StrEnum):
    """Direction of a commission ledger entry.

    Payout is owed to the client (positive amount), Payin is owed back
    by the client (negative amount).
    """

    PAYOUT = "Payout"
    PAYIN = "Payin"


class DisputeStatus(enum.StrEnum):
    """Dispute sub-state of a ledger entry."""

    NONE = "none"
    FLAGGED = "flagged"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class PayoutRequestStatus(enum.StrEnum):
    """Payout request sub-state of a ledger entry."""

    NONE = "none"
    REQUESTED = "requested"
    PAID = "paid"
    REJECTED = "rejected"


class LedgerEntryState(enum.StrEnum):
    """Saga state of a ledger entry.

    Disbursement entries are written PENDING and flipped to CONFIRMED once
    the application status and history writes succeed. A failed saga marks
    the entry VOIDED. Voided entries never count towards a balance.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    VOIDED = "voided"


class LenderDecision(enum.StrEnum):
    """Decision recorded on behalf of an NBFC partner."""

    APPROVED = "Approved"
    REJECTED = "Rejected"
    NEEDS_CLARIFICATION = "Needs Clarification"


class AuditAction(enum.StrEnum):
    """Action types written to the file audit log.

    Every transition and every ledger mutation produces one audit entry.
    """

    # Application lifecycle
    STATUS_CHANGE = "status_change"
    NBFC_DECISION = "nbfc_decision"
    DISBURSED = "disbursed"
    DISBURSEMENT_ROLLED_BACK = "disbursement_rolled_back"
    STATUS_CHANGE_ROLLED_BACK = "status_change_rolled_back"
    NBFC_DECISION_ROLLED_BACK = "nbfc_decision_rolled_back"

    # Ledger
    COMMISSION_CREATED = "commission_created"
    LEDGER_DISPUTE_FLAGGED = "ledger_dispute_flagged"
    LEDGER_DISPUTE_RESOLVED = "ledger_dispute_resolved"
    PAYOUT_REQUESTED = "payout_request_flagged"
    PAYOUT_APPROVED = "payout_approved"
    PAYOUT_REJECTED = "payout_rejected"


# Who is expected to act next once an application lands in a status.
TARGET_ROLE_FOR_STATUS: dict[LoanStatus, Role] = {
    LoanStatus.DRAFT: Role.CLIENT,
    LoanStatus.UNDER_KAM_REVIEW: Role.KAM,
    LoanStatus.QUERY_WITH_CLIENT: Role.CLIENT,
    LoanStatus.PENDING_CREDIT_REVIEW: Role.CREDIT_TEAM,
    LoanStatus.CREDIT_QUERY_WITH_KAM: Role.KAM,
    LoanStatus.IN_NEGOTIATION: Role.CREDIT_TEAM,
    LoanStatus.SENT_TO_NBFC: Role.NBFC,
    LoanStatus.APPROVED: Role.CREDIT_TEAM,
    LoanStatus.REJECTED: Role.CLIENT,
    LoanStatus.DISBURSED: Role.CLIENT,
    LoanStatus.WITHDRAWN: Role.KAM,
    LoanStatus.CLOSED: Role.CREDIT_TEAM,
}
