"""Domain layer: pure business logic with zero framework dependencies."""

from loan_lifecycle.domain.enums import (
    DisputeStatus,
    EntryType,
    LoanStatus,
    PayoutRequestStatus,
    Role,
)
from loan_lifecycle.domain.exceptions import (
    LoanLifecycleError,
    NotFoundError,
    TransitionError,
)
from loan_lifecycle.domain.state_machine import (
    LoanStatusMachine,
    validate_transition,
)
from loan_lifecycle.domain.status_aliases import normalize_status

__all__ = [
    "DisputeStatus",
    "EntryType",
    "LoanStatus",
    "PayoutRequestStatus",
    "Role",
    "LoanLifecycleError",
    "NotFoundError",
    "TransitionError",
    "LoanStatusMachine",
    "validate_transition",
    "normalize_status",
]
