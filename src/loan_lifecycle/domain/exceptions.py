"""Domain exceptions for the loan lifecycle engine.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""


class LoanLifecycleError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "LOAN_LIFECYCLE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- State Machine Errors ---


class TransitionError(LoanLifecycleError):
    """Raised when a status transition is not allowed.

    Two causes share this type. ``reason_code`` tells them apart for logging:
        - "unknown_edge" / "unknown_status": the pair is not in the table.
        - "unauthorized_role": the pair exists but the role may not take it.
    """

    UNKNOWN_EDGE = "unknown_edge"
    UNKNOWN_STATUS = "unknown_status"
    UNAUTHORIZED_ROLE = "unauthorized_role"

    def __init__(
        self,
        current: str,
        target: str,
        role: str,
        reason_code: str = UNKNOWN_EDGE,
    ) -> None:
        super().__init__(
            message=f"Invalid status transition from {current} to {target} for role {role}",
            code="INVALID_STATUS_TRANSITION",
        )
        self.current = current
        self.target = target
        self.role = role
        self.reason_code = reason_code


# --- Lookup / Input Errors ---


class NotFoundError(LoanLifecycleError):
    """Raised when a referenced application or ledger entry does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(
            message=f"{kind} not found: {identifier}",
            code="NOT_FOUND",
        )
        self.kind = kind
        self.identifier = identifier


class ValidationError(LoanLifecycleError):
    """Raised on malformed input: non-numeric amounts, missing identifiers."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.field = field


class AuthorizationError(LoanLifecycleError):
    """Raised when the caller's role may not perform a ledger operation."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="FORBIDDEN")


# --- Ledger Sub-state Errors ---


class DisputeStateError(LoanLifecycleError):
    """Raised on an illegal dispute move (flag while flagged, resolve while not flagged)."""

    def __init__(self, entry_id: str, current: str, detail: str) -> None:
        super().__init__(
            message=f"Ledger entry {entry_id}: {detail} (dispute status: {current})",
            code="INVALID_DISPUTE_STATE",
        )
        self.entry_id = entry_id
        self.current = current


class PayoutStateError(LoanLifecycleError):
    """Raised when a payout request is acted on from the wrong sub-state."""

    def __init__(self, entry_id: str, current: str, detail: str) -> None:
        super().__init__(
            message=f"Ledger entry {entry_id}: {detail} (payout request status: {current})",
            code="INVALID_PAYOUT_STATE",
        )
        self.entry_id = entry_id
        self.current = current


# --- Concurrency / Idempotency Errors ---


class ConflictError(LoanLifecycleError):
    """Raised when the application record changed between read and write."""

    def __init__(self, record_id: str, expected: str | None, actual: str | None) -> None:
        super().__init__(
            message=f"Record {record_id} was modified concurrently; re-read and retry",
            code="CONFLICT",
        )
        self.record_id = record_id
        self.expected = expected
        self.actual = actual


class DuplicateOperationError(LoanLifecycleError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
        self.idempotency_key = idempotency_key


# --- Upstream Errors ---


class RecordStoreError(LoanLifecycleError):
    """Raised when the external record store webhook fails or returns garbage."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message=message, code="RECORD_STORE_ERROR")
        self.status_code = status_code
