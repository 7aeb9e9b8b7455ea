"""Loan Application Status State Machine Guard.

Uses python-statemachine to enforce legal status transitions at the domain
level. No matter what the API or a script does, an edge missing from the
graph (e.g. draft -> approved) raises TransitionError before anything is
written.

The graph says which edges exist. TRANSITION_ROLES says who may take them.
Both live here and nowhere else.

Transition table:
    draft, query_with_client                    -> under_kam_review       (submit)            client
    draft, under_kam_review, query_with_client  -> withdrawn              (withdraw)          client
    under_kam_review                            -> pending_credit_review  (forward_to_credit) kam
    under_kam_review                            -> query_with_client      (raise_client_query) kam
    pending_credit_review                       -> credit_query_with_kam  (raise_credit_query) credit_team
    pending_credit_review, credit_query_with_kam -> in_negotiation        (start_negotiation) credit_team
    pending_credit_review, credit_query_with_kam,
        in_negotiation                          -> sent_to_nbfc           (send_to_nbfc)      credit_team
    sent_to_nbfc                                -> approved               (approve)           credit_team
    sent_to_nbfc                                -> rejected               (reject)            credit_team
    approved                                    -> disbursed              (disburse)          credit_team
    disbursed                                   -> closed                 (close)             credit_team
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from loan_lifecycle.domain.enums import LoanStatus, Role
from loan_lifecycle.domain.exceptions import TransitionError


class LoanStatusMachine(StateMachine):
    """State machine holding the legal edges of the application lifecycle.

    Usage:
        sm = LoanStatusMachine(current_status="approved")
        sm.disburse()      # transitions to disbursed
        sm.status          # "disbursed"
    """

    # --- States ---
    draft = State("Draft", value=LoanStatus.DRAFT.value, initial=True)
    under_kam_review = State("Under KAM Review", value=LoanStatus.UNDER_KAM_REVIEW.value)
    query_with_client = State("Query with Client", value=LoanStatus.QUERY_WITH_CLIENT.value)
    pending_credit_review = State(
        "Pending Credit Review", value=LoanStatus.PENDING_CREDIT_REVIEW.value
    )
    credit_query_with_kam = State(
        "Credit Query with KAM", value=LoanStatus.CREDIT_QUERY_WITH_KAM.value
    )
    in_negotiation = State("In Negotiation", value=LoanStatus.IN_NEGOTIATION.value)
    sent_to_nbfc = State("Sent to NBFC", value=LoanStatus.SENT_TO_NBFC.value)
    approved = State("Approved", value=LoanStatus.APPROVED.value)
    rejected = State("Rejected", value=LoanStatus.REJECTED.value, final=True)
    disbursed = State("Disbursed", value=LoanStatus.DISBURSED.value)
    withdrawn = State("Withdrawn", value=LoanStatus.WITHDRAWN.value, final=True)
    closed = State("Closed", value=LoanStatus.CLOSED.value, final=True)

    # --- Events / Transitions ---

    # Client side
    submit = draft.to(under_kam_review) | query_with_client.to(under_kam_review)
    withdraw = (
        draft.to(withdrawn)
        | under_kam_review.to(withdrawn)
        | query_with_client.to(withdrawn)
    )

    # KAM review
    forward_to_credit = under_kam_review.to(pending_credit_review)
    raise_client_query = under_kam_review.to(query_with_client)

    # Credit review
    raise_credit_query = pending_credit_review.to(credit_query_with_kam)
    start_negotiation = pending_credit_review.to(in_negotiation) | credit_query_with_kam.to(
        in_negotiation
    )
    send_to_nbfc = (
        pending_credit_review.to(sent_to_nbfc)
        | credit_query_with_kam.to(sent_to_nbfc)
        | in_negotiation.to(sent_to_nbfc)
    )

    # Lender outcome
    approve = sent_to_nbfc.to(approved)
    reject = sent_to_nbfc.to(rejected)

    # Post-approval
    disburse = approved.to(disbursed)
    close = disbursed.to(closed)

    def __init__(self, current_status: str = LoanStatus.DRAFT.value) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: A canonical LoanStatus value (e.g., "approved").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches LoanStatus)."""
        return str(self.current_state.value)


# Each target status is reached by exactly one event.
EVENT_FOR_TARGET: dict[LoanStatus, str] = {
    LoanStatus.UNDER_KAM_REVIEW: "submit",
    LoanStatus.WITHDRAWN: "withdraw",
    LoanStatus.PENDING_CREDIT_REVIEW: "forward_to_credit",
    LoanStatus.QUERY_WITH_CLIENT: "raise_client_query",
    LoanStatus.CREDIT_QUERY_WITH_KAM: "raise_credit_query",
    LoanStatus.IN_NEGOTIATION: "start_negotiation",
    LoanStatus.SENT_TO_NBFC: "send_to_nbfc",
    LoanStatus.APPROVED: "approve",
    LoanStatus.REJECTED: "reject",
    LoanStatus.DISBURSED: "disburse",
    LoanStatus.CLOSED: "close",
}

TRANSITION_ROLES: dict[LoanStatus, frozenset[Role]] = {
    LoanStatus.UNDER_KAM_REVIEW: frozenset({Role.CLIENT}),
    LoanStatus.WITHDRAWN: frozenset({Role.CLIENT}),
    LoanStatus.PENDING_CREDIT_REVIEW: frozenset({Role.KAM}),
    LoanStatus.QUERY_WITH_CLIENT: frozenset({Role.KAM}),
    LoanStatus.CREDIT_QUERY_WITH_KAM: frozenset({Role.CREDIT_TEAM}),
    LoanStatus.IN_NEGOTIATION: frozenset({Role.CREDIT_TEAM}),
    LoanStatus.SENT_TO_NBFC: frozenset({Role.CREDIT_TEAM}),
    LoanStatus.APPROVED: frozenset({Role.CREDIT_TEAM}),
    LoanStatus.REJECTED: frozenset({Role.CREDIT_TEAM}),
    LoanStatus.DISBURSED: frozenset({Role.CREDIT_TEAM}),
    LoanStatus.CLOSED: frozenset({Role.CREDIT_TEAM}),
}


def validate_transition(current: str, target: str, role: str) -> None:
    """Check that ``role`` may move an application from ``current`` to ``target``.

    Pure: never touches storage. Statuses must already be normalized.

    Raises:
        TransitionError: reason_code "unknown_status" or "unknown_edge" when the
            pair is not in the table, "unauthorized_role" when it is but the
            role is not listed for it.
    """
    try:
        current_status = LoanStatus(current)
        target_status = LoanStatus(target)
    except ValueError as err:
        raise TransitionError(
            current, target, role, reason_code=TransitionError.UNKNOWN_STATUS
        ) from err

    event_name = EVENT_FOR_TARGET.get(target_status)
    if event_name is None:
        raise TransitionError(current, target, role, reason_code=TransitionError.UNKNOWN_EDGE)

    sm = LoanStatusMachine(current_status=current_status.value)
    try:
        getattr(sm, event_name)()
    except TransitionNotAllowed as err:
        raise TransitionError(
            current, target, role, reason_code=TransitionError.UNKNOWN_EDGE
        ) from err

    if role not in {r.value for r in TRANSITION_ROLES[target_status]}:
        raise TransitionError(
            current, target, role, reason_code=TransitionError.UNAUTHORIZED_ROLE
        )


def is_valid_transition(current: str, target: str, role: str) -> bool:
    """Boolean form of validate_transition."""
    try:
        validate_transition(current, target, role)
    except TransitionError:
        return False
    return True


def allowed_next_statuses(current: str, role: str) -> list[LoanStatus]:
    """Return the statuses ``role`` may move an application to from ``current``."""
    return [target for target in EVENT_FOR_TARGET if is_valid_transition(current, target, role)]
