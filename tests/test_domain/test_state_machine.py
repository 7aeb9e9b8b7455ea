"""Tests for the LoanStatusMachine domain guard.

These tests verify that:
    1. Every edge in the transition table is allowed for its role.
    2. Every other (current, target, role) triple is rejected.
    3. Rejections carry the right reason code.
    4. allowed_next_statuses agrees with the table.
"""

from __future__ import annotations

import itertools

import pytest
from statemachine.exceptions import TransitionNotAllowed

from loan_lifecycle.domain.enums import LoanStatus, Role
from loan_lifecycle.domain.exceptions import TransitionError
from loan_lifecycle.domain.state_machine import (
    LoanStatusMachine,
    allowed_next_statuses,
    is_valid_transition,
    validate_transition,
)

ALLOWED: set[tuple[str, str, str]] = {
    ("draft", "under_kam_review", "client"),
    ("query_with_client", "under_kam_review", "client"),
    ("draft", "withdrawn", "client"),
    ("under_kam_review", "withdrawn", "client"),
    ("query_with_client", "withdrawn", "client"),
    ("under_kam_review", "pending_credit_review", "kam"),
    ("under_kam_review", "query_with_client", "kam"),
    ("pending_credit_review", "credit_query_with_kam", "credit_team"),
    ("pending_credit_review", "in_negotiation", "credit_team"),
    ("credit_query_with_kam", "in_negotiation", "credit_team"),
    ("pending_credit_review", "sent_to_nbfc", "credit_team"),
    ("credit_query_with_kam", "sent_to_nbfc", "credit_team"),
    ("in_negotiation", "sent_to_nbfc", "credit_team"),
    ("sent_to_nbfc", "approved", "credit_team"),
    ("sent_to_nbfc", "rejected", "credit_team"),
    ("approved", "disbursed", "credit_team"),
    ("disbursed", "closed", "credit_team"),
}


class TestHappyPath:
    """Test the full lifecycle: draft -> closed."""

    def test_full_lifecycle(self) -> None:
        sm = LoanStatusMachine("draft")
        assert sm.status == "draft"

        sm.submit()
        assert sm.status == "under_kam_review"

        sm.forward_to_credit()
        assert sm.status == "pending_credit_review"

        sm.send_to_nbfc()
        assert sm.status == "sent_to_nbfc"

        sm.approve()
        assert sm.status == "approved"

        sm.disburse()
        assert sm.status == "disbursed"

        sm.close()
        assert sm.status == "closed"

    def test_query_round_trip(self) -> None:
        sm = LoanStatusMachine("under_kam_review")
        sm.raise_client_query()
        assert sm.status == "query_with_client"
        sm.submit()
        assert sm.status == "under_kam_review"


class TestInvalidTransitions:
    def test_cannot_skip_to_approved(self) -> None:
        sm = LoanStatusMachine("draft")
        with pytest.raises(TransitionNotAllowed):
            sm.approve()

    def test_closed_is_final(self) -> None:
        sm = LoanStatusMachine("closed")
        with pytest.raises(TransitionNotAllowed):
            sm.submit()

    def test_unknown_initial_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            LoanStatusMachine("limbo")


class TestTransitionTable:
    """Exhaustive check of every (current, target, role) triple."""

    @pytest.mark.parametrize(
        ("current", "target", "role"),
        list(itertools.product(list(LoanStatus), list(LoanStatus), list(Role))),
    )
    def test_triple(self, current: LoanStatus, target: LoanStatus, role: Role) -> None:
        expected = (current.value, target.value, role.value) in ALLOWED
        assert is_valid_transition(current.value, target.value, role.value) is expected


class TestValidateTransition:
    def test_valid_transition_returns_none(self) -> None:
        assert validate_transition("approved", "disbursed", "credit_team") is None

    def test_unknown_edge(self) -> None:
        with pytest.raises(TransitionError) as exc_info:
            validate_transition("draft", "approved", "credit_team")
        assert exc_info.value.reason_code == TransitionError.UNKNOWN_EDGE
        assert exc_info.value.code == "INVALID_STATUS_TRANSITION"

    def test_unauthorized_role(self) -> None:
        with pytest.raises(TransitionError) as exc_info:
            validate_transition("draft", "under_kam_review", "kam")
        assert exc_info.value.reason_code == TransitionError.UNAUTHORIZED_ROLE

    def test_unknown_status(self) -> None:
        with pytest.raises(TransitionError) as exc_info:
            validate_transition("pending", "approved", "credit_team")
        assert exc_info.value.reason_code == TransitionError.UNKNOWN_STATUS

    def test_self_transition_rejected(self) -> None:
        with pytest.raises(TransitionError):
            validate_transition("approved", "approved", "credit_team")


class TestAllowedNextStatuses:
    def test_kam_on_review(self) -> None:
        assert set(allowed_next_statuses("under_kam_review", "kam")) == {
            LoanStatus.PENDING_CREDIT_REVIEW,
            LoanStatus.QUERY_WITH_CLIENT,
        }

    def test_client_on_review_can_only_withdraw(self) -> None:
        assert allowed_next_statuses("under_kam_review", "client") == [LoanStatus.WITHDRAWN]

    def test_terminal_has_no_moves(self) -> None:
        for role in Role:
            assert allowed_next_statuses("closed", role.value) == []
