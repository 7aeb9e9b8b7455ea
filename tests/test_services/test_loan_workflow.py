"""Tests for LoanWorkflowService against in-memory stores.

Covers the full lifecycle, role enforcement, the optimistic-concurrency
check, lender decisions, and the read side (status and history).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from loan_lifecycle.domain.enums import (
    LedgerEntryState,
    LenderDecision,
    LoanStatus,
)
from loan_lifecycle.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    RecordStoreError,
    TransitionError,
    ValidationError,
)

DISBURSED_ON = date(2024, 3, 1)


class TestFullLifecycle:
    """draft -> ... -> disbursed -> closed through the service API."""

    @pytest.mark.asyncio
    async def test_draft_to_disbursed(
        self, harness, client_caller, kam_caller, credit_caller
    ) -> None:
        harness.seed_application(status="draft")
        harness.clients.rates["CL-001"] = Decimal("2.0")
        wf = harness.workflow

        app = await wf.submit("SF-001", client_caller)
        assert app.status == LoanStatus.UNDER_KAM_REVIEW

        app = await wf.forward_to_credit("SF-001", kam_caller, "Documents complete")
        assert app.status == LoanStatus.PENDING_CREDIT_REVIEW

        app = await wf.send_to_nbfc("SF-001", credit_caller, ["NBFC-001", " NBFC-004 "])
        assert app.status == LoanStatus.SENT_TO_NBFC
        assert app.assigned_nbfc == "NBFC-001, NBFC-004"

        app = await wf.record_nbfc_decision(
            "SF-001", credit_caller, LenderDecision.APPROVED, approved_amount="1000000"
        )
        assert app.status == LoanStatus.APPROVED
        assert app.approved_amount == Decimal("1000000")
        assert app.lender_decision_status == "Approved"

        outcome = await wf.mark_disbursed(
            "SF-001", credit_caller, disbursed_amount="1000000", disbursed_date=DISBURSED_ON
        )
        assert outcome.application.status == LoanStatus.DISBURSED
        assert outcome.application.disbursed_amount == Decimal("1000000")
        assert outcome.ledger.commission_amount == Decimal("20000")
        assert outcome.ledger.commission_rate == Decimal("2.0")

        entries = harness.ledger.all()
        assert len(entries) == 1
        assert entries[0].ledger_state is LedgerEntryState.CONFIRMED
        assert entries[0].payout_amount == Decimal("20000")
        assert entries[0].idempotency_key == "SF-001:2024-03-01"

        assert harness.applications.stored("recSF-001").status == "disbursed"

        history = await wf.get_history("SF-001", credit_caller)
        assert [(h.from_status, h.to_status) for h in history] == [
            ("draft", "under_kam_review"),
            ("under_kam_review", "pending_credit_review"),
            ("pending_credit_review", "sent_to_nbfc"),
            ("sent_to_nbfc", "approved"),
            ("approved", "disbursed"),
        ]
        assert history[-1].changed_by == "credit@seven.in"

        actions = harness.audit_sink.actions()
        assert actions.count("status_change") == 4
        assert "nbfc_decision" in actions
        assert "disbursed" in actions
        assert "commission_created" in actions

        closed = await wf.close("SF-001", credit_caller, "Loan file complete")
        assert closed.status == LoanStatus.CLOSED

    @pytest.mark.asyncio
    async def test_query_loop(self, harness, client_caller, kam_caller) -> None:
        harness.seed_application(status="under_kam_review")
        wf = harness.workflow

        app = await wf.raise_client_query("SF-001", kam_caller, "Upload PAN card")
        assert app.status == LoanStatus.QUERY_WITH_CLIENT

        app = await wf.submit("SF-001", client_caller)
        assert app.status == LoanStatus.UNDER_KAM_REVIEW

        history = await harness.workflow.get_history("SF-001", kam_caller)
        assert history[0].reason == "Upload PAN card"

    @pytest.mark.asyncio
    async def test_credit_query_then_negotiation(self, harness, credit_caller) -> None:
        harness.seed_application(status="pending_credit_review")
        wf = harness.workflow

        app = await wf.raise_credit_query("SF-001", credit_caller, "Clarify co-applicant income")
        assert app.status == LoanStatus.CREDIT_QUERY_WITH_KAM

        app = await wf.mark_in_negotiation("SF-001", credit_caller, "Rate discussion")
        assert app.status == LoanStatus.IN_NEGOTIATION

    @pytest.mark.asyncio
    async def test_withdraw(self, harness, client_caller) -> None:
        harness.seed_application(status="query_with_client")
        app = await harness.workflow.withdraw("SF-001", client_caller, "Found a better offer")
        assert app.status == LoanStatus.WITHDRAWN

    @pytest.mark.asyncio
    async def test_legacy_status_is_normalized_before_validation(
        self, harness, kam_caller
    ) -> None:
        harness.seed_application(status="Pending KAM Review")
        app = await harness.workflow.forward_to_credit("SF-001", kam_caller)
        assert app.status == LoanStatus.PENDING_CREDIT_REVIEW
        history = await harness.workflow.get_history("SF-001", kam_caller)
        assert history[0].from_status == "under_kam_review"


class TestRejections:
    """Invalid moves write nothing."""

    @pytest.mark.asyncio
    async def test_kam_cannot_submit_approved_application(self, harness, kam_caller) -> None:
        harness.seed_application(status="approved")

        with pytest.raises(TransitionError) as exc_info:
            await harness.workflow.submit("SF-001", kam_caller)

        assert exc_info.value.current == "approved"
        assert harness.applications.upserts == 0
        assert harness.history_store.entries == []
        assert harness.audit_sink.rows == []

    @pytest.mark.asyncio
    async def test_wrong_role_on_valid_edge(self, harness, client_caller) -> None:
        harness.seed_application(status="under_kam_review")
        with pytest.raises(TransitionError) as exc_info:
            await harness.workflow.forward_to_credit("SF-001", client_caller)
        assert exc_info.value.reason_code == TransitionError.UNAUTHORIZED_ROLE

    @pytest.mark.asyncio
    async def test_client_cannot_touch_another_clients_file(
        self, harness, other_client_caller
    ) -> None:
        harness.seed_application(status="draft")
        with pytest.raises(AuthorizationError):
            await harness.workflow.submit("SF-001", other_client_caller)

    @pytest.mark.asyncio
    async def test_unknown_application(self, harness, client_caller) -> None:
        with pytest.raises(NotFoundError):
            await harness.workflow.submit("SF-404", client_caller)

    @pytest.mark.asyncio
    async def test_query_needs_a_message(self, harness, kam_caller) -> None:
        harness.seed_application(status="under_kam_review")
        with pytest.raises(ValidationError):
            await harness.workflow.raise_client_query("SF-001", kam_caller, "   ")
        assert harness.applications.upserts == 0

    @pytest.mark.asyncio
    async def test_send_to_nbfc_needs_partners(self, harness, credit_caller) -> None:
        harness.seed_application(status="pending_credit_review")
        with pytest.raises(ValidationError):
            await harness.workflow.send_to_nbfc("SF-001", credit_caller, ["", " "])

    @pytest.mark.asyncio
    async def test_unknown_stored_status_is_rejected(self, harness, client_caller) -> None:
        harness.seed_application(status="on_hold")
        with pytest.raises(TransitionError) as exc_info:
            await harness.workflow.submit("SF-001", client_caller)
        assert exc_info.value.reason_code == TransitionError.UNKNOWN_STATUS


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_write_raises_conflict(self, harness, kam_caller) -> None:
        harness.seed_application(status="under_kam_review")
        harness.applications.bump_after_next_read = True

        with pytest.raises(ConflictError):
            await harness.workflow.forward_to_credit("SF-001", kam_caller)

        assert harness.applications.stored("recSF-001").status == "under_kam_review"
        assert harness.history_store.entries == []

    @pytest.mark.asyncio
    async def test_retry_after_conflict_succeeds(self, harness, kam_caller) -> None:
        harness.seed_application(status="under_kam_review")
        harness.applications.bump_after_next_read = True
        with pytest.raises(ConflictError):
            await harness.workflow.forward_to_credit("SF-001", kam_caller)

        app = await harness.workflow.forward_to_credit("SF-001", kam_caller)
        assert app.status == LoanStatus.PENDING_CREDIT_REVIEW


class TestPartialWriteRollback:
    """History or audit failing after the status write puts the record back."""

    @pytest.mark.asyncio
    async def test_history_failure_restores_status(self, harness, client_caller) -> None:
        harness.seed_application(status="draft")
        harness.history_store.fail_next_append = RecordStoreError("down", status_code=503)

        with pytest.raises(RecordStoreError):
            await harness.workflow.submit("SF-001", client_caller)

        assert harness.applications.stored("recSF-001").status == "draft"
        assert harness.history_store.entries == []
        assert harness.audit_sink.actions() == ["status_change_rolled_back"]

    @pytest.mark.asyncio
    async def test_audit_failure_adds_reverse_history(self, harness, kam_caller) -> None:
        harness.seed_application(status="under_kam_review")
        harness.audit_sink.fail_actions = {"status_change"}

        with pytest.raises(RuntimeError):
            await harness.workflow.forward_to_credit("SF-001", kam_caller)

        assert harness.applications.stored("recSF-001").status == "under_kam_review"
        rows = [(e.from_status, e.to_status) for e in harness.history_store.entries]
        assert rows == [
            ("under_kam_review", "pending_credit_review"),
            ("pending_credit_review", "under_kam_review"),
        ]
        assert harness.audit_sink.actions() == ["status_change_rolled_back"]

    @pytest.mark.asyncio
    async def test_retry_after_rollback_succeeds(self, harness, client_caller) -> None:
        harness.seed_application(status="draft")
        harness.history_store.fail_next_append = RecordStoreError("down")
        with pytest.raises(RecordStoreError):
            await harness.workflow.submit("SF-001", client_caller)

        app = await harness.workflow.submit("SF-001", client_caller)

        assert app.status == LoanStatus.UNDER_KAM_REVIEW
        [entry] = harness.history_store.entries
        assert entry.to_status == "under_kam_review"

    @pytest.mark.asyncio
    async def test_lender_decision_audit_failure(self, harness, credit_caller) -> None:
        harness.seed_application(status="sent_to_nbfc")
        harness.audit_sink.fail_actions = {"nbfc_decision"}

        with pytest.raises(RuntimeError):
            await harness.workflow.record_nbfc_decision(
                "SF-001", credit_caller, LenderDecision.APPROVED, approved_amount="800000"
            )

        stored = harness.applications.stored("recSF-001")
        assert stored.status == "sent_to_nbfc"
        assert stored.approved_amount is None
        assert stored.lender_decision_status is None
        assert harness.history_store.entries[-1].to_status == "sent_to_nbfc"

    @pytest.mark.asyncio
    async def test_clarification_audit_failure(self, harness, credit_caller) -> None:
        harness.seed_application(status="sent_to_nbfc")
        harness.audit_sink.fail_actions = {"nbfc_decision"}

        with pytest.raises(RuntimeError):
            await harness.workflow.record_nbfc_decision(
                "SF-001", credit_caller, LenderDecision.NEEDS_CLARIFICATION, remarks="GST?"
            )

        stored = harness.applications.stored("recSF-001")
        assert stored.lender_decision_status is None
        assert stored.lender_decision_remarks is None
        assert harness.audit_sink.actions() == ["nbfc_decision_rolled_back"]


class TestLenderDecision:
    @pytest.mark.asyncio
    async def test_rejected(self, harness, credit_caller) -> None:
        harness.seed_application(status="sent_to_nbfc")
        app = await harness.workflow.record_nbfc_decision(
            "SF-001", credit_caller, LenderDecision.REJECTED, remarks="Low bureau score"
        )
        assert app.status == LoanStatus.REJECTED
        assert app.lender_decision_remarks == "Low bureau score"
        assert app.approved_amount is None

    @pytest.mark.asyncio
    async def test_needs_clarification_keeps_status(self, harness, credit_caller) -> None:
        harness.seed_application(status="sent_to_nbfc")
        app = await harness.workflow.record_nbfc_decision(
            "SF-001",
            credit_caller,
            LenderDecision.NEEDS_CLARIFICATION,
            remarks="Need last two years of GST returns",
        )
        assert app.status == "sent_to_nbfc"
        assert app.lender_decision_status == "Needs Clarification"
        assert harness.history_store.entries == []
        assert harness.audit_sink.actions() == ["nbfc_decision"]

    @pytest.mark.asyncio
    async def test_needs_clarification_requires_remarks(self, harness, credit_caller) -> None:
        harness.seed_application(status="sent_to_nbfc")
        with pytest.raises(ValidationError):
            await harness.workflow.record_nbfc_decision(
                "SF-001", credit_caller, LenderDecision.NEEDS_CLARIFICATION
            )

    @pytest.mark.asyncio
    async def test_needs_clarification_requires_credit_team(self, harness, kam_caller) -> None:
        harness.seed_application(status="sent_to_nbfc")
        with pytest.raises(AuthorizationError):
            await harness.workflow.record_nbfc_decision(
                "SF-001", kam_caller, LenderDecision.NEEDS_CLARIFICATION, remarks="?"
            )

    @pytest.mark.asyncio
    async def test_approval_requires_amount(self, harness, credit_caller) -> None:
        harness.seed_application(status="sent_to_nbfc")
        with pytest.raises(ValidationError):
            await harness.workflow.record_nbfc_decision(
                "SF-001", credit_caller, LenderDecision.APPROVED
            )
        assert harness.applications.upserts == 0


class TestGenericTransition:
    @pytest.mark.asyncio
    async def test_target_is_normalized(self, harness, kam_caller) -> None:
        harness.seed_application(status="under_kam_review")
        app = await harness.workflow.transition("SF-001", "Forwarded to Credit", kam_caller)
        assert app.status == LoanStatus.PENDING_CREDIT_REVIEW

    @pytest.mark.asyncio
    async def test_disbursed_only_through_disburse(self, harness, credit_caller) -> None:
        harness.seed_application(status="approved")
        with pytest.raises(ValidationError):
            await harness.workflow.transition("SF-001", "Disbursed", credit_caller)
        assert harness.ledger.all() == []


class TestReads:
    @pytest.mark.asyncio
    async def test_status_lists_moves_for_caller(self, harness, kam_caller) -> None:
        harness.seed_application(status="Under KAM Review")
        view = await harness.workflow.get_status("SF-001", kam_caller)
        assert view.status == "under_kam_review"
        assert set(view.allowed_next) == {
            LoanStatus.PENDING_CREDIT_REVIEW,
            LoanStatus.QUERY_WITH_CLIENT,
        }

    @pytest.mark.asyncio
    async def test_lookup_by_record_id(self, harness, client_caller) -> None:
        harness.seed_application(status="draft")
        view = await harness.workflow.get_status("recSF-001", client_caller)
        assert view.application.file_id == "SF-001"

    @pytest.mark.asyncio
    async def test_client_cannot_read_other_history(self, harness, other_client_caller) -> None:
        harness.seed_application(status="draft")
        with pytest.raises(AuthorizationError):
            await harness.workflow.get_history("SF-001", other_client_caller)
