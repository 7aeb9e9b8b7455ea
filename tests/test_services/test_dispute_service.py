"""Tests for DisputeLifecycleManager."""

from __future__ import annotations

from decimal import Decimal

import pytest

from loan_lifecycle.domain.enums import DisputeStatus
from loan_lifecycle.domain.exceptions import (
    AuthorizationError,
    DisputeStateError,
    NotFoundError,
    ValidationError,
)


class TestFlagDispute:
    @pytest.mark.asyncio
    async def test_client_flags_own_entry(self, harness, client_caller) -> None:
        entry = harness.seed_entry(amount=Decimal("7500"))

        updated = await harness.disputes.flag_dispute(
            entry.id, "  Rate should be 2%  ", client_caller
        )

        assert updated.dispute_status is DisputeStatus.FLAGGED
        assert updated.dispute.reason == "Rate should be 2%"
        assert updated.dispute.raised_by == "owner@acme.in"
        stored = harness.ledger._entries[entry.id]
        assert stored.dispute_status is DisputeStatus.FLAGGED

        [row] = harness.audit_sink.rows
        assert row["action_type"] == "ledger_dispute_flagged"
        assert row["file_id"] == "SF-001"
        assert row["resolved"] is False

    @pytest.mark.asyncio
    async def test_reason_required(self, harness, client_caller) -> None:
        entry = harness.seed_entry()
        with pytest.raises(ValidationError):
            await harness.disputes.flag_dispute(entry.id, "", client_caller)

    @pytest.mark.asyncio
    async def test_other_clients_entry(self, harness, other_client_caller) -> None:
        entry = harness.seed_entry()
        with pytest.raises(AuthorizationError):
            await harness.disputes.flag_dispute(entry.id, "wrong", other_client_caller)

    @pytest.mark.asyncio
    async def test_already_flagged(self, harness, client_caller) -> None:
        entry = harness.seed_entry()
        await harness.disputes.flag_dispute(entry.id, "first", client_caller)
        with pytest.raises(DisputeStateError):
            await harness.disputes.flag_dispute(entry.id, "second", client_caller)

    @pytest.mark.asyncio
    async def test_unknown_entry(self, harness, client_caller) -> None:
        with pytest.raises(NotFoundError):
            await harness.disputes.flag_dispute("LEDGER-404", "why", client_caller)

    @pytest.mark.asyncio
    async def test_lender_and_kam_cannot_flag(self, harness, nbfc_caller, kam_caller) -> None:
        entry = harness.seed_entry()
        for caller in (nbfc_caller, kam_caller):
            with pytest.raises(AuthorizationError):
                await harness.disputes.flag_dispute(entry.id, "looks wrong", caller)
        assert harness.ledger._entries[entry.id].dispute_status is DisputeStatus.NONE
        assert harness.audit_sink.rows == []

    @pytest.mark.asyncio
    async def test_credit_team_flags_any_entry(self, harness, credit_caller) -> None:
        entry = harness.seed_entry(client_id="CL-002")

        updated = await harness.disputes.flag_dispute(entry.id, "Rate mismatch", credit_caller)

        assert updated.dispute_status is DisputeStatus.FLAGGED


class TestResolveDispute:
    @pytest.mark.asyncio
    async def test_resolve_with_adjustment(
        self, harness, client_caller, credit_caller
    ) -> None:
        entry = harness.seed_entry(amount=Decimal("7500"))
        await harness.disputes.flag_dispute(entry.id, "Rate should be 2%", client_caller)

        updated = await harness.disputes.resolve_dispute(
            credit_caller, entry.id, resolved=True, adjusted_amount="10000", notes="Agreed"
        )

        assert updated.dispute_status is DisputeStatus.RESOLVED
        assert updated.payout_amount == Decimal("10000")
        row = harness.audit_sink.rows[-1]
        assert row["action_type"] == "ledger_dispute_resolved"
        assert row["resolved"] is True
        assert "amount adjusted to 10000" in row["message"]

    @pytest.mark.asyncio
    async def test_reject_ignores_adjustment(
        self, harness, client_caller, credit_caller
    ) -> None:
        entry = harness.seed_entry(amount=Decimal("7500"))
        await harness.disputes.flag_dispute(entry.id, "Rate", client_caller)

        updated = await harness.disputes.resolve_dispute(
            credit_caller, entry.id, resolved=False, adjusted_amount="10000"
        )

        assert updated.dispute_status is DisputeStatus.REJECTED
        assert updated.payout_amount == Decimal("7500")

    @pytest.mark.asyncio
    async def test_only_credit_team(self, harness, client_caller, kam_caller) -> None:
        entry = harness.seed_entry()
        await harness.disputes.flag_dispute(entry.id, "Rate", client_caller)
        with pytest.raises(AuthorizationError):
            await harness.disputes.resolve_dispute(kam_caller, entry.id, resolved=True)

    @pytest.mark.asyncio
    async def test_nothing_to_resolve(self, harness, credit_caller) -> None:
        entry = harness.seed_entry()
        with pytest.raises(DisputeStateError):
            await harness.disputes.resolve_dispute(credit_caller, entry.id, resolved=True)

    @pytest.mark.asyncio
    async def test_non_numeric_adjustment(self, harness, client_caller, credit_caller) -> None:
        entry = harness.seed_entry()
        await harness.disputes.flag_dispute(entry.id, "Rate", client_caller)
        with pytest.raises(ValidationError):
            await harness.disputes.resolve_dispute(
                credit_caller, entry.id, resolved=True, adjusted_amount="lots"
            )
