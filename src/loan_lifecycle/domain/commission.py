"""Commission calculation for disbursed loans.

A disbursement produces exactly one ledger entry:

    commission = disbursed_amount * rate / 100
    entry_type = Payout if commission >= 0 else Payin
    payout_amount = commission            (sign preserved)

The rate comes from the client record. When the client has none, the
calculator's injected default applies (DEFAULT_COMMISSION_RATE in config).
"""

from __future__ import annotations

import uuid
from datetime import date as date_type
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from loan_lifecycle.domain.enums import (
    DisputeStatus,
    EntryType,
    LedgerEntryState,
    PayoutRequestStatus,
)
from loan_lifecycle.domain.exceptions import ValidationError
from loan_lifecycle.domain.models import CommissionLedgerEntry, LedgerResult

if TYPE_CHECKING:
    from collections.abc import Callable

HUNDRED = Decimal(100)


def to_decimal(value: object, field: str) -> Decimal:
    """Coerce a user- or store-supplied number to Decimal.

    Raises:
        ValidationError: If the value is missing, non-numeric, or not finite.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required and must be numeric", field=field)
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as err:
        raise ValidationError(f"{field} must be numeric, got {value!r}", field=field) from err
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number, got {value!r}", field=field)
    return result


def disbursement_key(loan_file_id: str, disbursed_date: date_type) -> str:
    """Idempotency key for the ledger entry of one disbursement event."""
    return f"{loan_file_id}:{disbursed_date.isoformat()}"


def settlement_key(entry_id: str) -> str:
    """Idempotency key for the settlement entry that pays out one ledger entry."""
    return f"payout:{entry_id}"


def new_ledger_entry_id() -> str:
    return f"LEDGER-{uuid.uuid4().hex[:16].upper()}"


def _format_number(value: Decimal) -> str:
    """Render without exponent or trailing zeros: 1.50 -> 1.5, 5E+5 -> 500000."""
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


class CommissionCalculator:
    """Builds the ledger entry for a disbursement event."""

    def __init__(
        self,
        default_rate: Decimal | float | str,
        id_factory: Callable[[], str] = new_ledger_entry_id,
    ) -> None:
        """Initialize with the fallback rate used when a client has none.

        Args:
            default_rate: Percentage, e.g. 1.5 for 1.5%.
            id_factory: Produces ledger entry IDs (overridable in tests).
        """
        self.default_rate = to_decimal(default_rate, "default_rate")
        self._id_factory = id_factory

    def calculate(
        self,
        loan_file_id: str,
        client_id: str,
        disbursed_amount: Decimal | float | str,
        disbursed_date: date_type,
        commission_rate: Decimal | float | str | None = None,
    ) -> LedgerResult:
        """Compute the commission for a disbursement and build its ledger entry.

        The entry is returned PENDING; the disbursement saga confirms it once
        the application status has been written.

        Raises:
            ValidationError: On missing identifiers or non-numeric input.
        """
        if not loan_file_id:
            raise ValidationError("loan_file_id is required", field="loan_file_id")
        if not client_id:
            raise ValidationError("client_id is required", field="client_id")

        amount = to_decimal(disbursed_amount, "disbursed_amount")
        rate = (
            self.default_rate
            if commission_rate is None
            else to_decimal(commission_rate, "commission_rate")
        )

        commission = amount * rate / HUNDRED
        entry_type = EntryType.PAYOUT if commission >= 0 else EntryType.PAYIN

        description = (
            f"{entry_type.value} for loan disbursement - {loan_file_id} "
            f"(Commission: {_format_number(rate)}% of {_format_number(amount)})"
        )
        entry = CommissionLedgerEntry(
            id=self._id_factory(),
            client_id=client_id,
            loan_file_id=loan_file_id,
            date=disbursed_date,
            disbursed_amount=amount,
            commission_rate=rate,
            payout_amount=commission,
            entry_type=entry_type,
            description=description,
            dispute_status=DisputeStatus.NONE,
            payout_request_status=PayoutRequestStatus.NONE,
            ledger_state=LedgerEntryState.PENDING,
            idempotency_key=disbursement_key(loan_file_id, disbursed_date),
        )
        return LedgerResult(
            entry=entry,
            commission_amount=commission,
            commission_rate=rate,
            entry_type=entry_type,
        )
