"""Canonicalization of loosely-typed status tokens.

The record store holds status values written by several generations of
forms and automations: display labels, upper case, hyphenated, and a few
legacy names. Everything that reads a status goes through normalize_status
before comparing it.
"""

from __future__ import annotations

import re

from loan_lifecycle.domain.enums import LoanStatus

STATUS_ALIASES: dict[str, str] = {
    "forwarded_to_credit": LoanStatus.PENDING_CREDIT_REVIEW.value,
    "credit_query_raised": LoanStatus.CREDIT_QUERY_WITH_KAM.value,
    "pending_kam_review": LoanStatus.UNDER_KAM_REVIEW.value,
    "kam_query_raised": LoanStatus.QUERY_WITH_CLIENT.value,
}

_SEPARATORS = re.compile(r"[\s\-]+")


def normalize_status(value: str | None) -> str:
    """Return the canonical status token for ``value``.

    Blank or missing values mean the application was never submitted and
    map to ``draft``. Unknown tokens come back case-folded but otherwise
    untouched, so the validator rejects them instead of guessing.
    """
    if value is None:
        return LoanStatus.DRAFT.value
    token = _SEPARATORS.sub("_", str(value).strip().casefold()).strip("_")
    if not token:
        return LoanStatus.DRAFT.value
    return STATUS_ALIASES.get(token, token)
