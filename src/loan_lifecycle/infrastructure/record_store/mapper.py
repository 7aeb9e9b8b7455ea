"""Translation between loose record-store rows and canonical domain records.

This is the only module that knows the record store's field names. A field
may arrive under its display label ("File ID") or a machine key ("fileId");
numbers arrive as strings with thousands separators; linked records arrive
as one-element lists; statuses and sub-states use legacy spellings.

Reading is forgiving: an unparseable optional value becomes None. Writing
always emits display labels, and starts from the record's ``raw`` dict so
columns this service does not own are sent back untouched.
"""

from __future__ import annotations

import json
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from loan_lifecycle.domain.enums import (
    DisputeStatus,
    EntryType,
    LedgerEntryState,
    PayoutRequestStatus,
)
from loan_lifecycle.domain.models import (
    CommissionLedgerEntry,
    DisputeRecord,
    LoanApplication,
    StatusHistoryEntry,
)
from loan_lifecycle.domain.status_aliases import normalize_status
from loan_lifecycle.logging_config import get_logger

logger = get_logger(__name__)

# Legacy wire values seen in the ledger table, lower-cased.
DISPUTE_STATUS_FROM_WIRE: dict[str, DisputeStatus] = {
    "": DisputeStatus.NONE,
    "none": DisputeStatus.NONE,
    "flagged": DisputeStatus.FLAGGED,
    "under query": DisputeStatus.FLAGGED,
    "resolved": DisputeStatus.RESOLVED,
    "rejected": DisputeStatus.REJECTED,
}
DISPUTE_STATUS_TO_WIRE: dict[DisputeStatus, str] = {
    DisputeStatus.NONE: "None",
    DisputeStatus.FLAGGED: "Under Query",
    DisputeStatus.RESOLVED: "Resolved",
    DisputeStatus.REJECTED: "Rejected",
}

PAYOUT_REQUEST_FROM_WIRE: dict[str, PayoutRequestStatus] = {
    "": PayoutRequestStatus.NONE,
    "none": PayoutRequestStatus.NONE,
    "false": PayoutRequestStatus.NONE,
    "true": PayoutRequestStatus.REQUESTED,
    "requested": PayoutRequestStatus.REQUESTED,
    "approved": PayoutRequestStatus.REQUESTED,
    "paid": PayoutRequestStatus.PAID,
    "rejected": PayoutRequestStatus.REJECTED,
}
PAYOUT_REQUEST_TO_WIRE: dict[PayoutRequestStatus, str] = {
    PayoutRequestStatus.NONE: "False",
    PayoutRequestStatus.REQUESTED: "Requested",
    PayoutRequestStatus.PAID: "Paid",
    PayoutRequestStatus.REJECTED: "Rejected",
}


# ---------------------------------------------------------------------------
# Scalar helpers
# ---------------------------------------------------------------------------


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, list):
        return len(value) == 0
    return False


def pick(record: dict[str, Any], *keys: str) -> Any:
    """Return the first non-empty value among ``keys``; linked lists collapse to their head."""
    for key in keys:
        value = record.get(key)
        if _is_empty(value):
            continue
        if isinstance(value, list):
            return value[0]
        return value
    return None


def text(record: dict[str, Any], *keys: str) -> str | None:
    value = pick(record, *keys)
    return None if value is None else str(value).strip()


def parse_decimal(value: Any) -> Decimal | None:
    """Parse a loose number ("1,50,000", " 7500.0 ", 12) into Decimal, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    cleaned = str(value).strip().replace(",", "")
    if not cleaned:
        return None
    try:
        result = Decimal(cleaned)
    except InvalidOperation:
        logger.warning("record_store.unparseable_number", value=str(value))
        return None
    return result if result.is_finite() else None


def parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if not raw:
            return None
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("record_store.unparseable_timestamp", value=raw)
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def parse_date(value: Any) -> date | None:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = parse_datetime(value)
    return parsed.date() if parsed else None


def format_decimal(value: Decimal | None) -> str:
    return "" if value is None else str(value)


def format_datetime(value: datetime | date | None) -> str:
    return "" if value is None else value.isoformat()


def format_bool(value: bool) -> str:
    return "True" if value else "False"


# ---------------------------------------------------------------------------
# Loan applications
# ---------------------------------------------------------------------------


def application_from_record(record: dict[str, Any]) -> LoanApplication:
    file_id = text(record, "File ID", "fileId") or str(record["id"])
    return LoanApplication(
        id=str(record["id"]),
        file_id=file_id,
        client_id=text(record, "Client", "Client ID", "clientId") or "",
        status=normalize_status(text(record, "Status", "status")),
        product_id=text(record, "Loan Product", "Product ID", "productId"),
        requested_amount=parse_decimal(
            pick(record, "Requested Loan Amount", "requestedLoanAmount")
        ),
        approved_amount=parse_decimal(pick(record, "Approved Loan Amount", "approvedLoanAmount")),
        disbursed_amount=parse_decimal(pick(record, "Disbursed Amount", "disbursedAmount")),
        assigned_nbfc=text(record, "Assigned NBFC", "assignedNBFC"),
        lender_decision_status=text(record, "Lender Decision Status", "lenderDecisionStatus"),
        lender_decision_remarks=text(record, "Lender Decision Remarks", "lenderDecisionRemarks"),
        lender_decision_date=parse_date(pick(record, "Lender Decision Date", "lenderDecisionDate")),
        created_at=parse_datetime(pick(record, "Creation Date", "creationDate", "createdTime")),
        last_updated=parse_datetime(pick(record, "Last Updated", "lastUpdated")),
        raw=dict(record),
    )


def application_to_record(application: LoanApplication) -> dict[str, Any]:
    record = {k: v for k, v in application.raw.items() if k != "createdTime"}
    record.update(
        {
            "id": application.id,
            "File ID": application.file_id,
            "Client": application.client_id,
            "Status": application.status,
            "Loan Product": application.product_id or "",
            "Requested Loan Amount": format_decimal(application.requested_amount),
            "Approved Loan Amount": format_decimal(application.approved_amount),
            "Disbursed Amount": format_decimal(application.disbursed_amount),
            "Assigned NBFC": application.assigned_nbfc or "",
            "Lender Decision Status": application.lender_decision_status or "",
            "Lender Decision Remarks": application.lender_decision_remarks or "",
            "Lender Decision Date": format_datetime(application.lender_decision_date),
            "Last Updated": format_datetime(application.last_updated),
        }
    )
    if application.created_at is not None:
        record["Creation Date"] = format_datetime(application.created_at)
    return record


# ---------------------------------------------------------------------------
# Status history
# ---------------------------------------------------------------------------


def history_from_record(record: dict[str, Any]) -> StatusHistoryEntry | None:
    """Return None for rows too broken to order (no file or no timestamp)."""
    file_id = text(record, "File", "File ID", "fileId")
    changed_at = parse_datetime(pick(record, "Changed At", "changedAt", "Timestamp"))
    if not file_id or changed_at is None:
        return None
    return StatusHistoryEntry(
        id=str(record.get("id")) if record.get("id") else None,
        file_id=file_id,
        from_status=normalize_status(text(record, "From Status", "fromStatus")),
        to_status=normalize_status(text(record, "To Status", "toStatus")),
        changed_by=text(record, "Changed By", "changedBy") or "",
        changed_at=changed_at,
        reason=text(record, "Reason", "reason"),
    )


def history_to_record(entry: StatusHistoryEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "History Entry ID": entry.id,
        "File": entry.file_id,
        "From Status": entry.from_status,
        "To Status": entry.to_status,
        "Changed By": entry.changed_by,
        "Changed At": format_datetime(entry.changed_at),
        "Reason": entry.reason or "",
    }


# ---------------------------------------------------------------------------
# Commission ledger
# ---------------------------------------------------------------------------


def _dispute_from_json(value: Any) -> DisputeRecord | None:
    if _is_empty(value):
        return None
    try:
        data = json.loads(value) if isinstance(value, str) else dict(value)
    except (TypeError, ValueError):
        logger.warning("record_store.unparseable_dispute", value=str(value))
        return None
    raised_at = parse_datetime(data.get("raisedAt"))
    if raised_at is None:
        return None
    return DisputeRecord(
        reason=str(data.get("reason") or ""),
        raised_by=str(data.get("raisedBy") or ""),
        raised_at=raised_at,
        resolved_by=data.get("resolvedBy"),
        resolved_at=parse_datetime(data.get("resolvedAt")),
        resolution_notes=data.get("resolutionNotes"),
        adjusted_amount=parse_decimal(data.get("adjustedAmount")),
    )


def _dispute_to_json(dispute: DisputeRecord | None) -> str:
    if dispute is None:
        return ""
    return json.dumps(
        {
            "reason": dispute.reason,
            "raisedBy": dispute.raised_by,
            "raisedAt": format_datetime(dispute.raised_at),
            "resolvedBy": dispute.resolved_by,
            "resolvedAt": format_datetime(dispute.resolved_at) or None,
            "resolutionNotes": dispute.resolution_notes,
            "adjustedAmount": format_decimal(dispute.adjusted_amount) or None,
        }
    )


def ledger_entry_from_record(record: dict[str, Any]) -> CommissionLedgerEntry:
    entry_id = text(record, "Ledger Entry ID", "ledgerEntryId") or str(record["id"])
    amount = parse_decimal(pick(record, "Payout Amount", "payoutAmount")) or Decimal(0)

    entry_type_raw = (text(record, "Entry Type", "entryType") or "").casefold()
    if entry_type_raw == "payin":
        entry_type = EntryType.PAYIN
    elif entry_type_raw == "payout":
        entry_type = EntryType.PAYOUT
    else:
        entry_type = EntryType.PAYOUT if amount >= 0 else EntryType.PAYIN

    dispute_raw = (text(record, "Dispute Status", "disputeStatus") or "").casefold()
    payout_raw = (text(record, "Payout Request", "payoutRequest") or "").casefold()
    state_raw = (text(record, "Ledger State", "ledgerState") or "").casefold()

    return CommissionLedgerEntry(
        id=entry_id,
        client_id=text(record, "Client", "Client ID", "clientId") or "",
        loan_file_id=text(record, "Loan File", "loanFileId", "File ID"),
        date=parse_date(pick(record, "Date", "date", "createdTime")) or date.today(),
        payout_amount=amount,
        entry_type=entry_type,
        description=text(record, "Description", "description") or "",
        disbursed_amount=parse_decimal(pick(record, "Disbursed Amount", "disbursedAmount")),
        commission_rate=parse_decimal(pick(record, "Commission Rate", "commissionRate")),
        dispute_status=DISPUTE_STATUS_FROM_WIRE.get(dispute_raw, DisputeStatus.NONE),
        payout_request_status=PAYOUT_REQUEST_FROM_WIRE.get(payout_raw, PayoutRequestStatus.NONE),
        dispute=_dispute_from_json(pick(record, "Dispute Details", "disputeDetails")),
        # Rows written before saga states existed are settled entries.
        ledger_state=LedgerEntryState(state_raw)
        if state_raw in {s.value for s in LedgerEntryState}
        else LedgerEntryState.CONFIRMED,
        idempotency_key=text(record, "Idempotency Key", "idempotencyKey"),
        raw=dict(record),
    )


def ledger_entry_to_record(entry: CommissionLedgerEntry) -> dict[str, Any]:
    record = {k: v for k, v in entry.raw.items() if k != "createdTime"}
    record.update(
        {
            "id": entry.raw.get("id", entry.id),
            "Ledger Entry ID": entry.id,
            "Client": entry.client_id,
            "Loan File": entry.loan_file_id or "",
            "Date": entry.date.isoformat(),
            "Disbursed Amount": format_decimal(entry.disbursed_amount),
            "Commission Rate": format_decimal(entry.commission_rate),
            "Payout Amount": format_decimal(entry.payout_amount),
            "Entry Type": entry.entry_type.value,
            "Description": entry.description,
            "Dispute Status": DISPUTE_STATUS_TO_WIRE[entry.dispute_status],
            "Dispute Details": _dispute_to_json(entry.dispute),
            "Payout Request": PAYOUT_REQUEST_TO_WIRE[entry.payout_request_status],
            "Ledger State": entry.ledger_state.value,
            "Idempotency Key": entry.idempotency_key or "",
        }
    )
    return record


# ---------------------------------------------------------------------------
# Clients, audit log, notifications
# ---------------------------------------------------------------------------


def client_matches(record: dict[str, Any], client_id: str) -> bool:
    return client_id in (record.get("id"), text(record, "Client ID", "clientId"))


def client_ids(record: dict[str, Any]) -> set[str]:
    ids = {str(record["id"])} if record.get("id") else set()
    client_id = text(record, "Client ID", "clientId")
    if client_id:
        ids.add(client_id)
    return ids


def client_assigned_kam(record: dict[str, Any]) -> str | None:
    return text(record, "Assigned KAM", "Assigned KAM ID", "KAM ID", "KAM", "assignedKAM")


def client_commission_rate(record: dict[str, Any]) -> Decimal | None:
    return parse_decimal(pick(record, "Commission Rate", "commissionRate"))


def client_contact_email(record: dict[str, Any]) -> str | None:
    """Email half of the combined "email / phone" contact column."""
    contact = text(record, "Contact Email / Phone", "contactEmailPhone", "Email", "email")
    if not contact:
        return None
    email = contact.split(" / ")[0].strip()
    return email if "@" in email else None


def audit_record(
    log_id: str,
    actor: str,
    file_id: str,
    action_type: str,
    message: str,
    target_role: str,
    resolved: bool,
    timestamp: datetime,
) -> dict[str, Any]:
    return {
        "id": log_id,
        "Log Entry ID": log_id,
        "File": file_id,
        "Timestamp": format_datetime(timestamp),
        "Actor": actor,
        "Action/Event Type": action_type,
        "Details/Message": message,
        "Target User/Role": target_role,
        "Resolved": format_bool(resolved),
    }


def notification_record(
    notification_id: str,
    recipient: str,
    recipient_role: str,
    notification_type: str,
    title: str,
    message: str,
    created_at: datetime,
    related_file: str = "",
    related_client: str = "",
    related_ledger_entry: str = "",
) -> dict[str, Any]:
    return {
        "id": notification_id,
        "Notification ID": notification_id,
        "Recipient User": recipient,
        "Recipient Role": recipient_role,
        "Related File": related_file,
        "Related Client": related_client,
        "Related Ledger Entry": related_ledger_entry,
        "Notification Type": notification_type,
        "Title": title,
        "Message": message,
        "Channel": "in_app",
        "Is Read": "False",
        "Created At": format_datetime(created_at),
        "Read At": "",
        "Action Link": "",
    }
