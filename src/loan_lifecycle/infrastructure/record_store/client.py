"""Webhook client for the external record store.

Every table sits behind two webhooks: a GET that searches the table and a
POST that upserts one record. The GET responses come back in whatever shape
the automation happened to produce, so ``parse_records`` flattens them into
one list of dicts before anything else looks at them.

Transient failures (network errors, 5xx, 429) are retried with tenacity.
Everything that still fails surfaces as RecordStoreError.

Usage:
    client = RecordStoreClient(settings)
    rows = await client.fetch_table(settings.commission_ledger_get_path)
    await client.post_record(settings.commission_ledger_post_path, {"id": "LEDGER-1", ...})
    await client.aclose()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from loan_lifecycle.domain.exceptions import RecordStoreError
from loan_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    from loan_lifecycle.config import Settings

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


def _flatten(record: Any) -> dict[str, Any] | None:
    """Flatten one record; Airtable-style ``fields`` are lifted to the top level.

    Records carrying nothing but ``id``/``createdTime`` are dropped.
    """
    if not isinstance(record, dict) or "id" not in record:
        return None
    payload_keys = [k for k in record if k not in ("id", "createdTime")]
    if not payload_keys:
        return None

    fields = record.get("fields")
    if isinstance(fields, dict):
        flat = {"id": record["id"], **fields}
    else:
        flat = dict(record)
    if record.get("createdTime") is not None:
        flat["createdTime"] = record["createdTime"]
    return flat


def parse_records(payload: Any) -> list[dict[str, Any]]:
    """Normalize a GET webhook response into a list of flat records.

    Accepted shapes:
        [record, ...]
        {"records": [record, ...]}
        {"data": [record, ...]}
        {"<table name>": [record, ...]}   (first non-empty list wins)
        record                            (a single object)
    """
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        if isinstance(payload.get("records"), list):
            items = payload["records"]
        elif isinstance(payload.get("data"), list):
            items = payload["data"]
        else:
            lists = [v for v in payload.values() if isinstance(v, list) and v]
            items = lists[0] if lists else [payload]
    else:
        return []

    records = []
    for item in items:
        flat = _flatten(item)
        if flat is not None:
            records.append(flat)
    return records


class RecordStoreClient:
    """Async HTTP client for the record-store webhooks."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._max_attempts = max(1, settings.record_store_max_retries)
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.record_store_timeout_seconds,
            follow_redirects=True,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_table(self, path: str) -> list[dict[str, Any]]:
        """GET a table's search webhook and return its flattened records."""
        url = self._settings.webhook_url(path)
        response = await self._send("GET", url)
        try:
            payload = response.json()
        except ValueError as err:
            raise RecordStoreError(
                f"Record store returned non-JSON for {path}",
                status_code=response.status_code,
            ) from err

        records = parse_records(payload)
        logger.debug("record_store.fetched", path=path, count=len(records))
        return records

    async def post_record(self, path: str, record: dict[str, Any]) -> Any:
        """POST one record to a table's upsert webhook.

        Returns the decoded JSON body, or None when the webhook answers with
        an empty or non-JSON body (some automations reply with plain text).
        """
        url = self._settings.webhook_url(path)
        response = await self._send("POST", url, json=record)
        logger.debug("record_store.posted", path=path, record_id=record.get("id"))
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def ping(self, path: str) -> bool:
        """Single unretried GET used by the health check."""
        response = await self._http.get(self._settings.webhook_url(path))
        return response.status_code < 500

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=1, min=2, max=8),
                retry=retry_if_exception(_is_transient),
                reraise=True,
            ):
                with attempt:
                    response = await self._http.request(method, url, **kwargs)
                    response.raise_for_status()
        except httpx.HTTPStatusError as err:
            status = err.response.status_code
            logger.error("record_store.http_error", method=method, url=url, status=status)
            raise RecordStoreError(
                f"Record store {method} {url} failed with status {status}",
                status_code=status,
            ) from err
        except httpx.HTTPError as err:
            logger.error("record_store.unreachable", method=method, url=url, error=str(err))
            raise RecordStoreError(f"Record store {method} {url} failed: {err}") from err
        return response
