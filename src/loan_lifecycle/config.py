"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup; a malformed value fails fast with a clear error message.

Usage:
    from loan_lifecycle.config import get_settings
    settings = get_settings()
    print(settings.record_store_base_url)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

APP_VERSION = "0.1.0"


class Settings(BaseSettings):
    """Central configuration for the loan lifecycle service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Record store (n8n-style webhooks in front of the tables) ---
    record_store_base_url: str = "http://localhost:5678/webhook"
    record_store_timeout_seconds: float = 10.0
    record_store_max_retries: int = 3

    # Table name -> webhook path. GET paths search a table, POST paths upsert one record.
    loan_applications_get_path: str = "loanapplication"
    loan_applications_post_path: str = "loanapplications"
    commission_ledger_get_path: str = "commisionledger"
    commission_ledger_post_path: str = "COMISSIONLEDGER"
    status_history_get_path: str = "statushistory"
    status_history_post_path: str = "STATUSHISTORY"
    file_audit_log_post_path: str = "Fileauditinglog"
    clients_get_path: str = "client"
    notifications_post_path: str = "notification"

    # --- Request handling ---
    # Upper bound for one lifecycle operation, including all webhook round trips.
    operation_deadline_seconds: float = 45.0

    # --- Commission ---
    # Percentage applied when the client record carries no rate of its own.
    default_commission_rate: Decimal = Decimal("1.5")

    # --- Redis (disbursement idempotency guard) ---
    idempotency_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    def webhook_url(self, path: str) -> str:
        """Join a webhook path onto the record store base URL."""
        return f"{self.record_store_base_url.rstrip('/')}/{path.lstrip('/')}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
