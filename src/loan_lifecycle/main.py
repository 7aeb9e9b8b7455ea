"""FastAPI application entry point for the loan lifecycle service.

Lifecycle:
    1. Startup: Initialize logging, open the record-store client, connect
       Redis when the idempotency guard is enabled.
    2. Running: Serve the REST API at /api/v1/*.
    3. Shutdown: Let in-flight notifications finish, close the HTTP client
       and Redis.

Run with:
    uv run uvicorn loan_lifecycle.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from redis.exceptions import RedisError

from loan_lifecycle.config import APP_VERSION, get_settings
from loan_lifecycle.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Record store client
    from loan_lifecycle.infrastructure.record_store.client import RecordStoreClient
    from loan_lifecycle.services.notifications import NotificationRelay

    app.state.record_store = RecordStoreClient(settings)
    app.state.notification_relay = NotificationRelay()

    # 3. Initialize Redis (idempotency guard)
    from loan_lifecycle.infrastructure.redis_client import (
        IdempotencyGuard,
        close_redis,
        init_redis,
    )

    app.state.redis = None
    app.state.idempotency_guard = None
    if settings.idempotency_enabled:
        try:
            app.state.redis = await init_redis()
            app.state.idempotency_guard = IdempotencyGuard(
                app.state.redis, settings.redis_idempotency_ttl_seconds
            )
        except (RedisError, OSError) as exc:
            logger.warning("app.redis_unavailable", error=str(exc))

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await app.state.notification_relay.drain()
    await app.state.record_store.aclose()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Loan Lifecycle Service",
        description=(
            "Role-gated loan application lifecycle, status history, "
            "commission ledger, disputes and payouts."
        ),
        version=APP_VERSION,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from loan_lifecycle.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from loan_lifecycle.api.routes.applications import router as applications_router
    from loan_lifecycle.api.routes.health import router as health_router
    from loan_lifecycle.api.routes.ledger import router as ledger_router

    app.include_router(health_router)
    app.include_router(applications_router)
    app.include_router(ledger_router)

    return app


# The app instance used by Uvicorn
app = create_app()
