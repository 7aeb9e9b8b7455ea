"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware: injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware: catches domain exceptions -> structured JSON errors
    3. CORSMiddleware: handles the browser portal
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from loan_lifecycle.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    DisputeStateError,
    DuplicateOperationError,
    LoanLifecycleError,
    NotFoundError,
    PayoutStateError,
    RecordStoreError,
    TransitionError,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind to structlog context for all log entries in this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------

# Most specific first; LoanLifecycleError catches anything not listed.
ERROR_STATUS_CODES: list[tuple[type[LoanLifecycleError], int]] = [
    (NotFoundError, 404),
    (ValidationError, 422),
    (AuthorizationError, 403),
    (TransitionError, 409),
    (DisputeStateError, 409),
    (PayoutStateError, 409),
    (ConflictError, 409),
    (DuplicateOperationError, 409),
    (RecordStoreError, 502),
]


def status_code_for(exc: LoanLifecycleError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 400


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except TransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current,
                attempted=exc.target,
                role=exc.role,
                reason_code=exc.reason_code,
            )
            return JSONResponse(
                status_code=409,
                content={"error": exc.code, "message": exc.message},
            )
        except RecordStoreError as exc:
            logger.error("record_store.error", error=exc.message, upstream_status=exc.status_code)
            return JSONResponse(
                status_code=502,
                content={"error": exc.code, "message": exc.message},
            )
        except LoanLifecycleError as exc:
            status_code = status_code_for(exc)
            logger.warning("domain.error", error=exc.message, code=exc.code, status=status_code)
            return JSONResponse(
                status_code=status_code,
                content={"error": exc.code, "message": exc.message},
            )
        except TimeoutError:
            logger.error("request.deadline_exceeded", path=request.url.path)
            return JSONResponse(
                status_code=504,
                content={
                    "error": "DEADLINE_EXCEEDED",
                    "message": "The operation did not complete in time",
                },
            )
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters: middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
