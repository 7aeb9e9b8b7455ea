"""structlog setup for the loan lifecycle service.

Each request binds ``request_id`` (RequestIDMiddleware) and the caller's
``actor``/``role`` (``bind_caller``) into the context, so a status change,
its history row, its audit row and any ledger writes all log under the same
keys. Money fields are Decimal in the domain; ``_decimals_as_text`` renders
them as plain strings so JSON output never carries floats or reprs.

Usage:
    from loan_lifecycle.logging_config import setup_logging, get_logger
    setup_logging(log_level="INFO", json_logs=True)
    logger = get_logger(__name__)
    logger.info("loan.transitioned", file_id="SF-001", to_status="under_kam_review")
"""

from __future__ import annotations

import logging
import sys
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from loan_lifecycle.domain.models import CallerIdentity

# Loggers that would otherwise log every record store round trip.
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def _decimals_as_text(
    _logger: Any, _method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = format(value, "f")
    return event_dict


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        log_level: Standard level name (DEBUG, INFO, WARNING, ...).
        json_logs: JSON lines when True, colored console output otherwise.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _decimals_as_text,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_caller(caller: CallerIdentity) -> None:
    """Attach the caller to every log line for the rest of the request."""
    structlog.contextvars.bind_contextvars(
        actor=caller.email,
        role=caller.role.value,
        client_id=caller.client_id,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
