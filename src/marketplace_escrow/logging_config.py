"""Structured logging configuration using structlog.

JSON output outside development, colored console output while developing.
Every entry logged during an HTTP request carries the request_id bound by
the request-id middleware; money and identifiers may be passed as Decimal
and UUID values and are rendered as plain strings.

Usage:
    from marketplace_escrow.logging_config import setup_logging, get_logger
    setup_logging(log_level="DEBUG", json_logs=False)
    logger = get_logger(__name__)
    logger.info("escrow.designer_paid", request_id=request.id, amount=Decimal("920.00"))
"""

from __future__ import annotations

import enum
import logging
import sys
import uuid
from decimal import Decimal
from typing import Any

import structlog


def stringify_domain_values(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Render Decimal amounts, UUIDs and enum members as strings.

    JSONRenderer would otherwise fall back to repr() for Decimal and UUID,
    which makes amounts awkward to query in the log aggregator.
    """
    for key, value in event_dict.items():
        if isinstance(value, enum.Enum):
            event_dict[key] = str(value.value)
        elif isinstance(value, Decimal | uuid.UUID):
            event_dict[key] = str(value)
    return event_dict


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Configure structlog and route the stdlib root logger through it.

    Args:
        log_level: Standard Python log level string (DEBUG, INFO, WARNING, etc.)
        json_logs: If True, output JSON (for production). If False, colored console.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        stringify_domain_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Records emitted by third-party libraries through stdlib logging get the
    # same timestamp/level treatment via foreign_pre_chain.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    for noisy_logger in (
        "uvicorn.access",
        "sqlalchemy.engine",
        "aiosqlite",
        "httpx",
        "httpcore",
    ):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance bound to ``name``."""
    return structlog.get_logger(name)
