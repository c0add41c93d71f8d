"""Structured logging setup.

Every module logs through ``structlog.get_logger(__name__)`` with keyword
fields. Request-scoped fields (request id, issuer) are bound with
``structlog.contextvars`` by the API middleware and merged into every line.
"""

import logging
import os

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON = os.getenv("LOG_JSON", "true").lower() == "true"


def configure_logging(level: str = LOG_LEVEL, json: bool = LOG_JSON) -> None:
    """Configure structlog once at process start."""
    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
