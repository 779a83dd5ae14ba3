"""Structlog configuration for the notifier context.

Usage:
    from notifier.utils.logging import configure_logging

    configure_logging()                      # development console output
    configure_logging(is_production=True)    # JSON lines
"""

import logging
import os
import sys

import structlog


def _is_test_environment() -> bool:
    return "pytest" in sys.modules


def configure_logging(log_level: str | None = None, is_production: bool | None = None) -> None:
    """Configure structlog processors and the stdlib root logger.

    Output is suppressed under pytest; tests that assert on log events use
    ``structlog.testing.capture_logs`` which bypasses this configuration.
    """
    if _is_test_environment():
        logging.basicConfig(format="%(message)s", level=logging.CRITICAL + 1, force=True)
        structlog.configure(
            processors=[structlog.stdlib.add_log_level, structlog.processors.KeyValueRenderer()],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=False,
        )
        return

    level_name = (log_level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    if is_production is None:
        is_production = os.environ.get("PROTEAN_ENV", "development") == "production"

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if is_production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    logging.basicConfig(format="%(message)s", level=level, stream=sys.stdout, force=True)
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None):
    return structlog.get_logger(name)
