"""Logging setup shared by every entry point.

Example:
    >>> from libs.common.logging import configure_logging
    >>> logger = configure_logging(service_name="order_console", log_level="INFO")
    >>> logger.info("console_started", extra={"user_id": "u-1"})
"""

import logging
import sys

from libs.common.logging.context import get_session_id
from libs.common.logging.formatter import JSONFormatter


class SessionIdFilter(logging.Filter):
    """Stamp each record with the session id of the emitting context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = get_session_id()
        return True


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    include_context: bool = True,
) -> logging.Logger:
    """Install JSON logging on the root logger.

    Call once at startup. Existing root handlers are removed so repeated calls
    (tests, reloads) do not duplicate output.

    Args:
        service_name: Value of the ``service`` field in every log line
        log_level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_context: Whether structured ``extra`` fields are emitted

    Returns:
        The configured root logger

    Raises:
        ValueError: If log_level is not a known level name
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter(service_name=service_name, include_context=include_context))
    handler.addFilter(SessionIdFilter())
    root_logger.addHandler(handler)

    return root_logger


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name)
