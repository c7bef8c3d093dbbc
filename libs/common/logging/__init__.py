"""Structured JSON logging with per-session correlation.

Usage:
    from libs.common.logging import configure_logging, SessionContext

    configure_logging(service_name="order_console", log_level="INFO")
    with SessionContext(session_id):
        ...  # every record emitted here carries session_id
"""

from libs.common.logging.config import SessionIdFilter, configure_logging, get_logger
from libs.common.logging.context import (
    SessionContext,
    clear_session_id,
    generate_session_id,
    get_session_id,
    set_session_id,
)
from libs.common.logging.formatter import JSONFormatter

__all__ = [
    "configure_logging",
    "get_logger",
    "SessionIdFilter",
    "generate_session_id",
    "get_session_id",
    "set_session_id",
    "clear_session_id",
    "SessionContext",
    "JSONFormatter",
]
