"""Order console configuration.

Module-level constants read from the environment once, at import time.
Invalid values raise ``ValueError`` immediately so a misconfigured console
never starts.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _int_env(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {value}")
    return value


# =============================================================================
# General
# =============================================================================

DEBUG = os.getenv("ORDER_CONSOLE_DEBUG", "false").lower() in _TRUE_VALUES
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()

# =============================================================================
# Backend endpoints
# =============================================================================

ORDER_SERVICE_URL = os.getenv("ORDER_SERVICE_URL", "http://localhost:3001/api")
HTTP_TIMEOUT_SECONDS = _float_env("HTTP_TIMEOUT_SECONDS", 10.0)

# Shared secret for HMAC-signed identity headers. Empty disables signing.
INTERNAL_TOKEN_SECRET = os.getenv("INTERNAL_TOKEN_SECRET", "").strip()

# =============================================================================
# Redis (realtime channel)
# =============================================================================

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# =============================================================================
# Order lifecycle
# =============================================================================

VALIDATION_COOLDOWN_SECONDS = _int_env("VALIDATION_COOLDOWN_SECONDS", 30, minimum=0)
EDITING_LOCK_TIMEOUT_SECONDS = _int_env("EDITING_LOCK_TIMEOUT_SECONDS", 60, minimum=1)
ORDER_LIST_REFRESH_SECONDS = _int_env("ORDER_LIST_REFRESH_SECONDS", 5, minimum=1)
DEFAULT_TVA_RATE = _int_env("DEFAULT_TVA_RATE", 20, minimum=0)

# 0 (or less) disables the scheduled DMS sync; manual sync stays available.
DMS_SYNC_INTERVAL_MINUTES = _int_env("DMS_SYNC_INTERVAL_MINUTES", 0)
DMS_SYNC_INITIAL_DELAY_SECONDS = _int_env("DMS_SYNC_INITIAL_DELAY_SECONDS", 2, minimum=0)

# =============================================================================
# Dev identity (honoured only when DEBUG is on)
# =============================================================================

DEV_USER_ID = os.getenv("DEV_USER_ID", "dev-operator")
DEV_ROLE = os.getenv("DEV_ROLE", "SYSTEM_ADMIN")
DEV_COMPANY_NAME = os.getenv("DEV_COMPANY_NAME", "") or None

if DEBUG and INTERNAL_TOKEN_SECRET:
    logger.warning(
        "order_console_debug_with_signing_secret",
        extra={"note": "DEV_* identity fallbacks will be signed"},
    )
