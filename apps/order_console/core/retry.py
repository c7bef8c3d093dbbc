"""Retry utilities for async calls to the order service."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

logger = logging.getLogger(__name__)

# PUT replaces the whole order content, so replaying it is safe.
IDEMPOTENT_METHODS = {"GET", "HEAD", "PUT"}

_T = TypeVar("_T")


def with_retry(
    max_attempts: int = 3,
    backoff_base: float = 0.5,
    method: str = "GET",
) -> Callable[[Callable[..., Awaitable[_T]]], Callable[..., Awaitable[_T]]]:
    """Return an idempotency-aware async retry decorator.

    - Idempotent methods (GET, HEAD, PUT): retry on transport errors and 5xx.
    - Non-idempotent methods (POST, PATCH, DELETE): retry on transport errors only.
    - Never retry on 4xx.

    Backoff doubles on each attempt: ``backoff_base * 2**attempt``.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    method_upper = method.upper()

    def decorator(func: Callable[..., Awaitable[_T]]) -> Callable[..., Awaitable[_T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> _T:
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except httpx.TransportError as exc:
                    if attempt == max_attempts - 1:
                        raise
                    _log_retry(func, attempt, str(exc))
                    await asyncio.sleep(backoff_base * (2**attempt))
                except httpx.HTTPStatusError as exc:
                    status_code = exc.response.status_code
                    if status_code >= 500 and method_upper in IDEMPOTENT_METHODS:
                        if attempt == max_attempts - 1:
                            raise
                        _log_retry(func, attempt, f"HTTP {status_code}")
                        await asyncio.sleep(backoff_base * (2**attempt))
                    else:
                        raise

            raise RuntimeError("Retry exhausted")

        return wrapper

    return decorator


def _log_retry(func: Callable[..., Any], attempt: int, error: str) -> None:
    logger.warning(
        "order_service_call_retry",
        extra={"operation": func.__name__, "attempt": attempt + 1, "error": error},
    )


__all__ = ["IDEMPOTENT_METHODS", "with_retry"]
