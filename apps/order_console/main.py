"""Order console entrypoint.

Runs one console session for the configured identity until SIGINT/SIGTERM,
logging order list changes and notifications. In production the identity
comes from the command line; the DEV_* fallbacks apply only in debug mode.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any

from pydantic import ValidationError
from redis.exceptions import RedisError

from apps.order_console import config
from apps.order_console.core.client import AsyncOrderServiceClient
from apps.order_console.core.notification_router import (
    Notification,
    NotificationRouter,
    NotificationType,
)
from apps.order_console.core.redis_store import get_redis_store
from apps.order_console.session import OrderConsoleSession
from libs.common.exceptions import ConfigurationError
from libs.common.logging import configure_logging
from libs.orders.models import Actor

logger = logging.getLogger(__name__)


def build_actor(argv: list[str] | None = None) -> Actor:
    """Resolve the console identity from arguments, or DEV_* in debug mode.

    Raises:
        ConfigurationError: If no identity is given outside debug mode, or it
            is invalid.
    """
    parser = argparse.ArgumentParser(prog="order-console")
    parser.add_argument("--user-id", default=None)
    parser.add_argument("--role", default=None)
    parser.add_argument("--company", default=None)
    parser.add_argument("--name", default="")
    args = parser.parse_args(argv)

    user_id, role, company = args.user_id, args.role, args.company
    if config.DEBUG:
        user_id = user_id or config.DEV_USER_ID
        role = role or config.DEV_ROLE
        company = company or config.DEV_COMPANY_NAME
    if not user_id or not role:
        raise ConfigurationError("--user-id and --role are required outside debug mode")
    try:
        return Actor(user_id=user_id, role=role, full_name=args.name, company_name=company)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid console identity: {exc}") from exc


def session_summary(notifier: NotificationRouter) -> dict[str, Any]:
    """Counts logged when a session ends."""
    history = notifier.get_history()
    return {
        "notifications": len(history),
        "failures": sum(1 for n in history if n.type == NotificationType.NEGATIVE),
        "unread": notifier.unread_count,
    }


async def startup() -> None:
    await AsyncOrderServiceClient.get().startup()


async def shutdown() -> None:
    await AsyncOrderServiceClient.get().shutdown()
    try:
        await get_redis_store().close()
    except (OSError, ConnectionError, RedisError) as e:
        logger.warning("Failed to close Redis connection during shutdown: %s", e)


async def run(actor: Actor) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await startup()
    try:
        session = OrderConsoleSession(actor)

        def _log_notification(notification: Notification) -> None:
            logger.info(
                "console_notification",
                extra={"type": notification.type.value, "text": notification.message},
            )

        session.notifier.set_callbacks(on_toast=_log_notification)
        session.orders.on_change(
            lambda: logger.debug(
                "order_list_changed", extra={"counts": session.orders.tab_counts()}
            )
        )
        async with session:
            await stop.wait()
        logger.info("order_console_session_summary", extra=session_summary(session.notifier))
    finally:
        await shutdown()


def main(argv: list[str] | None = None) -> int:
    configure_logging("order_console", config.LOG_LEVEL)
    try:
        actor = build_actor(argv)
    except ConfigurationError as exc:
        logger.error("order_console_startup_failed", extra={"reason": str(exc)})
        return 2
    asyncio.run(run(actor))
    return 0


if __name__ == "__main__":
    sys.exit(main())
