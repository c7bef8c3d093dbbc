"""Scheduled and manual synchronization with the DMS.

Scheduled runs are silent on failure and only announce runs that actually
synchronized something. Manual runs always report their outcome. Any
successful run invalidates the order cache. Concurrent runs are not
deduplicated.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import ValidationError

from apps.order_console import config
from apps.order_console.core.client import AsyncOrderServiceClient, as_network_failure
from apps.order_console.core.notification_router import (
    NotificationRouter,
    notify_error,
    notify_info,
    notify_success,
)
from libs.common.exceptions import PrivilegedOperationDenied
from libs.orders.models import Actor, DmsSyncResult

logger = logging.getLogger(__name__)

_SYNC_ERRORS = (httpx.HTTPError, ValueError, ValidationError)

NO_CHANGES_MESSAGE = "Aucune nouvelle synchronisation détectée"
SYNC_FAILED_MESSAGE = "Erreur lors de la synchronisation"


def scheduled_success_message(synced: int) -> str:
    return f"{synced} commande(s) synchronisée(s) avec le DMS"


class DmsSyncScheduler:
    """Background DMS reconciliation for operator sessions."""

    def __init__(
        self,
        actor: Actor,
        notifier: NotificationRouter,
        on_synced: Callable[[], Any],
        *,
        client: AsyncOrderServiceClient | None = None,
        interval_minutes: float | None = None,
        initial_delay_seconds: float | None = None,
    ) -> None:
        self.actor = actor
        self._notifier = notifier
        self._on_synced = on_synced
        self._client = client or AsyncOrderServiceClient.get()
        self.interval_minutes = (
            config.DMS_SYNC_INTERVAL_MINUTES if interval_minutes is None else interval_minutes
        )
        self.initial_delay_seconds = (
            config.DMS_SYNC_INITIAL_DELAY_SECONDS
            if initial_delay_seconds is None
            else initial_delay_seconds
        )
        self._task: asyncio.Task[None] | None = None

    @property
    def enabled(self) -> bool:
        return self.actor.is_operator and self.interval_minutes > 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None] | None:
        """Start the background loop; returns ``None`` when scheduling is disabled."""
        if not self.enabled:
            logger.debug(
                "dms_sync_schedule_disabled",
                extra={"interval_minutes": self.interval_minutes, "role": self.actor.role.value},
            )
            return None
        if not self.running:
            self._task = asyncio.create_task(self._loop())
            logger.info(
                "dms_sync_schedule_started",
                extra={"interval_minutes": self.interval_minutes},
            )
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        await asyncio.sleep(self.initial_delay_seconds)
        while True:
            try:
                await self.run_scheduled()
            except Exception:
                logger.exception("dms_sync_loop_error")
            await asyncio.sleep(self.interval_minutes * 60)

    async def run_scheduled(self) -> DmsSyncResult | None:
        """One background run. Failures are logged, never surfaced."""
        try:
            result = await self._sync()
        except _SYNC_ERRORS as exc:
            logger.warning("dms_sync_failed", extra={"trigger": "scheduled", "error": str(exc)})
            return None
        if result.synced > 0:
            notify_success(self._notifier, scheduled_success_message(result.synced))
        return result

    async def sync_now(self) -> DmsSyncResult | None:
        """Manual run; the outcome is always reported to the user.

        Raises:
            PrivilegedOperationDenied: For non-operator roles, before any call.
        """
        if not self.actor.is_operator:
            raise PrivilegedOperationDenied("sync_dms_orders", self.actor.role.value)
        try:
            result = await self._sync()
        except _SYNC_ERRORS as exc:
            logger.warning("dms_sync_failed", extra={"trigger": "manual", "error": str(exc)})
            failure = as_network_failure(exc, "sync_dms_orders", SYNC_FAILED_MESSAGE)
            notify_error(self._notifier, str(failure))
            return None
        if result.synced > 0:
            notify_success(self._notifier, result.message or scheduled_success_message(result.synced))
        else:
            notify_info(self._notifier, result.message or NO_CHANGES_MESSAGE)
        return result

    async def _sync(self) -> DmsSyncResult:
        result = await self._client.sync_dms_orders(self.actor.user_id, self.actor.role.value)
        logger.info(
            "dms_sync_completed",
            extra={"synced": result.synced, "errors": len(result.errors)},
        )
        outcome = self._on_synced()
        if asyncio.iscoroutine(outcome):
            await outcome
        return result


__all__ = [
    "DmsSyncScheduler",
    "NO_CHANGES_MESSAGE",
    "SYNC_FAILED_MESSAGE",
    "scheduled_success_message",
]
