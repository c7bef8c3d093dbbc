"""Console session wiring.

A session owns, for one actor: the realtime edit-lock channel, the order list
coordinator with its refetch timer, and (operators only) the DMS scheduler.
Teardown goes through ``ClientLifecycleManager`` so that every timer is
cancelled and the channel is unregistered.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from types import TracebackType

from apps.order_console import config
from apps.order_console.core.client import AsyncOrderServiceClient
from apps.order_console.core.client_lifecycle import ClientLifecycleManager
from apps.order_console.core.dms_sync import DmsSyncScheduler
from apps.order_console.core.editing_channel import EditingLockChannel
from apps.order_console.core.notification_router import NotificationRouter
from apps.order_console.core.order_list import OrderListCoordinator
from apps.order_console.core.redis_store import RedisStore
from libs.common.logging import clear_session_id, set_session_id
from libs.orders.cooldown import ValidationCooldownGate
from libs.orders.lock_store import EditingLockStore
from libs.orders.models import Actor

logger = logging.getLogger(__name__)


class OrderConsoleSession:
    """All per-actor state of one console session."""

    def __init__(
        self,
        actor: Actor,
        *,
        client: AsyncOrderServiceClient | None = None,
        redis_store: RedisStore | None = None,
        lifecycle: ClientLifecycleManager | None = None,
        notifier: NotificationRouter | None = None,
    ) -> None:
        self.actor = actor
        self.lifecycle = lifecycle or ClientLifecycleManager.get()
        self.session_id = self.lifecycle.generate_session_id()
        self.notifier = notifier or NotificationRouter()
        client = client or AsyncOrderServiceClient.get()

        self.channel = EditingLockChannel(
            actor,
            client=client,
            redis_store=redis_store,
            lock_store=EditingLockStore(config.EDITING_LOCK_TIMEOUT_SECONDS),
            session_id=self.session_id,
        )
        self.orders = OrderListCoordinator(
            actor,
            self.channel,
            self.notifier,
            client=client,
            gate=ValidationCooldownGate(config.VALIDATION_COOLDOWN_SECONDS),
            default_tva_rate=Decimal(config.DEFAULT_TVA_RATE),
        )
        self.dms_scheduler: DmsSyncScheduler | None = None
        if actor.is_operator:
            self.dms_scheduler = DmsSyncScheduler(
                actor, self.notifier, self.orders.invalidate, client=client
            )
            self.orders.dms_scheduler = self.dms_scheduler
        self._started = False

    async def start(self) -> None:
        """Connect the channel, load the list and start every timer."""
        if self._started:
            return
        self._started = True
        set_session_id(self.session_id)
        await self.lifecycle.register_session(self.session_id)

        # The channel cancels its own listener on close, after unregistering.
        await self.channel.connect()
        await self.lifecycle.register_cleanup_callback(
            self.session_id, self.channel.close, owner_key="editing_channel"
        )
        await self.lifecycle.register_cleanup_callback(
            self.session_id, self.orders.close, owner_key="order_list"
        )

        await self.orders.refresh()
        await self.lifecycle.register_task(self.session_id, self.orders.start_polling())

        if self.dms_scheduler is not None:
            task = self.dms_scheduler.start()
            if task is not None:
                await self.lifecycle.register_task(self.session_id, task)

        logger.info(
            "order_console_session_started",
            extra={
                "user_id": self.actor.user_id,
                "role": self.actor.role.value,
                "orders": len(self.orders.orders),
            },
        )

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.lifecycle.cleanup_session(self.session_id)
        logger.info("order_console_session_stopped", extra={"user_id": self.actor.user_id})
        clear_session_id()

    async def __aenter__(self) -> OrderConsoleSession:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()


__all__ = ["OrderConsoleSession"]
