"""Realtime edit-lock channel over Redis Pub/Sub.

Inbound events are JSON ``{"event": ..., "data": {...}}`` published by the
order service on the role room (operators or clients) and on per-order
channels. Outbound ``register`` / ``subscribeToOrder`` /
``unsubscribeFromOrder`` / ``unregister`` go to the gateway channel.

Lock acquire and release are calls to the order service, which broadcasts the
new lock state back through this channel. The lock store is rebuilt from
events only: it is cleared whenever the connection drops and on close.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import httpx
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from apps.order_console.core.client import AsyncOrderServiceClient
from apps.order_console.core.redis_store import RedisStore, get_redis_store
from libs.orders.lock_store import EditingLockStore
from libs.orders.models import Actor, EditingStatus, OrderUpdateEvent

logger = logging.getLogger(__name__)

GATEWAY_CHANNEL = "orders:gateway"
OPERATORS_ROOM = "orders:room:operators"
CLIENTS_ROOM = "orders:room:clients"

EVENT_EDITING_STATUS_CHANGED = "orderEditingStatusChanged"
EVENT_ORDER_UPDATED = "orderUpdated"


def order_channel(order_id: str) -> str:
    """Channel carrying events for a single order."""
    return f"orders:order:{order_id}"


def room_channel(actor: Actor) -> str:
    return OPERATORS_ROOM if actor.is_operator else CLIENTS_ROOM


class EditingLockChannel:
    """
    Session-scoped realtime connection for one actor.

    Architecture:
    - One listener task per connection; events are applied in arrival order,
      so the last lock-acquired event received for an order wins
    - The listener polls every ``POLL_TIMEOUT`` seconds and stops as soon as
      the channel is closed, even mid-handshake
    - On connection loss: lock store cleared, reset listeners told, sleep
      ``RECONNECT_DELAY``, re-register and re-subscribe every tracked order
    - Listener callbacks never break the listener; failures are logged
    """

    RECONNECT_DELAY = 1.0
    POLL_TIMEOUT = 1.0
    CLOSE_TIMEOUT = 5.0

    def __init__(
        self,
        actor: Actor,
        *,
        client: AsyncOrderServiceClient | None = None,
        redis_store: RedisStore | None = None,
        lock_store: EditingLockStore | None = None,
        session_id: str | None = None,
    ) -> None:
        self.actor = actor
        self.session_id = session_id
        self.locks = lock_store or EditingLockStore()
        self._client = client or AsyncOrderServiceClient.get()
        self._redis_store = redis_store or get_redis_store()
        self._subscribed_orders: set[str] = set()
        self._held_locks: set[str] = set()
        self._lock_listeners: list[Callable[[EditingStatus], Any]] = []
        self._update_listeners: list[Callable[[OrderUpdateEvent], Any]] = []
        self._reset_listeners: list[Callable[[], Any]] = []
        self._pubsub: Any | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self._connected = asyncio.Event()
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    @property
    def subscribed_orders(self) -> frozenset[str]:
        return frozenset(self._subscribed_orders)

    @property
    def held_locks(self) -> frozenset[str]:
        return frozenset(self._held_locks)

    def on_lock_change(self, callback: Callable[[EditingStatus], Any]) -> None:
        self._lock_listeners.append(callback)

    def on_order_update(self, callback: Callable[[OrderUpdateEvent], Any]) -> None:
        self._update_listeners.append(callback)

    def on_reset(self, callback: Callable[[], Any]) -> None:
        """Called after a dropped connection wiped the lock store."""
        self._reset_listeners.append(callback)

    async def connect(self) -> asyncio.Task[None]:
        """Start the listener task (idempotent) and return it."""
        if self._closed:
            raise RuntimeError("Channel is closed")
        if self._listener_task is None or self._listener_task.done():
            self._listener_task = asyncio.create_task(self._listen())
        return self._listener_task

    async def wait_connected(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout=timeout)

    async def subscribe_order(self, order_id: str) -> None:
        """Receive events for ``order_id``; re-applied after every reconnect."""
        if order_id in self._subscribed_orders:
            return
        self._subscribed_orders.add(order_id)
        if self._pubsub is not None and self.connected:
            await self._pubsub.subscribe(order_channel(order_id))
            await self._publish("subscribeToOrder", {"orderId": order_id})

    async def unsubscribe_order(self, order_id: str) -> None:
        if order_id not in self._subscribed_orders:
            return
        self._subscribed_orders.discard(order_id)
        if self._pubsub is not None and self.connected:
            await self._pubsub.unsubscribe(order_channel(order_id))
            await self._publish("unsubscribeFromOrder", {"orderId": order_id})

    async def acquire(self, order_id: str) -> None:
        """Take the edit lock on ``order_id``.

        Raises:
            httpx.HTTPError: When the order service refuses or is unreachable.
        """
        await self._client.set_order_editing(
            order_id,
            True,
            self.actor.user_id,
            self.actor.role.value,
            self.actor.company_name,
        )
        self._held_locks.add(order_id)
        logger.info(
            "editing_lock_acquired",
            extra={"order_id": order_id, "user_id": self.actor.user_id},
        )

    async def release(self, order_id: str) -> None:
        """Release the edit lock on ``order_id``. Releasing twice is harmless."""
        await self._client.set_order_editing(
            order_id,
            False,
            self.actor.user_id,
            self.actor.role.value,
            self.actor.company_name,
        )
        self._held_locks.discard(order_id)
        logger.info(
            "editing_lock_released",
            extra={"order_id": order_id, "user_id": self.actor.user_id},
        )

    def forget_lock(self, order_id: str) -> None:
        """Stop tracking a lock the service already released (e.g. on save)."""
        self._held_locks.discard(order_id)

    async def close(self) -> None:
        """Release held locks, unsubscribe, unregister and stop listening."""
        if self._closed:
            return
        self._closed = True

        for order_id in list(self._held_locks):
            try:
                await self.release(order_id)
            except httpx.HTTPError as exc:
                logger.warning(
                    "editing_lock_release_failed",
                    extra={"order_id": order_id, "error": str(exc)},
                )

        if self.connected:
            try:
                for order_id in sorted(self._subscribed_orders):
                    await self._publish("unsubscribeFromOrder", {"orderId": order_id})
                await self._publish("unregister", self._identity())
            except RedisError as exc:
                logger.warning("editing_channel_unregister_failed", extra={"error": str(exc)})

        task, self._listener_task = self._listener_task, None
        if task is not None and not task.done():
            task.cancel()
            # The listener also exits on its own within POLL_TIMEOUT once closed.
            _, pending = await asyncio.wait({task}, timeout=self.CLOSE_TIMEOUT)
            if pending:
                logger.warning(
                    "editing_channel_listener_stuck", extra={"user_id": self.actor.user_id}
                )

        self._subscribed_orders.clear()
        self.locks.clear()
        logger.info("editing_channel_closed", extra={"user_id": self.actor.user_id})

    async def _listen(self) -> None:
        """Listener task: (re)connects and applies inbound events until closed."""
        while not self._closed:
            pubsub: Any | None = None
            try:
                redis_client = await self._redis_store.get_master()
                pubsub = redis_client.pubsub()
                channels = [room_channel(self.actor)]
                channels.extend(order_channel(oid) for oid in sorted(self._subscribed_orders))
                await pubsub.subscribe(*channels)
                if self._closed:
                    break
                self._pubsub = pubsub

                await self._publish("register", self._identity())
                for order_id in sorted(self._subscribed_orders):
                    await self._publish("subscribeToOrder", {"orderId": order_id})
                if self._closed:
                    # close() saw no connection, so nobody else unregisters.
                    await self._publish("unregister", self._identity())
                    break
                self._connected.set()
                logger.info(
                    "editing_channel_connected",
                    extra={"user_id": self.actor.user_id, "channels": channels},
                )

                while not self._closed:
                    message = await pubsub.get_message(
                        ignore_subscribe_messages=True, timeout=self.POLL_TIMEOUT
                    )
                    if message is None or message.get("type") != "message":
                        continue
                    await self._handle_message(message.get("data"))

            except RedisConnectionError as exc:
                logger.warning("editing_channel_connection_lost", extra={"error": str(exc)})
            except RedisError as exc:
                logger.warning("editing_channel_error", extra={"error": str(exc)})
            except Exception as exc:
                logger.exception("editing_channel_listener_error", extra={"error": str(exc)})
            finally:
                self._connected.clear()
                self._pubsub = None
                # No lock knowledge survives a reconnect.
                self.locks.clear()
                if pubsub is not None:
                    try:
                        await pubsub.aclose()
                    except (RedisError, OSError) as exc:
                        logger.warning("editing_channel_close_error", extra={"error": str(exc)})

            if self._closed:
                break
            await self._notify(self._reset_listeners)
            await asyncio.sleep(self.RECONNECT_DELAY)

    async def _handle_message(self, raw: Any) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("editing_channel_json_error", extra={"error": str(exc)})
            return
        if not isinstance(payload, dict):
            return

        event = payload.get("event")
        data = payload.get("data") or {}
        try:
            if event == EVENT_EDITING_STATUS_CHANGED:
                status = EditingStatus.model_validate(data)
                self.locks.apply(status)
                logger.debug(
                    "editing_status_changed",
                    extra={"order_id": status.order_id, "is_editing": status.is_editing},
                )
                await self._notify(self._lock_listeners, status)
            elif event == EVENT_ORDER_UPDATED:
                update = OrderUpdateEvent.model_validate(data)
                await self._notify(self._update_listeners, update)
        except ValidationError as exc:
            logger.warning(
                "editing_channel_payload_invalid",
                extra={"channel_event": event, "error": str(exc)},
            )

    async def _notify(self, listeners: list[Callable[..., Any]], *args: Any) -> None:
        for callback in list(listeners):
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                logger.error("editing_channel_callback_error", extra={"error": str(exc)})

    async def _publish(self, event: str, data: dict[str, Any]) -> None:
        redis_client = await self._redis_store.get_master()
        await redis_client.publish(GATEWAY_CHANNEL, json.dumps({"event": event, "data": data}))

    def _identity(self) -> dict[str, Any]:
        identity: dict[str, Any] = {"userId": self.actor.user_id, "role": self.actor.role.value}
        if self.session_id:
            identity["sessionId"] = self.session_id
        return identity


__all__ = [
    "CLIENTS_ROOM",
    "EditingLockChannel",
    "GATEWAY_CHANNEL",
    "OPERATORS_ROOM",
    "order_channel",
    "room_channel",
]
