"""Tests for the Redis Pub/Sub edit-lock channel."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from fakeredis.aioredis import FakeRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from apps.order_console.core.editing_channel import (
    CLIENTS_ROOM,
    GATEWAY_CHANNEL,
    OPERATORS_ROOM,
    EditingLockChannel,
    order_channel,
    room_channel,
)
from apps.order_console.core.redis_store import RedisStore
from libs.orders.lock_store import EditingLockStore
from libs.orders.models import EditingStatus, OrderUpdateEvent


def _event(name: str, **data: Any) -> str:
    return json.dumps({"event": name, "data": data})


def _lock_event(order_id: str = "ord-1", *, editing: bool = True) -> str:
    return _event(
        "orderEditingStatusChanged",
        orderId=order_id,
        isEditing=editing,
        editingByUserId="cli-2",
        editingByUserName="Marc",
    )


class _ScriptedPubSub:
    """Pub/Sub double: hands out ``messages`` then drops or idles."""

    def __init__(self, messages: list[str] | None = None, *, drop: bool = False) -> None:
        self.messages = list(messages or [])
        self.drop = drop
        self.subscribed: list[str] = []
        self.unsubscribed: list[str] = []
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        self.subscribed.extend(channels)

    async def unsubscribe(self, *channels: str) -> None:
        self.unsubscribed.extend(channels)

    async def get_message(
        self, ignore_subscribe_messages: bool = False, timeout: float = 0.0
    ) -> dict[str, Any] | None:
        if self.messages:
            return {"type": "message", "data": self.messages.pop(0)}
        if self.drop:
            raise RedisConnectionError("connection lost")
        await asyncio.sleep(timeout)
        return None

    async def aclose(self) -> None:
        self.closed = True


class _ScriptedRedis:
    def __init__(self, *pubsubs: _ScriptedPubSub) -> None:
        self._scripts = list(pubsubs)
        self.pubsubs: list[_ScriptedPubSub] = []
        self.published: list[tuple[str, dict[str, Any]]] = []

    def pubsub(self) -> _ScriptedPubSub:
        pubsub = self._scripts.pop(0) if self._scripts else _ScriptedPubSub()
        self.pubsubs.append(pubsub)
        return pubsub

    async def publish(self, channel: str, payload: str) -> int:
        self.published.append((channel, json.loads(payload)))
        return 1

    def events(self, name: str) -> list[dict[str, Any]]:
        return [msg["data"] for channel, msg in self.published if msg["event"] == name]


async def _until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def _wait() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_wait(), timeout=timeout)


@pytest.fixture()
def service() -> AsyncMock:
    return AsyncMock()


def _channel(actor, redis, service, clock) -> EditingLockChannel:
    channel = EditingLockChannel(
        actor,
        client=service,
        redis_store=RedisStore(redis),
        lock_store=EditingLockStore(clock=clock),
        session_id="sess-1",
    )
    channel.RECONNECT_DELAY = 0
    channel.POLL_TIMEOUT = 0.01
    return channel


def test_room_per_role(operator, client_admin) -> None:
    assert room_channel(operator) == OPERATORS_ROOM
    assert room_channel(client_admin) == CLIENTS_ROOM
    assert order_channel("ord-9") == "orders:order:ord-9"


@pytest.mark.asyncio()
async def test_connect_registers_and_subscribes(operator, service, clock) -> None:
    redis = _ScriptedRedis()
    channel = _channel(operator, redis, service, clock)
    await channel.subscribe_order("ord-1")

    await channel.connect()
    await channel.wait_connected(timeout=1)

    assert redis.pubsubs[0].subscribed == [OPERATORS_ROOM, order_channel("ord-1")]
    assert redis.events("register") == [
        {"userId": "op-1", "role": "FULL_ADMIN", "sessionId": "sess-1"}
    ]
    assert redis.events("subscribeToOrder") == [{"orderId": "ord-1"}]
    assert all(channel_name == GATEWAY_CHANNEL for channel_name, _ in redis.published)
    await channel.close()


@pytest.mark.asyncio()
async def test_lock_events_update_store_and_listeners(operator, service, clock) -> None:
    redis = _ScriptedRedis(_ScriptedPubSub([_lock_event(), _lock_event("ord-2")]))
    channel = _channel(operator, redis, service, clock)
    seen: list[EditingStatus] = []
    channel.on_lock_change(seen.append)

    await channel.connect()
    await _until(lambda: len(seen) == 2)

    assert channel.locks.get("ord-1").editing_by_user_name == "Marc"
    assert "ord-2" in channel.locks
    await channel.close()


@pytest.mark.asyncio()
async def test_release_event_removes_lock(operator, service, clock) -> None:
    redis = _ScriptedRedis(_ScriptedPubSub([_lock_event(), _lock_event(editing=False)]))
    channel = _channel(operator, redis, service, clock)
    seen: list[EditingStatus] = []
    channel.on_lock_change(seen.append)

    await channel.connect()
    await _until(lambda: len(seen) == 2)

    assert channel.locks.get("ord-1") is None
    await channel.close()


@pytest.mark.asyncio()
async def test_order_updates_reach_listeners(operator, service, clock) -> None:
    update = _event("orderUpdated", orderId="ord-1", status="VALIDATED")
    redis = _ScriptedRedis(_ScriptedPubSub([update]))
    channel = _channel(operator, redis, service, clock)
    seen: list[OrderUpdateEvent] = []

    async def _on_update(event: OrderUpdateEvent) -> None:
        seen.append(event)

    channel.on_order_update(_on_update)
    await channel.connect()
    await _until(lambda: len(seen) == 1)

    assert seen[0].order_id == "ord-1"
    await channel.close()


@pytest.mark.asyncio()
async def test_bad_messages_and_failing_listeners_are_ignored(operator, service, clock) -> None:
    messages = [
        "not json",
        json.dumps(["not", "an", "object"]),
        _event("orderEditingStatusChanged", isEditing=True),
        _event("somethingElse", orderId="ord-1"),
        _lock_event(),
        _lock_event("ord-2"),
    ]
    redis = _ScriptedRedis(_ScriptedPubSub(messages))
    channel = _channel(operator, redis, service, clock)
    seen: list[str] = []

    def _flaky(status: EditingStatus) -> None:
        seen.append(status.order_id)
        if status.order_id == "ord-1":
            raise RuntimeError("ui gone")

    channel.on_lock_change(_flaky)
    await channel.connect()
    await _until(lambda: len(seen) == 2)

    assert seen == ["ord-1", "ord-2"]
    assert channel.connected
    await channel.close()


@pytest.mark.asyncio()
async def test_connection_loss_clears_locks_and_resubscribes(operator, service, clock) -> None:
    redis = _ScriptedRedis(_ScriptedPubSub([_lock_event()], drop=True), _ScriptedPubSub())
    channel = _channel(operator, redis, service, clock)
    await channel.subscribe_order("ord-1")
    resets: list[int] = []
    channel.on_reset(lambda: resets.append(1))
    seen: list[EditingStatus] = []
    channel.on_lock_change(seen.append)

    await channel.connect()
    await _until(lambda: len(redis.pubsubs) == 2 and channel.connected)

    assert len(seen) == 1
    assert len(channel.locks) == 0
    assert redis.pubsubs[0].closed
    assert len(redis.events("register")) == 2
    assert redis.events("subscribeToOrder") == [{"orderId": "ord-1"}, {"orderId": "ord-1"}]
    assert redis.pubsubs[1].subscribed == [OPERATORS_ROOM, order_channel("ord-1")]
    assert resets == [1]
    await channel.close()
    assert resets == [1]


@pytest.mark.asyncio()
async def test_live_subscribe_and_unsubscribe(client_admin, service, clock) -> None:
    redis = _ScriptedRedis()
    channel = _channel(client_admin, redis, service, clock)
    await channel.connect()
    await channel.wait_connected(timeout=1)

    await channel.subscribe_order("ord-3")
    await channel.subscribe_order("ord-3")
    await channel.unsubscribe_order("ord-3")

    assert redis.pubsubs[0].subscribed == [CLIENTS_ROOM, order_channel("ord-3")]
    assert redis.pubsubs[0].unsubscribed == [order_channel("ord-3")]
    assert redis.events("subscribeToOrder") == [{"orderId": "ord-3"}]
    assert redis.events("unsubscribeFromOrder") == [{"orderId": "ord-3"}]
    assert channel.subscribed_orders == frozenset()
    await channel.close()


@pytest.mark.asyncio()
async def test_acquire_and_release_call_the_service(client_admin, service, clock) -> None:
    channel = _channel(client_admin, _ScriptedRedis(), service, clock)

    await channel.acquire("ord-1")
    assert channel.held_locks == frozenset({"ord-1"})

    await channel.release("ord-1")
    assert channel.held_locks == frozenset()
    service.set_order_editing.assert_any_await("ord-1", True, "cli-1", "CLIENT_ADMIN", "Garage Nord")
    service.set_order_editing.assert_any_await(
        "ord-1", False, "cli-1", "CLIENT_ADMIN", "Garage Nord"
    )


@pytest.mark.asyncio()
async def test_failed_acquire_is_not_tracked(client_admin, service, clock) -> None:
    service.set_order_editing.side_effect = httpx.ConnectError("down")
    channel = _channel(client_admin, _ScriptedRedis(), service, clock)

    with pytest.raises(httpx.ConnectError):
        await channel.acquire("ord-1")

    assert channel.held_locks == frozenset()


@pytest.mark.asyncio()
async def test_close_releases_locks_and_unregisters(client_admin, service, clock) -> None:
    redis = _ScriptedRedis(_ScriptedPubSub([_lock_event("ord-5")]))
    channel = _channel(client_admin, redis, service, clock)
    await channel.subscribe_order("ord-1")
    await channel.connect()
    await _until(lambda: "ord-5" in channel.locks)
    await channel.acquire("ord-1")

    await channel.close()
    await channel.close()

    service.set_order_editing.assert_awaited_with(
        "ord-1", False, "cli-1", "CLIENT_ADMIN", "Garage Nord"
    )
    assert redis.events("unsubscribeFromOrder") == [{"orderId": "ord-1"}]
    assert redis.events("unregister") == [
        {"userId": "cli-1", "role": "CLIENT_ADMIN", "sessionId": "sess-1"}
    ]
    assert len(channel.locks) == 0
    assert not channel.connected
    with pytest.raises(RuntimeError, match="closed"):
        await channel.connect()


@pytest.mark.asyncio()
async def test_close_survives_release_failure(client_admin, service, clock) -> None:
    channel = _channel(client_admin, _ScriptedRedis(), service, clock)
    await channel.acquire("ord-1")
    service.set_order_editing.side_effect = httpx.ReadTimeout("slow")

    await channel.close()

    assert channel.locks.holders() == {}


@pytest.mark.asyncio()
async def test_fakeredis_round_trip(operator, service, clock) -> None:
    redis = FakeRedis(decode_responses=True)
    channel = _channel(operator, redis, service, clock)
    seen: list[EditingStatus] = []
    channel.on_lock_change(seen.append)

    await channel.connect()
    await channel.wait_connected(timeout=1)
    await redis.publish(OPERATORS_ROOM, _lock_event())
    await _until(lambda: len(seen) == 1, timeout=2)

    assert channel.locks.is_locked("ord-1")
    await channel.close()
    await redis.aclose()


class _SlowHandshakePubSub(_ScriptedPubSub):
    """Subscribe that outlives a cancel request, as a driver mid-handshake can."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = asyncio.Event()

    async def subscribe(self, *channels: str) -> None:
        self.entered.set()
        try:
            await asyncio.sleep(0.05)
        except asyncio.CancelledError:
            await asyncio.sleep(0.05)
        await super().subscribe(*channels)


@pytest.mark.asyncio()
async def test_close_during_handshake_stops_listener(operator, service, clock) -> None:
    pubsub = _SlowHandshakePubSub()
    redis = _ScriptedRedis(pubsub)
    channel = _channel(operator, redis, service, clock)
    task = await channel.connect()
    await asyncio.wait_for(pubsub.entered.wait(), timeout=1)

    await asyncio.wait_for(channel.close(), timeout=2)

    assert task.done()
    assert pubsub.closed
    assert redis.events("register") == []
    assert not channel.connected


@pytest.mark.asyncio()
@pytest.mark.parametrize("yields", [0, 1, 2, 5, 10])
async def test_close_right_after_connect_returns(operator, service, clock, yields: int) -> None:
    redis = FakeRedis(decode_responses=True)
    channel = _channel(operator, redis, service, clock)
    task = await channel.connect()
    for _ in range(yields):
        await asyncio.sleep(0)

    await asyncio.wait_for(channel.close(), timeout=3)

    assert task.done()
    assert not channel.connected
    await redis.aclose()
