"""Tests for DmsSyncScheduler."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from apps.order_console.core.dms_sync import (
    NO_CHANGES_MESSAGE,
    SYNC_FAILED_MESSAGE,
    DmsSyncScheduler,
    scheduled_success_message,
)
from apps.order_console.core.notification_router import NotificationRouter, NotificationType
from libs.common.exceptions import PrivilegedOperationDenied
from libs.orders.models import DmsSyncResult


def _scheduler(actor, result=None, *, side_effect=None, interval=5.0, delay=0.0):
    client = AsyncMock()
    client.sync_dms_orders = AsyncMock(return_value=result, side_effect=side_effect)
    notifier = NotificationRouter()
    on_synced = Mock()
    scheduler = DmsSyncScheduler(
        actor,
        notifier,
        on_synced,
        client=client,
        interval_minutes=interval,
        initial_delay_seconds=delay,
    )
    return scheduler, client, notifier, on_synced


def _http_error(message: str) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://testserver/orders/sync-dms")
    response = httpx.Response(502, json={"message": message}, request=request)
    return httpx.HTTPStatusError("bad gateway", request=request, response=response)


@pytest.mark.asyncio()
async def test_scheduled_run_without_changes_is_silent(operator) -> None:
    scheduler, _, notifier, on_synced = _scheduler(operator, DmsSyncResult(synced=0))

    result = await scheduler.run_scheduled()

    assert result == DmsSyncResult(synced=0)
    assert notifier.get_history() == []
    on_synced.assert_called_once_with()


@pytest.mark.asyncio()
async def test_scheduled_run_announces_synced_orders(operator) -> None:
    scheduler, _, notifier, _ = _scheduler(operator, DmsSyncResult(synced=3, message="ignored"))

    await scheduler.run_scheduled()

    [notification] = notifier.get_history()
    assert notification.message == scheduled_success_message(3)
    assert notification.type == NotificationType.POSITIVE


@pytest.mark.asyncio()
async def test_scheduled_failure_is_swallowed(operator) -> None:
    scheduler, _, notifier, on_synced = _scheduler(operator, side_effect=httpx.ConnectError("down"))

    assert await scheduler.run_scheduled() is None
    assert notifier.get_history() == []
    on_synced.assert_not_called()


@pytest.mark.asyncio()
async def test_manual_run_without_changes_reports_info(operator) -> None:
    scheduler, _, notifier, _ = _scheduler(operator, DmsSyncResult(synced=0))

    await scheduler.sync_now()

    [notification] = notifier.get_history()
    assert notification.message == NO_CHANGES_MESSAGE
    assert notification.type == NotificationType.INFO


@pytest.mark.asyncio()
async def test_manual_run_uses_service_message(operator) -> None:
    scheduler, _, notifier, _ = _scheduler(
        operator, DmsSyncResult(synced=2, message="2 commandes synchronisées")
    )

    await scheduler.sync_now()

    assert notifier.get_history()[0].message == "2 commandes synchronisées"


@pytest.mark.asyncio()
async def test_manual_failure_notifies_error(operator) -> None:
    scheduler, _, notifier, on_synced = _scheduler(
        operator, side_effect=_http_error("DMS injoignable")
    )

    assert await scheduler.sync_now() is None

    [notification] = notifier.get_history()
    assert notification.message == "DMS injoignable"
    assert notification.type == NotificationType.NEGATIVE
    on_synced.assert_not_called()


@pytest.mark.asyncio()
async def test_manual_failure_without_body_uses_default(operator) -> None:
    scheduler, _, notifier, _ = _scheduler(operator, side_effect=httpx.ConnectError("down"))

    await scheduler.sync_now()

    assert notifier.get_history()[0].message == SYNC_FAILED_MESSAGE


@pytest.mark.asyncio()
async def test_manual_run_refused_for_clients(client_admin) -> None:
    scheduler, client, _, _ = _scheduler(client_admin, DmsSyncResult())

    with pytest.raises(PrivilegedOperationDenied):
        await scheduler.sync_now()

    client.sync_dms_orders.assert_not_called()


@pytest.mark.asyncio()
async def test_async_on_synced_is_awaited(operator) -> None:
    scheduler, _, _, _ = _scheduler(operator, DmsSyncResult(synced=1))
    refreshed = AsyncMock()
    scheduler._on_synced = refreshed

    await scheduler.run_scheduled()

    refreshed.assert_awaited_once()


def test_schedule_disabled_for_clients_and_zero_interval(operator, client_admin) -> None:
    assert not _scheduler(client_admin)[0].enabled
    assert not _scheduler(operator, interval=0)[0].enabled
    assert _scheduler(operator)[0].enabled


@pytest.mark.asyncio()
async def test_start_returns_none_when_disabled(client_admin) -> None:
    scheduler, _, _, _ = _scheduler(client_admin)

    assert scheduler.start() is None
    assert not scheduler.running


@pytest.mark.asyncio()
async def test_loop_runs_after_initial_delay_and_repeats(operator) -> None:
    runs = asyncio.Event()
    calls: list[int] = []

    async def _sync(*_: object) -> DmsSyncResult:
        calls.append(1)
        if len(calls) >= 2:
            runs.set()
        return DmsSyncResult(synced=0)

    # 0.0001 minutes is 6 ms between runs.
    scheduler, client, _, _ = _scheduler(operator, interval=0.0001, delay=0.01)
    client.sync_dms_orders = AsyncMock(side_effect=_sync)

    task = scheduler.start()
    assert task is not None
    assert scheduler.start() is task

    await asyncio.wait_for(runs.wait(), timeout=2)
    await scheduler.stop()

    assert not scheduler.running
    assert task.cancelled()


@pytest.mark.asyncio()
async def test_loop_survives_unexpected_errors(operator) -> None:
    runs = asyncio.Event()
    calls: list[int] = []

    async def _sync(*_: object) -> DmsSyncResult:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("unexpected")
        runs.set()
        return DmsSyncResult(synced=0)

    scheduler, client, _, _ = _scheduler(operator, interval=0.0001)
    client.sync_dms_orders = AsyncMock(side_effect=_sync)

    scheduler.start()
    await asyncio.wait_for(runs.wait(), timeout=2)
    await scheduler.stop()

    assert len(calls) >= 2
