"""Tests for ClientLifecycleManager."""

from __future__ import annotations

import asyncio

import pytest

from apps.order_console.core.client_lifecycle import ClientLifecycleManager


@pytest.fixture(autouse=True)
def _reset_singleton() -> None:
    ClientLifecycleManager._instance = None


@pytest.mark.asyncio()
async def test_register_session_tracks_active() -> None:
    manager = ClientLifecycleManager.get()
    await manager.register_session("sess-1")

    assert await manager.is_session_active("sess-1") is True
    assert await manager.is_session_active("sess-2") is False


def test_generate_session_id_uniqueness() -> None:
    manager = ClientLifecycleManager.get()
    ids = {manager.generate_session_id() for _ in range(50)}
    assert len(ids) == 50


@pytest.mark.asyncio()
async def test_cleanup_cancels_tasks_then_runs_callbacks() -> None:
    manager = ClientLifecycleManager.get()
    await manager.register_session("sess-1")
    events: list[str] = []

    async def _timer() -> None:
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            events.append("timer_cancelled")
            raise

    task = asyncio.create_task(_timer())
    await asyncio.sleep(0)
    await manager.register_task("sess-1", task)

    async def _close_channel() -> None:
        events.append("channel_closed")

    await manager.register_cleanup_callback("sess-1", _close_channel, owner_key="editing_channel")
    await manager.register_cleanup_callback("sess-1", lambda: events.append("sync_cb"))

    await manager.cleanup_session("sess-1")

    assert events == ["timer_cancelled", "channel_closed", "sync_cb"]
    assert task.cancelled()
    assert await manager.is_session_active("sess-1") is False


@pytest.mark.asyncio()
async def test_owner_key_replaces_callback() -> None:
    manager = ClientLifecycleManager.get()
    await manager.register_session("sess-1")
    calls: list[str] = []

    await manager.register_cleanup_callback("sess-1", lambda: calls.append("old"), owner_key="k")
    await manager.register_cleanup_callback("sess-1", lambda: calls.append("new"), owner_key="k")
    await manager.cleanup_session("sess-1")

    assert calls == ["new"]


@pytest.mark.asyncio()
async def test_failing_callback_does_not_stop_cleanup() -> None:
    manager = ClientLifecycleManager.get()
    await manager.register_session("sess-1")
    calls: list[str] = []

    def _boom() -> None:
        raise RuntimeError("boom")

    await manager.register_cleanup_callback("sess-1", _boom)
    await manager.register_cleanup_callback("sess-1", lambda: calls.append("after"))
    await manager.cleanup_session("sess-1")

    assert calls == ["after"]


@pytest.mark.asyncio()
async def test_register_task_prunes_finished_tasks() -> None:
    manager = ClientLifecycleManager.get()
    await manager.register_session("sess-1")

    async def _noop() -> None:
        return None

    done = asyncio.create_task(_noop())
    await done
    await manager.register_task("sess-1", done)
    pending = asyncio.create_task(asyncio.sleep(10))
    await manager.register_task("sess-1", pending)

    assert manager.session_tasks["sess-1"] == [pending]
    await manager.cleanup_session("sess-1")
    assert pending.cancelled()


@pytest.mark.asyncio()
async def test_cleanup_uses_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    manager = ClientLifecycleManager.get()
    await manager.register_session("sess-2")

    async def _never_finish() -> None:
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            return

    task = asyncio.create_task(_never_finish())
    await manager.register_task("sess-2", task)

    calls: list[float] = []

    async def _fake_wait_for(awaitable, timeout: float):
        calls.append(timeout)
        awaitable.cancel()
        raise TimeoutError

    monkeypatch.setattr(asyncio, "wait_for", _fake_wait_for)

    await manager.cleanup_session("sess-2")

    assert calls == [ClientLifecycleManager.TASK_CANCEL_TIMEOUT]
