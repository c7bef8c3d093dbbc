"""Console session lifecycle: background tasks and teardown callbacks."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

# (callable, owner_key). owner_key=None for callbacks that are never replaced.
_CallbackEntry = tuple[Callable[[], Any], str | None]


class ClientLifecycleManager:
    """Track per-session tasks and run cleanup when the session ends.

    Every timer a session starts (list refetch, DMS sync, cooldown countdowns,
    channel listener) is registered here so that teardown cancels all of them.

    Callbacks registered with an ``owner_key`` replace any earlier callback
    with the same key; callbacks without one are appended.
    """

    _instance: ClientLifecycleManager | None = None

    TASK_CANCEL_TIMEOUT = 5.0

    def __init__(self) -> None:
        self.session_tasks: dict[str, list[asyncio.Task[Any]]] = {}
        self.session_callbacks: dict[str, list[_CallbackEntry]] = {}
        self.active_sessions: set[str] = set()
        self._lock = asyncio.Lock()

    @classmethod
    def get(cls) -> ClientLifecycleManager:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def generate_session_id(self) -> str:
        return str(uuid.uuid4())

    async def register_session(self, session_id: str) -> None:
        async with self._lock:
            self.active_sessions.add(session_id)
            self.session_tasks.setdefault(session_id, [])
            self.session_callbacks.setdefault(session_id, [])
        logger.info("session_registered", extra={"session_id": session_id})

    async def register_task(self, session_id: str, task: asyncio.Task[Any]) -> None:
        """Register a background task; finished tasks are pruned on the way."""
        async with self._lock:
            tasks = self.session_tasks.setdefault(session_id, [])
            tasks[:] = [t for t in tasks if not t.done()]
            tasks.append(task)

    async def register_cleanup_callback(
        self,
        session_id: str,
        callback: Callable[[], Any],
        *,
        owner_key: str | None = None,
    ) -> None:
        """Register a callback invoked on teardown.

        Args:
            session_id: The console session ID.
            callback: Sync or async callable.
            owner_key: When provided, replaces an existing callback with the
                same key.
        """
        async with self._lock:
            callbacks = self.session_callbacks.setdefault(session_id, [])
            if owner_key is not None:
                self.session_callbacks[session_id] = [
                    *(item for item in callbacks if item[1] != owner_key),
                    (callback, owner_key),
                ]
            else:
                callbacks.append((callback, None))

    async def cleanup_session(self, session_id: str) -> None:
        """Cancel tasks, then run cleanup callbacks in registration order."""
        async with self._lock:
            self.active_sessions.discard(session_id)
            tasks = self.session_tasks.pop(session_id, [])
            callbacks = self.session_callbacks.pop(session_id, [])

        async def _cancel_task(task: asyncio.Task[Any]) -> None:
            if task.done():
                return
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=self.TASK_CANCEL_TIMEOUT)
            except TimeoutError:
                logger.warning("task_cancel_timeout", extra={"session_id": session_id})
            except asyncio.CancelledError:
                return

        await asyncio.gather(*[_cancel_task(task) for task in tasks], return_exceptions=True)

        for cb, owner_key in callbacks:
            try:
                result = cb()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(
                    "cleanup_callback_error",
                    extra={"session_id": session_id, "owner_key": owner_key},
                )

        logger.info(
            "session_cleaned",
            extra={
                "session_id": session_id,
                "tasks": len(tasks),
                "callbacks": len(callbacks),
            },
        )

    async def is_session_active(self, session_id: str) -> bool:
        async with self._lock:
            return session_id in self.active_sessions


__all__ = ["ClientLifecycleManager"]
