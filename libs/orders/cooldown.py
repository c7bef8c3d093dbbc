"""
Validation cooldown gate.

An order may not be validated for ``cooldown_seconds`` after it was placed or
last modified, which gives the client a window to notice a mistake and cancel.
The edit lock is a second, independent guard; both must be clear.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from libs.orders.models import EditingStatus, Order

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class ValidationState(str, Enum):
    """What the validate control shows, in display precedence order."""

    LOCKED = "LOCKED"
    COOLDOWN = "COOLDOWN"
    READY = "READY"


class ValidationCooldownGate:
    """Compute the remaining cooldown of an order at one-second resolution."""

    def __init__(self, cooldown_seconds: int, clock: Clock = utc_now) -> None:
        if cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be >= 0")
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock

    def time_left(self, order: Order) -> int:
        """Whole seconds before ``order`` may be validated (0 once elapsed)."""
        elapsed = (self._clock() - order.effective_last_modified).total_seconds()
        return max(0, math.ceil(self.cooldown_seconds - elapsed))

    def is_clear(self, order: Order) -> bool:
        return self.time_left(order) == 0

    def validation_state(self, order: Order, lock: EditingStatus | None = None) -> ValidationState:
        """
        Combine the edit lock and the cooldown into one display state.

        ``lock`` is the entry from the lock store, if any; the order's own
        ``is_editing`` flag counts as a lock as well.
        """
        if (lock is not None and lock.is_editing) or order.is_editing:
            return ValidationState.LOCKED
        if not self.is_clear(order):
            return ValidationState.COOLDOWN
        return ValidationState.READY


class CooldownCountdown:
    """
    Tick ``time_left`` to a callback once per second until it reaches zero.

    The countdown only moves down. ``rearm`` restarts it when a newer version
    of the order (a later ``last_modified_at``) arrives; an older or equal
    version is ignored.
    """

    TICK_SECONDS = 1.0

    def __init__(
        self,
        gate: ValidationCooldownGate,
        order: Order,
        on_tick: Callable[[int], Any],
    ) -> None:
        self._gate = gate
        self._order = order
        self._on_tick = on_tick
        self._task: asyncio.Task[None] | None = None
        self.last_value: int | None = None

    @property
    def order(self) -> Order:
        return self._order

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        if not self.running:
            self._task = asyncio.create_task(self._run())
        assert self._task is not None
        return self._task

    def rearm(self, order: Order) -> bool:
        """Restart from ``order`` if it was modified after the tracked version."""
        if order.id != self._order.id:
            raise ValueError("Cannot re-arm a countdown with a different order")
        if order.effective_last_modified < self._order.effective_last_modified:
            return False
        if order.effective_last_modified == self._order.effective_last_modified:
            self._order = order
            return False
        self._order = order
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self._run())
        logger.debug(
            "cooldown_rearmed",
            extra={"order_id": order.id, "time_left": self._gate.time_left(order)},
        )
        return True

    async def cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            left = self._gate.time_left(self._order)
            self.last_value = left
            try:
                result = self._on_tick(left)
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("cooldown_tick_callback_failed", extra={"order_id": self._order.id})
            if left <= 0:
                return
            await asyncio.sleep(self.TICK_SECONDS)


__all__ = ["CooldownCountdown", "ValidationCooldownGate", "ValidationState", "utc_now"]
