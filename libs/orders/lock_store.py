"""
Ephemeral edit-lock store keyed by order id.

Entries are created by a lock-acquired event and removed by the matching
release. The last acquire received for an order wins. Absence of an entry
means the order is not being edited.

The store belongs to one channel connection. It is cleared whenever the
connection is lost: no lock knowledge survives a reconnect.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from libs.orders.cooldown import Clock, utc_now
from libs.orders.models import EditingStatus

logger = logging.getLogger(__name__)


class EditingLockStore:
    """Upsert-on-acquire / delete-on-release map of edit locks."""

    def __init__(self, timeout_seconds: int = 60, clock: Clock = utc_now) -> None:
        self._timeout = timedelta(seconds=timeout_seconds)
        self._clock = clock
        self._entries: dict[str, tuple[EditingStatus, datetime]] = {}

    def apply(self, status: EditingStatus) -> bool:
        """
        Apply a lock-state event.

        Returns:
            True if the visible lock state of the order changed.
        """
        if status.is_editing:
            previous = self._entries.get(status.order_id)
            self._entries[status.order_id] = (status, self._clock())
            return previous is None or previous[0] != status
        return self.release(status.order_id)

    def release(self, order_id: str) -> bool:
        """Remove the lock on ``order_id``. Releasing an unlocked order is a no-op."""
        return self._entries.pop(order_id, None) is not None

    def get(self, order_id: str) -> EditingStatus | None:
        entry = self._entries.get(order_id)
        if entry is None:
            return None
        status, received_at = entry
        if self._expired(status, received_at):
            del self._entries[order_id]
            logger.info(
                "editing_lock_expired",
                extra={"order_id": order_id, "user_id": status.editing_by_user_id},
            )
            return None
        return status

    def is_locked(self, order_id: str) -> bool:
        return self.get(order_id) is not None

    def holders(self) -> dict[str, EditingStatus]:
        """Snapshot of every live lock."""
        return {
            order_id: status
            for order_id in list(self._entries)
            if (status := self.get(order_id)) is not None
        }

    def held_by(self, user_id: str) -> list[str]:
        return [
            order_id
            for order_id, status in self.holders().items()
            if status.editing_by_user_id == user_id
        ]

    def clear(self) -> None:
        if self._entries:
            logger.info("editing_lock_store_cleared", extra={"count": len(self._entries)})
        self._entries.clear()

    def __len__(self) -> int:
        return len(self.holders())

    def __contains__(self, order_id: object) -> bool:
        return isinstance(order_id, str) and self.is_locked(order_id)

    def _expired(self, status: EditingStatus, received_at: datetime) -> bool:
        started = status.editing_started_at or received_at
        return self._clock() - started > self._timeout


__all__ = ["EditingLockStore"]
