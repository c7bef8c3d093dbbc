"""Notification routing with priority-based delivery and quiet mode support.

The router does not render anything: the host UI registers callbacks for
toasts, the notification drawer and the unread badge.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class NotificationPriority(Enum):
    """Notification priority levels."""

    HIGH = "high"  # Toast + drawer + badge (action failures)
    MEDIUM = "medium"  # Toast unless quiet + drawer + badge (action results, DMS sync)
    LOW = "low"  # Drawer only (background refresh details)


class NotificationType(Enum):
    """Notification display types."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    WARNING = "warning"
    INFO = "info"


@dataclass
class Notification:
    """Single notification entry."""

    id: str
    message: str
    priority: NotificationPriority
    type: NotificationType
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)


class NotificationRouter:
    """Routes notifications based on priority and quiet mode state.

    - One instance per console session
    - Bounded history, most recent first
    - Callback failures are logged and never reach the emitter
    """

    MAX_HISTORY = 100

    def __init__(self) -> None:
        self._history: deque[Notification] = deque(maxlen=self.MAX_HISTORY)
        self._unread_count: int = 0
        self._notification_counter: int = 0
        self._quiet_mode: bool = False

        self._on_toast: Callable[[Notification], Any] | None = None
        self._on_notification: Callable[[Notification], Any] | None = None
        self._on_badge_update: Callable[[int], Any] | None = None

    def set_callbacks(
        self,
        on_toast: Callable[[Notification], Any] | None = None,
        on_notification: Callable[[Notification], Any] | None = None,
        on_badge_update: Callable[[int], Any] | None = None,
    ) -> None:
        """Register callbacks for notification events."""
        self._on_toast = on_toast
        self._on_notification = on_notification
        self._on_badge_update = on_badge_update

    @property
    def quiet_mode(self) -> bool:
        return self._quiet_mode

    def set_quiet_mode(self, enabled: bool) -> None:
        if self._quiet_mode != enabled:
            self._quiet_mode = enabled
            logger.info("notification_quiet_mode_changed", extra={"quiet_mode": enabled})

    @property
    def unread_count(self) -> int:
        return self._unread_count

    def emit(
        self,
        message: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        notification_type: NotificationType = NotificationType.INFO,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        """Emit a notification with priority-based routing."""
        self._notification_counter += 1
        notification = Notification(
            id=f"notif-{self._notification_counter}",
            message=message,
            priority=priority,
            type=notification_type,
            metadata=metadata or {},
        )

        self._history.appendleft(notification)

        should_toast = self._should_show_toast(priority)
        should_badge = priority in (NotificationPriority.HIGH, NotificationPriority.MEDIUM)

        if should_toast and self._on_toast:
            self._run_callback(self._on_toast, notification, callback_name="on_toast")

        if should_badge:
            self._unread_count += 1
            if self._on_badge_update:
                self._run_callback(
                    self._on_badge_update, self._unread_count, callback_name="on_badge_update"
                )

        if self._on_notification:
            self._run_callback(
                self._on_notification, notification, callback_name="on_notification"
            )

        logger.debug(
            "notification_emitted",
            extra={
                "notification_id": notification.id,
                "priority": priority.value,
                "type": notification_type.value,
                "toast_shown": should_toast,
                "badge_incremented": should_badge,
            },
        )

        return notification

    def _should_show_toast(self, priority: NotificationPriority) -> bool:
        if priority == NotificationPriority.HIGH:
            return True
        if priority == NotificationPriority.MEDIUM:
            return not self._quiet_mode
        return False

    def _run_callback(
        self,
        callback: Callable[..., Any],
        *args: Any,
        callback_name: str,
    ) -> None:
        """Run a sync callback, or schedule an async one on the running loop."""
        try:
            result = callback(*args)
            if inspect.iscoroutine(result):
                asyncio.create_task(result)
        except Exception:
            logger.exception("notification_callback_failed", extra={"callback": callback_name})

    def get_history(self, limit: int | None = None) -> list[Notification]:
        """Get notification history (most recent first)."""
        if limit is None:
            return list(self._history)
        return list(self._history)[:limit]


def notify_success(router: NotificationRouter, message: str, **metadata: Any) -> Notification:
    return router.emit(message, NotificationPriority.MEDIUM, NotificationType.POSITIVE, metadata)


def notify_info(router: NotificationRouter, message: str, **metadata: Any) -> Notification:
    return router.emit(message, NotificationPriority.MEDIUM, NotificationType.INFO, metadata)


def notify_error(router: NotificationRouter, message: str, **metadata: Any) -> Notification:
    """Failures always toast, quiet mode or not."""
    return router.emit(message, NotificationPriority.HIGH, NotificationType.NEGATIVE, metadata)


__all__ = [
    "Notification",
    "NotificationPriority",
    "NotificationRouter",
    "NotificationType",
    "notify_error",
    "notify_info",
    "notify_success",
]
