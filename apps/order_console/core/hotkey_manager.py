"""Keyboard shortcuts for the duplicate-line conflict prompt.

Each open prompt owns its own ``HotkeyManager``: handlers are registered when
the prompt opens and removed when it resolves or closes, so a stale prompt
can never react to a key press.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from libs.orders.cart import ConflictChoice, LineConflict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HotkeyBinding:
    """Single hotkey binding configuration."""

    key: str
    action: str
    description: str
    modifiers: frozenset[str] = frozenset()

    def matches(self, key: str, modifiers: list[str]) -> bool:
        """Check if key event matches this binding (letters are case-insensitive)."""
        if self.key.lower() != key.lower():
            return False
        return self.modifiers == frozenset(modifiers)


CONFLICT_PROMPT_HOTKEYS: tuple[HotkeyBinding, ...] = (
    HotkeyBinding(key="a", action="conflict_add", description="Add to the existing quantity"),
    HotkeyBinding(key="Enter", action="conflict_add", description="Add to the existing quantity"),
    HotkeyBinding(
        key="r", action="conflict_replace", description="Replace the existing quantity"
    ),
    HotkeyBinding(
        key="Escape", action="conflict_cancel", description="Keep the existing line unchanged"
    ),
)


class HotkeyManager:
    """Dispatches key events to the handlers registered on this instance only."""

    def __init__(self, bindings: tuple[HotkeyBinding, ...] = CONFLICT_PROMPT_HOTKEYS) -> None:
        self._bindings = tuple(bindings)
        self._action_handlers: dict[str, Callable[[], Any]] = {}

    def register_handler(self, action: str, handler: Callable[[], Any]) -> None:
        """Register a Python handler for an action."""
        self._action_handlers[action] = handler

    def clear_handlers(self) -> None:
        self._action_handlers.clear()

    def handle_key(self, key: str, modifiers: list[str] | None = None) -> bool:
        """Dispatch a key event to the first matching binding with a handler."""
        for binding in self._bindings:
            if binding.matches(key, modifiers or []) and binding.action in self._action_handlers:
                return self.handle_action(binding.action)
        return False

    def handle_action(self, action: str) -> bool:
        """Handle an action triggered by hotkey."""
        handler = self._action_handlers.get(action)
        if handler:
            try:
                result = handler()
                if asyncio.iscoroutine(result):
                    task = asyncio.create_task(result)

                    def _log_task_exception(task: asyncio.Task[Any]) -> None:
                        try:
                            exc = task.exception()
                        except asyncio.CancelledError:
                            return
                        if exc is not None:
                            logger.error(
                                "hotkey_action_task_failed",
                                extra={"action": action, "error": str(exc)},
                            )

                    task.add_done_callback(_log_task_exception)
                return True
            except Exception as exc:
                logger.error(
                    "hotkey_action_failed",
                    extra={"action": action, "error": str(exc)},
                )
        return False


class _ResolvableLines(Protocol):
    def apply_resolution(self, conflict: LineConflict, choice: ConflictChoice) -> Any: ...


class ConflictPrompt:
    """
    One open "reference already present" prompt.

    ``a``/``A``/``Enter`` cumulate, ``r``/``R`` replace, ``Escape`` cancels.
    The prompt resolves at most once; after that it ignores every key.

    Example:
        >>> prompt = ConflictPrompt(cart, exc.conflict)
        >>> prompt.open()
        >>> prompt.handle_key("r")
        True
        >>> await prompt.wait()
        <ConflictChoice.REPLACE: 'REPLACE'>
    """

    def __init__(self, lines: _ResolvableLines, conflict: LineConflict) -> None:
        self.conflict = conflict
        self._lines = lines
        self._hotkeys = HotkeyManager(CONFLICT_PROMPT_HOTKEYS)
        self._result: asyncio.Future[ConflictChoice | None] | None = None

    @property
    def is_open(self) -> bool:
        return self._result is not None and not self._result.done()

    def open(self) -> None:
        if self._result is not None:
            raise RuntimeError("Conflict prompt already opened")
        self._result = asyncio.get_running_loop().create_future()
        self._hotkeys.register_handler("conflict_add", lambda: self.resolve(ConflictChoice.ADD))
        self._hotkeys.register_handler(
            "conflict_replace", lambda: self.resolve(ConflictChoice.REPLACE)
        )
        self._hotkeys.register_handler("conflict_cancel", lambda: self.resolve(None))
        logger.debug("conflict_prompt_opened", extra={"reference": self.conflict.reference})

    def handle_key(self, key: str, modifiers: list[str] | None = None) -> bool:
        if not self.is_open:
            return False
        return self._hotkeys.handle_key(key, modifiers)

    def resolve(self, choice: ConflictChoice | None) -> None:
        """Apply ``choice`` (``None`` cancels) and tear the prompt down."""
        if not self.is_open:
            return
        assert self._result is not None
        self._hotkeys.clear_handlers()
        try:
            if choice is not None:
                self._lines.apply_resolution(self.conflict, choice)
        except Exception as exc:
            self._result.set_exception(exc)
            raise
        self._result.set_result(choice)

    def close(self) -> None:
        self.resolve(None)

    async def wait(self) -> ConflictChoice | None:
        if self._result is None:
            raise RuntimeError("Conflict prompt was never opened")
        return await self._result


__all__ = [
    "CONFLICT_PROMPT_HOTKEYS",
    "ConflictPrompt",
    "HotkeyBinding",
    "HotkeyManager",
]
