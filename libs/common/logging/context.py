"""Session id propagation for log correlation.

Every console session (one connected user: its channel, timers and order
cache) gets a session id. The id lives in a context variable so that tasks
spawned from the session inherit it and every log line they emit can be
grouped per session.

Example:
    >>> from libs.common.logging.context import SessionContext, get_session_id
    >>> with SessionContext("sess-1"):
    ...     get_session_id()
    'sess-1'
"""

import contextvars
import uuid
from types import TracebackType

_session_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "session_id", default=None
)


def generate_session_id() -> str:
    """Generate a new unique session id (UUID v4 string)."""
    return str(uuid.uuid4())


def get_session_id() -> str | None:
    """Return the session id of the current context, or None if unset."""
    return _session_id_var.get()


def set_session_id(session_id: str) -> None:
    """Set the session id for the current context.

    Raises:
        ValueError: If session_id is empty
    """
    if not session_id:
        raise ValueError("Session ID cannot be empty")
    _session_id_var.set(session_id)


def clear_session_id() -> None:
    _session_id_var.set(None)


class SessionContext:
    """Context manager that scopes a session id to a block.

    The previous value is restored on exit, so nested sessions (tests, tools
    driving several sessions) do not leak ids into each other.
    """

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id or generate_session_id()
        self._token: contextvars.Token[str | None] | None = None

    def __enter__(self) -> str:
        self._token = _session_id_var.set(self.session_id)
        return self.session_id

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._token is not None:
            _session_id_var.reset(self._token)
            self._token = None
