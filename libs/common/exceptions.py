"""
Exception hierarchy for the order console.

Errors are split by how they are recovered:

- Guard and validation conditions are resolved in place (controls stay
  disabled, quantities are clamped) and never reach the user as an error.
- Conflicts are decisions the user must take, not failures.
- Network and service failures produce exactly one user-visible notification
  per user-initiated action and leave the local cache untouched.
"""

from __future__ import annotations

from typing import Any


class OrderConsoleError(Exception):
    """
    Base exception for all order console errors.

    Example:
        >>> try:
        ...     await coordinator.update_status(order_id, OrderStatus.VALIDATED)
        ... except OrderConsoleError as e:
        ...     logger.warning("order_action_refused", extra={"error": str(e)})
    """

    pass


class GuardViolation(OrderConsoleError):
    """
    Raised when a status transition is illegal or its gates are not clear.

    ``reason`` is a stable machine-readable code (``illegal_transition``,
    ``terminal_state``, ``cooldown_active``, ``edit_locked``, ``not_authorized``,
    ``empty_shipment``...) so callers can keep the matching control disabled
    without parsing the message.

    Example:
        >>> raise GuardViolation(
        ...     "Order is still in its validation cooldown",
        ...     reason="cooldown_active",
        ...     order_id="ord-1",
        ... )
    """

    def __init__(self, message: str, *, reason: str, order_id: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.order_id = order_id


class EmptyShipmentError(GuardViolation):
    """Raised when every proposed delivered quantity of a shipment is zero."""

    def __init__(self, order_id: str) -> None:
        super().__init__(
            "Shipment has no delivered quantity on any line",
            reason="empty_shipment",
            order_id=order_id,
        )


class ConflictRequiresResolution(OrderConsoleError):
    """
    Raised when a line is added for a reference that is already present.

    Not an error: the caller must ask the user (or apply a policy) and then
    call ``apply_resolution`` with the chosen outcome. The pending decision is
    carried in ``conflict``.
    """

    def __init__(self, conflict: Any) -> None:
        super().__init__(
            f"Reference {conflict.reference} already present "
            f"(quantity {conflict.old_qty}, requested {conflict.new_qty})"
        )
        self.conflict = conflict


class TransientNetworkFailure(OrderConsoleError):
    """
    Raised when a call to the order service fails.

    ``message`` is the service-provided message when the response carried one,
    otherwise a generic description of the transport failure.
    """

    def __init__(self, message: str, *, operation: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class ValidationRangeError(OrderConsoleError):
    """
    Raised when a shipment quantity lies outside ``[0, ordered]``.

    The default reconciliation path clamps instead of raising; this is only
    raised when strict checking is requested.
    """

    def __init__(self, item_id: str, proposed: int, ordered: int) -> None:
        super().__init__(
            f"Delivered quantity {proposed} for line {item_id} is outside [0, {ordered}]"
        )
        self.item_id = item_id
        self.proposed = proposed
        self.ordered = ordered


class PrivilegedOperationDenied(OrderConsoleError):
    """Raised when a privileged action is attempted without the required role."""

    def __init__(self, operation: str, role: str) -> None:
        super().__init__(f"Role {role} may not perform {operation}")
        self.operation = operation
        self.role = role


class ConfigurationError(OrderConsoleError):
    """Raised when required configuration is missing or invalid."""

    pass
