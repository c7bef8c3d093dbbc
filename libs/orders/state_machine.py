"""
Order status state machine.

Legal transitions (initial state PENDING)::

    PENDING     -> VALIDATED | CANCELLED
    VALIDATED   -> PREPARATION | SHIPPED | CANCELLED   (the DMS may skip PREPARATION)
    PREPARATION -> SHIPPED | CANCELLED
    SHIPPED     -> INVOICED
    INVOICED, CANCELLED -> terminal

Every forward transition requires the validation gates (cooldown and edit lock)
to be clear. Cancellation bypasses the gates but is restricted by role: an
operator may cancel any non-terminal order, a client only its PENDING orders.

Example:
    >>> machine = OrderStatusMachine()
    >>> machine.can_transition(OrderStatus.PENDING, OrderStatus.VALIDATED)
    True
    >>> machine.check_transition(
    ...     order, OrderStatus.VALIDATED,
    ...     actor_role=UserRole.FULL_ADMIN, cooldown_clear=False, lock_clear=True,
    ... )
    Traceback (most recent call last):
    GuardViolation: ...
"""

from __future__ import annotations

import logging
from datetime import datetime

from libs.common.exceptions import GuardViolation
from libs.orders.models import OPERATOR_ROLES, Order, OrderStatus, UserRole

logger = logging.getLogger(__name__)

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.VALIDATED, OrderStatus.CANCELLED}),
    OrderStatus.VALIDATED: frozenset(
        {OrderStatus.PREPARATION, OrderStatus.SHIPPED, OrderStatus.CANCELLED}
    ),
    OrderStatus.PREPARATION: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.INVOICED}),
    OrderStatus.INVOICED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset({OrderStatus.INVOICED, OrderStatus.CANCELLED})


class OrderStatusMachine:
    """Pure validator for ``Order.status`` transitions."""

    def can_transition(self, current: OrderStatus, target: OrderStatus) -> bool:
        return target in TRANSITIONS[current]

    def allowed_targets(self, current: OrderStatus) -> frozenset[OrderStatus]:
        return TRANSITIONS[current]

    def is_terminal(self, status: OrderStatus) -> bool:
        return status in TERMINAL_STATUSES

    def check_transition(
        self,
        order: Order,
        target: OrderStatus,
        *,
        actor_role: UserRole,
        cooldown_clear: bool = True,
        lock_clear: bool = True,
    ) -> None:
        """
        Raise ``GuardViolation`` unless ``order`` may move to ``target``.

        Args:
            order: Current cached order.
            target: Requested status.
            actor_role: Role of the user asking for the transition.
            cooldown_clear: Whether the validation cooldown has elapsed.
            lock_clear: Whether no edit lock is held on the order.

        Raises:
            GuardViolation: With ``reason`` one of ``terminal_state``,
                ``illegal_transition``, ``not_authorized``, ``edit_locked``,
                ``cooldown_active``.
        """
        current = order.status
        if self.is_terminal(current):
            raise GuardViolation(
                f"Order is {current.value}; no further transition is possible",
                reason="terminal_state",
                order_id=order.id,
            )
        if not self.can_transition(current, target):
            raise GuardViolation(
                f"Illegal transition {current.value} -> {target.value}",
                reason="illegal_transition",
                order_id=order.id,
            )

        is_operator = actor_role in OPERATOR_ROLES
        if target == OrderStatus.CANCELLED:
            if not is_operator and current != OrderStatus.PENDING:
                raise GuardViolation(
                    "Clients may only cancel pending orders",
                    reason="not_authorized",
                    order_id=order.id,
                )
            return

        if not is_operator:
            raise GuardViolation(
                f"Role {actor_role.value} may not move orders to {target.value}",
                reason="not_authorized",
                order_id=order.id,
            )
        # Lock is checked first: it is the state shown to the operator.
        if not lock_clear:
            raise GuardViolation(
                "Order is being edited by the client",
                reason="edit_locked",
                order_id=order.id,
            )
        if not cooldown_clear:
            raise GuardViolation(
                "Order is still in its validation cooldown",
                reason="cooldown_active",
                order_id=order.id,
            )

    def apply(
        self,
        order: Order,
        target: OrderStatus,
        *,
        actor_role: UserRole,
        cooldown_clear: bool = True,
        lock_clear: bool = True,
        modified_at: datetime | None = None,
    ) -> Order:
        """Return a copy of ``order`` moved to ``target``; ``order`` is untouched."""
        self.check_transition(
            order,
            target,
            actor_role=actor_role,
            cooldown_clear=cooldown_clear,
            lock_clear=lock_clear,
        )
        update: dict[str, object] = {"status": target}
        if modified_at is not None and modified_at > order.effective_last_modified:
            update["last_modified_at"] = modified_at
        logger.debug(
            "order_status_applied",
            extra={"order_id": order.id, "from": order.status.value, "to": target.value},
        )
        return order.model_copy(update=update)


__all__ = ["OrderStatusMachine", "TERMINAL_STATUSES", "TRANSITIONS"]
