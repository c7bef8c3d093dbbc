"""
Duplicate-reference conflict resolution for carts and order edits.

Adding a reference that is already present is not applied directly: the caller
either supplies a policy (``on_conflict``) or receives a
``ConflictRequiresResolution`` carrying the pending ``LineConflict`` and later
calls ``apply_resolution`` with the user's choice. The existing line keeps its
price and availability snapshot; only its quantity changes.

Example:
    >>> cart = Cart()
    >>> cart.add(product, Decimal("12.50"), 3)
    >>> try:
    ...     cart.add(product, Decimal("12.50"), 2)
    ... except ConflictRequiresResolution as exc:
    ...     cart.apply_resolution(exc.conflict, ConflictChoice.ADD)
    >>> cart.items[0].quantity
    5
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, TypeVar

from libs.common.exceptions import ConflictRequiresResolution, GuardViolation
from libs.orders.models import (
    Availability,
    CartItem,
    Order,
    OrderItem,
    OrderStatus,
    Product,
)

logger = logging.getLogger(__name__)


class ConflictChoice(str, Enum):
    ADD = "ADD"
    REPLACE = "REPLACE"


def resolve_quantity(old_qty: int, new_qty: int, choice: ConflictChoice) -> int:
    """ADD cumulates, REPLACE keeps only the new quantity."""
    if choice == ConflictChoice.ADD:
        return old_qty + new_qty
    if choice == ConflictChoice.REPLACE:
        return new_qty
    raise ValueError(f"Unknown conflict choice: {choice!r}")


@dataclass(frozen=True)
class LineConflict:
    """A pending add that hit an existing reference."""

    reference: str
    designation: str
    old_qty: int
    new_qty: int

    @property
    def label(self) -> str:
        return f"{self.reference} - {self.designation}" if self.designation else self.reference


ConflictPolicy = ConflictChoice | Callable[[LineConflict], ConflictChoice]

_LineT = TypeVar("_LineT", CartItem, OrderItem)


class _LineBook(Generic[_LineT]):
    """Shared add / resolve / update / remove flow over a tuple of lines."""

    def __init__(self, items: tuple[_LineT, ...] = ()) -> None:
        self._items: tuple[_LineT, ...] = items

    @property
    def items(self) -> tuple[_LineT, ...]:
        return self._items

    @property
    def item_count(self) -> int:
        return len(self._items)

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self._items)

    @property
    def total_amount(self) -> Decimal:
        return sum((self._line_total(line) for line in self._items), Decimal("0"))

    def find(self, reference: str) -> _LineT | None:
        return next((line for line in self._items if line.reference == reference), None)

    def add(
        self,
        product: Product,
        net_price: Decimal,
        qty: int,
        *,
        on_conflict: ConflictPolicy | None = None,
    ) -> _LineT:
        """
        Add ``qty`` of ``product`` at ``net_price``.

        Raises:
            ValueError: If ``qty`` is not positive.
            ConflictRequiresResolution: If the reference is already present and
                no ``on_conflict`` policy was given.
        """
        if qty <= 0:
            raise ValueError("Quantity must be positive")

        existing = self.find(product.reference)
        if existing is None:
            line = self._make_line(product, net_price, qty)
            self._items = (*self._items, line)
            logger.debug("line_added", extra={"reference": product.reference, "quantity": qty})
            return line

        conflict = LineConflict(
            reference=product.reference,
            designation=product.designation,
            old_qty=existing.quantity,
            new_qty=qty,
        )
        if on_conflict is None:
            raise ConflictRequiresResolution(conflict)
        choice = on_conflict if isinstance(on_conflict, ConflictChoice) else on_conflict(conflict)
        return self.apply_resolution(conflict, choice)

    def apply_resolution(self, conflict: LineConflict, choice: ConflictChoice) -> _LineT:
        existing = self.find(conflict.reference)
        if existing is None:
            # Removed while the prompt was open.
            raise KeyError(conflict.reference)
        old_qty = existing.quantity
        final_qty = resolve_quantity(old_qty, conflict.new_qty, choice)
        logger.info(
            "line_conflict_resolved",
            extra={
                "reference": conflict.reference,
                "choice": choice.value,
                "old_qty": old_qty,
                "new_qty": conflict.new_qty,
                "final_qty": final_qty,
            },
        )
        return self.update_quantity(conflict.reference, final_qty)

    def update_quantity(self, reference: str, qty: int) -> _LineT:
        """Set the quantity of ``reference``; a quantity below 1 is raised to 1."""
        existing = self.find(reference)
        if existing is None:
            raise KeyError(reference)
        updated = self._with_quantity(existing, max(1, qty))
        self._items = tuple(updated if line is existing else line for line in self._items)
        return updated

    def remove(self, reference: str) -> bool:
        before = len(self._items)
        self._items = tuple(line for line in self._items if line.reference != reference)
        return len(self._items) != before

    def clear(self) -> None:
        self._items = ()

    def _make_line(self, product: Product, net_price: Decimal, qty: int) -> _LineT:
        raise NotImplementedError

    def _with_quantity(self, line: _LineT, qty: int) -> _LineT:
        raise NotImplementedError

    def _line_total(self, line: _LineT) -> Decimal:
        raise NotImplementedError


class Cart(_LineBook[CartItem]):
    """Client cart. Price and availability are fixed when a line is added."""

    def _make_line(self, product: Product, net_price: Decimal, qty: int) -> CartItem:
        return CartItem(
            product=product,
            quantity=qty,
            client_net_price=net_price,
            availability=Availability.from_stock(product.stock),
        )

    def _with_quantity(self, line: CartItem, qty: int) -> CartItem:
        return line.model_copy(update={"quantity": qty})

    def _line_total(self, line: CartItem) -> Decimal:
        return line.line_total

    def to_payload(self) -> list[dict[str, Any]]:
        return [line.to_order_item().to_payload() for line in self._items]


class EditOrderLines(_LineBook[OrderItem]):
    """Working copy of a PENDING order's lines, sent with ``updateOrderContents``."""

    MISSING_TVA_RATE = Decimal("7")

    def __init__(self, order: Order) -> None:
        if order.status != OrderStatus.PENDING:
            raise GuardViolation(
                "Only pending orders can be edited",
                reason="illegal_transition",
                order_id=order.id,
            )
        super().__init__(order.items)
        self.order_id = order.id

    @property
    def is_empty(self) -> bool:
        return not self._items

    def _make_line(self, product: Product, net_price: Decimal, qty: int) -> OrderItem:
        return OrderItem(
            reference=product.reference,
            designation=product.designation,
            quantity=qty,
            unit_price=net_price,
            total_line=net_price * qty,
            tva_rate=product.tva_rate,
            availability=Availability.from_stock(product.stock),
        )

    def _with_quantity(self, line: OrderItem, qty: int) -> OrderItem:
        return line.model_copy(update={"quantity": qty, "total_line": line.unit_price * qty})

    def _line_total(self, line: OrderItem) -> Decimal:
        return line.total_line

    def to_payload(self) -> list[dict[str, Any]]:
        """Lines without a VAT rate are sent with ``MISSING_TVA_RATE``."""
        payload = []
        for line in self._items:
            if line.tva_rate is None:
                line = line.model_copy(update={"tva_rate": self.MISSING_TVA_RATE})
            payload.append(line.to_payload())
        return payload


__all__ = [
    "Cart",
    "ConflictChoice",
    "ConflictPolicy",
    "EditOrderLines",
    "LineConflict",
    "resolve_quantity",
]
