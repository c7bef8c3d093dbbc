"""Filtered and sorted views over the cached order list."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from libs.orders.models import Order, OrderStatus, OrderType


class OrderTab(str, Enum):
    ACTIVE = "ACTIVE"
    HISTORY = "HISTORY"


TAB_STATUSES: dict[OrderTab, frozenset[OrderStatus]] = {
    OrderTab.ACTIVE: frozenset(
        {OrderStatus.PENDING, OrderStatus.VALIDATED, OrderStatus.PREPARATION}
    ),
    OrderTab.HISTORY: frozenset(
        {OrderStatus.SHIPPED, OrderStatus.INVOICED, OrderStatus.CANCELLED}
    ),
}


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


SORT_KEYS = frozenset(
    {
        "date",
        "created_at",
        "last_modified_at",
        "total_amount",
        "status",
        "company_name",
        "order_type",
        "dms_ref",
        "order_number",
    }
)


@dataclass(frozen=True)
class SortSpec:
    key: str = "date"
    direction: SortDirection = SortDirection.DESC

    def __post_init__(self) -> None:
        if self.key not in SORT_KEYS:
            raise ValueError(f"Unsupported sort key: {self.key}")

    def toggle(self, key: str) -> SortSpec:
        """Clicking the active ascending column flips it; anything else sorts ascending."""
        if key == self.key and self.direction == SortDirection.ASC:
            return SortSpec(key=key, direction=SortDirection.DESC)
        return SortSpec(key=key, direction=SortDirection.ASC)

    def apply(self, orders: Iterable[Order]) -> list[Order]:
        """
        Stable sort on ``key``. Orders without a value for the key are kept
        after the sorted ones, in their original relative order.
        """
        present: list[Order] = []
        missing: list[Order] = []
        for order in orders:
            (missing if _sort_value(order, self.key) is None else present).append(order)
        present.sort(
            key=lambda o: _sort_value(o, self.key),
            reverse=self.direction == SortDirection.DESC,
        )
        return present + missing


@dataclass(frozen=True)
class OrderQuery:
    """Column filters of the order list. Empty fields do not filter."""

    tab: OrderTab | None = OrderTab.ACTIVE
    company: str = ""
    order_type: OrderType | None = None
    status: OrderStatus | None = None
    ref: str = ""
    date_from: date | None = None
    date_to: date | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None

    @property
    def has_active_filters(self) -> bool:
        return any(
            (
                self.company,
                self.order_type,
                self.status,
                self.ref,
                self.date_from,
                self.date_to,
                self.min_amount is not None,
                self.max_amount is not None,
            )
        )

    def with_tab(self, tab: OrderTab) -> OrderQuery:
        # A status from the other tab would hide everything.
        status = self.status if self.status in TAB_STATUSES[tab] else None
        return replace(self, tab=tab, status=status)

    def matches(self, order: Order) -> bool:
        if self.tab is not None and order.status not in TAB_STATUSES[self.tab]:
            return False
        if self.company and self.company.lower() not in (order.company_name or "").lower():
            return False
        if self.order_type is not None and order.order_type != self.order_type:
            return False
        if self.status is not None and order.status != self.status:
            return False
        if self.ref:
            needle = self.ref.lower()
            haystack = (order.dms_ref, order.order_number, order.id)
            if not any(value and needle in value.lower() for value in haystack):
                return False
        if self.date_from is not None and order.date < self.date_from:
            return False
        if self.date_to is not None and order.date > self.date_to:
            return False
        if self.min_amount is not None and order.total_amount < self.min_amount:
            return False
        if self.max_amount is not None and order.total_amount > self.max_amount:
            return False
        return True

    def apply(self, orders: Iterable[Order]) -> list[Order]:
        return [order for order in orders if self.matches(order)]


def tab_counts(orders: Iterable[Order]) -> dict[OrderTab, int]:
    counts = dict.fromkeys(OrderTab, 0)
    for order in orders:
        for tab, statuses in TAB_STATUSES.items():
            if order.status in statuses:
                counts[tab] += 1
    return counts


def _sort_value(order: Order, key: str) -> Any:
    value = getattr(order, key)
    if isinstance(value, Enum):
        return value.value
    return value


__all__ = [
    "OrderQuery",
    "OrderTab",
    "SORT_KEYS",
    "SortDirection",
    "SortSpec",
    "TAB_STATUSES",
    "tab_counts",
]
