"""HT / TVA / TTC totals for orders and edited line sets."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from libs.orders.models import Order, OrderItem

DEFAULT_TVA_RATE = Decimal("20")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class OrderTotals:
    total_ht: Decimal
    total_tva: Decimal

    @property
    def total_ttc(self) -> Decimal:
        return self.total_ht + self.total_tva


@dataclass(frozen=True)
class VatGroup:
    rate: Decimal
    base_ht: Decimal
    vat: Decimal


def order_totals(order: Order, default_rate: Decimal = DEFAULT_TVA_RATE) -> OrderTotals:
    """
    HT is the order's ``total_amount``; TVA is summed per line at the line's
    rate, or ``default_rate`` when the line has none. An order without lines
    is taxed flat at ``default_rate``.
    """
    if not order.items:
        return OrderTotals(
            total_ht=order.total_amount,
            total_tva=order.total_amount * default_rate / _HUNDRED,
        )
    total_tva = sum(
        (
            item.unit_price * item.quantity * _rate(item, default_rate) / _HUNDRED
            for item in order.items
        ),
        Decimal("0"),
    )
    return OrderTotals(total_ht=order.total_amount, total_tva=total_tva)


def vat_breakdown(lines: Iterable[OrderItem]) -> list[VatGroup]:
    """Group VAT by rate, ascending. Lines without a rate are left out."""
    groups: dict[Decimal, tuple[Decimal, Decimal]] = {}
    for line in lines:
        if line.tva_rate is None:
            continue
        base = line.unit_price * line.quantity
        vat = base * line.tva_rate / _HUNDRED
        prev_base, prev_vat = groups.get(line.tva_rate, (Decimal("0"), Decimal("0")))
        groups[line.tva_rate] = (prev_base + base, prev_vat + vat)
    return [
        VatGroup(rate=rate, base_ht=base, vat=vat) for rate, (base, vat) in sorted(groups.items())
    ]


def lines_totals(lines: Iterable[OrderItem]) -> OrderTotals:
    """Edit-summary totals: HT over every line, TVA over the rated lines only."""
    lines = list(lines)
    total_ht = sum((line.unit_price * line.quantity for line in lines), Decimal("0"))
    total_tva = sum((group.vat for group in vat_breakdown(lines)), Decimal("0"))
    return OrderTotals(total_ht=total_ht, total_tva=total_tva)


def _rate(item: OrderItem, default_rate: Decimal) -> Decimal:
    return item.tva_rate if item.tva_rate is not None else default_rate


__all__ = [
    "DEFAULT_TVA_RATE",
    "OrderTotals",
    "VatGroup",
    "lines_totals",
    "order_totals",
    "vat_breakdown",
]
