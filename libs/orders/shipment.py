"""
Shipment reconciliation for partial and complete deliveries.

The operator proposes a delivered quantity for every line of a validated order.
Quantities are clamped to ``[0, ordered]``; the order service records the
short-ship state and moves the order to SHIPPED.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from libs.common.exceptions import EmptyShipmentError, GuardViolation, ValidationRangeError
from libs.orders.models import Order, OrderItem, OrderStatus

logger = logging.getLogger(__name__)

SHIPPABLE_STATUSES = frozenset({OrderStatus.VALIDATED, OrderStatus.PREPARATION})


class LineFulfillment(str, Enum):
    """Presentation-only classification of a proposed line quantity."""

    COMPLETE = "COMPLETE"
    PARTIAL = "PARTIAL"
    NONE = "NONE"


@dataclass(frozen=True)
class ShipmentLine:
    item_id: str
    reference: str
    ordered: int
    proposed: int

    @property
    def fulfillment(self) -> LineFulfillment:
        if self.proposed == 0:
            return LineFulfillment.NONE
        if self.proposed >= self.ordered:
            return LineFulfillment.COMPLETE
        return LineFulfillment.PARTIAL

    def to_payload(self) -> dict[str, Any]:
        return {"itemId": self.item_id, "quantityDelivered": self.proposed}


@dataclass(frozen=True)
class ShipmentProposal:
    order_id: str
    lines: tuple[ShipmentLine, ...]

    @property
    def is_empty(self) -> bool:
        return all(line.fulfillment == LineFulfillment.NONE for line in self.lines)

    @property
    def is_partial(self) -> bool:
        return any(line.fulfillment != LineFulfillment.COMPLETE for line in self.lines)

    def quantities(self) -> dict[str, int]:
        return {line.item_id: line.proposed for line in self.lines}

    def to_payload(self) -> list[dict[str, Any]]:
        return [line.to_payload() for line in self.lines]


class ShipmentReconciler:
    """Build, clamp and check per-line delivered quantities."""

    def ensure_shippable(self, order: Order) -> None:
        if order.status not in SHIPPABLE_STATUSES:
            raise GuardViolation(
                f"Order in status {order.status.value} cannot be shipped",
                reason="illegal_transition",
                order_id=order.id,
            )

    def default_quantities(self, order: Order) -> dict[str, int]:
        """
        Initial proposal: the recorded delivered quantity, or the full ordered
        quantity when none is recorded. The service serialises a missing value
        as 0, so 0 counts as not recorded.
        """
        return {
            self._item_id(item): item.quantity_delivered or item.quantity
            for item in order.items
        }

    def propose(
        self,
        order: Order,
        quantities: Mapping[str, int] | None = None,
        *,
        strict: bool = False,
    ) -> ShipmentProposal:
        """
        Build a proposal for every line of ``order``.

        Lines missing from ``quantities`` keep their default. Out-of-range
        values are clamped to ``[0, ordered]`` unless ``strict`` is set.

        Raises:
            GuardViolation: If the order is not in a shippable status.
            ValidationRangeError: In strict mode, for an out-of-range value.
        """
        self.ensure_shippable(order)
        proposed = self.default_quantities(order)
        if quantities:
            unknown = set(quantities) - set(proposed)
            if unknown:
                logger.warning(
                    "shipment_unknown_lines_ignored",
                    extra={"order_id": order.id, "item_ids": sorted(unknown)},
                )
            proposed.update({k: v for k, v in quantities.items() if k in proposed})

        lines = []
        for item in order.items:
            item_id = self._item_id(item)
            value = proposed[item_id]
            if not 0 <= value <= item.quantity:
                if strict:
                    raise ValidationRangeError(item_id, value, item.quantity)
                clamped = self.clamp(value, item.quantity)
                logger.info(
                    "shipment_quantity_clamped",
                    extra={
                        "order_id": order.id,
                        "item_id": item_id,
                        "proposed": value,
                        "clamped": clamped,
                    },
                )
                value = clamped
            lines.append(
                ShipmentLine(
                    item_id=item_id,
                    reference=item.reference,
                    ordered=item.quantity,
                    proposed=value,
                )
            )
        return ShipmentProposal(order_id=order.id, lines=tuple(lines))

    def validate_for_submission(self, proposal: ShipmentProposal) -> None:
        """Refuse a proposal in which every line is NONE."""
        if proposal.is_empty:
            raise EmptyShipmentError(proposal.order_id)

    @staticmethod
    def clamp(value: int, ordered: int) -> int:
        return max(0, min(value, ordered))

    @staticmethod
    def _item_id(item: OrderItem) -> str:
        # Lines without a service id are addressed by reference.
        return item.id or item.reference


__all__ = [
    "LineFulfillment",
    "SHIPPABLE_STATUSES",
    "ShipmentLine",
    "ShipmentProposal",
    "ShipmentReconciler",
]
