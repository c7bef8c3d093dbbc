"""
Order lifecycle library.

This library provides:
- Order aggregate models with alias normalization at ingestion
- Status state machine with cooldown and edit-lock guards
- Ephemeral edit-lock store
- Shipment reconciliation for partial deliveries
- Duplicate-line conflict resolution for carts and order edits
- HT / TVA / TTC totals and list views (filters, sort, tabs)

Example:
    >>> from libs.orders import Order, OrderStatus, OrderStatusMachine, ValidationCooldownGate
    >>>
    >>> order = Order.model_validate(payload)
    >>> gate = ValidationCooldownGate(cooldown_seconds=30)
    >>> OrderStatusMachine().check_transition(
    ...     order,
    ...     OrderStatus.VALIDATED,
    ...     actor_role=UserRole.FULL_ADMIN,
    ...     cooldown_clear=gate.is_clear(order),
    ...     lock_clear=not order.is_editing,
    ... )
"""

from libs.orders.cart import Cart, ConflictChoice, EditOrderLines, LineConflict, resolve_quantity
from libs.orders.cooldown import CooldownCountdown, ValidationCooldownGate, ValidationState
from libs.orders.filters import OrderQuery, OrderTab, SortDirection, SortSpec, tab_counts
from libs.orders.lock_store import EditingLockStore
from libs.orders.models import (
    Actor,
    Availability,
    CartItem,
    DmsSyncResult,
    DocumentType,
    EditingStatus,
    Order,
    OrderDocumentRef,
    OrderItem,
    OrderStatus,
    OrderType,
    OrderUpdateEvent,
    Product,
    UserRole,
)
from libs.orders.shipment import LineFulfillment, ShipmentProposal, ShipmentReconciler
from libs.orders.state_machine import OrderStatusMachine
from libs.orders.totals import OrderTotals, order_totals, vat_breakdown

__all__ = [
    "Actor",
    "Availability",
    "Cart",
    "CartItem",
    "ConflictChoice",
    "CooldownCountdown",
    "DmsSyncResult",
    "DocumentType",
    "EditOrderLines",
    "EditingLockStore",
    "EditingStatus",
    "LineConflict",
    "LineFulfillment",
    "Order",
    "OrderDocumentRef",
    "OrderItem",
    "OrderQuery",
    "OrderStatus",
    "OrderStatusMachine",
    "OrderTab",
    "OrderTotals",
    "OrderType",
    "OrderUpdateEvent",
    "Product",
    "ShipmentProposal",
    "ShipmentReconciler",
    "SortDirection",
    "SortSpec",
    "UserRole",
    "ValidationCooldownGate",
    "ValidationState",
    "order_totals",
    "resolve_quantity",
    "tab_counts",
    "vat_breakdown",
]
