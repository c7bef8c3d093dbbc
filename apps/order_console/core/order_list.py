"""Order list coordinator.

Single writer of the local order cache. Every update signal (polling timer,
``orderUpdated`` events, lock events, DMS sync) is an invalidation feeding one
coalescing refetch; nothing is merged as a delta. User-initiated mutations
touch the cache only after the order service acknowledged them; on failure
the cache keeps its last-known-good state and exactly one error notification
is emitted.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from apps.order_console import config
from apps.order_console.core.client import AsyncOrderServiceClient, as_network_failure
from apps.order_console.core.editing_channel import EditingLockChannel
from apps.order_console.core.notification_router import (
    NotificationRouter,
    notify_error,
    notify_success,
)
from libs.common.exceptions import (
    GuardViolation,
    PrivilegedOperationDenied,
    TransientNetworkFailure,
)
from libs.orders.cart import EditOrderLines
from libs.orders.cooldown import CooldownCountdown, ValidationCooldownGate, ValidationState
from libs.orders.filters import OrderQuery, OrderTab, SortSpec, tab_counts
from libs.orders.models import Actor, EditingStatus, Order, OrderStatus, OrderUpdateEvent, UserRole
from libs.orders.shipment import ShipmentProposal, ShipmentReconciler
from libs.orders.state_machine import OrderStatusMachine
from libs.orders.totals import OrderTotals, order_totals

if TYPE_CHECKING:
    from apps.order_console.core.dms_sync import DmsSyncScheduler
    from libs.orders.models import DmsSyncResult

logger = logging.getLogger(__name__)

_SERVICE_ERRORS = (httpx.HTTPError, ValueError, ValidationError)

STATUS_MESSAGES: dict[OrderStatus, str] = {
    OrderStatus.VALIDATED: "Commande validée et transférée au DMS avec succès !",
    OrderStatus.CANCELLED: "Commande annulée.",
}
STATUS_UPDATED_MESSAGE = "Statut mis à jour."
STATUS_FAILED_MESSAGE = "Erreur lors de la mise à jour du statut"
CONTENTS_UPDATED_MESSAGE = "Commande mise à jour avec succès."
CONTENTS_FAILED_MESSAGE = "Erreur lors de la mise à jour de la commande"
SHIPPED_MESSAGE = "Expédition enregistrée."
SHIP_FAILED_MESSAGE = "Erreur lors de l'expédition"
DELETED_MESSAGE = "Commande supprimée avec succès"
DELETE_FAILED_MESSAGE = "Erreur lors de la suppression"
LOCK_FAILED_MESSAGE = "Erreur lors du verrouillage de la commande"
PRINT_FAILED_MESSAGE = "Erreur lors de l'impression du bon de préparation"
ORDER_NOT_FOUND_MESSAGE = "Commande non trouvée."

DELETE_ROLES = frozenset({UserRole.SYSTEM_ADMIN})
EDIT_ROLES = frozenset({UserRole.CLIENT_ADMIN})


class OrderListCoordinator:
    """
    Authoritative order cache for one console session.

    Composes the status machine, the cooldown gate, the edit-lock channel,
    the shipment reconciler and (for operators) the DMS scheduler.

    Example:
        >>> coordinator = OrderListCoordinator(actor, channel, notifier)
        >>> await coordinator.refresh()
        >>> coordinator.view(OrderQuery(tab=OrderTab.ACTIVE))
        [...]
        >>> await coordinator.update_status(order_id, OrderStatus.VALIDATED)
    """

    def __init__(
        self,
        actor: Actor,
        channel: EditingLockChannel,
        notifier: NotificationRouter,
        *,
        client: AsyncOrderServiceClient | None = None,
        gate: ValidationCooldownGate | None = None,
        refresh_seconds: float | None = None,
        default_tva_rate: Decimal | None = None,
    ) -> None:
        self.actor = actor
        self.channel = channel
        self.notifier = notifier
        self.gate = gate or ValidationCooldownGate(config.VALIDATION_COOLDOWN_SECONDS)
        self.machine = OrderStatusMachine()
        self.reconciler = ShipmentReconciler()
        self.dms_scheduler: DmsSyncScheduler | None = None
        self.refresh_seconds = (
            config.ORDER_LIST_REFRESH_SECONDS if refresh_seconds is None else refresh_seconds
        )
        self.default_tva_rate = (
            Decimal(config.DEFAULT_TVA_RATE) if default_tva_rate is None else default_tva_rate
        )
        self._client = client or AsyncOrderServiceClient.get()
        self._orders: dict[str, Order] = {}
        self._countdowns: dict[str, CooldownCountdown] = {}
        self._listeners: list[Callable[[], Any]] = []
        self._refresh_task: asyncio.Task[None] | None = None
        self._refresh_pending = False
        self._poll_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self.last_failure: TransientNetworkFailure | None = None

        channel.on_lock_change(self._on_lock_change)
        channel.on_order_update(self._on_order_update)
        channel.on_reset(self._on_channel_reset)

    # ------------------------------------------------------------------
    # Cache and views
    # ------------------------------------------------------------------

    @property
    def orders(self) -> tuple[Order, ...]:
        return tuple(self._orders.values())

    def get(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)

    def on_change(self, callback: Callable[[], Any]) -> None:
        """Register a callback fired after every cache replacement."""
        self._listeners.append(callback)

    def view(self, query: OrderQuery | None = None, sort: SortSpec | None = None) -> list[Order]:
        query = query or OrderQuery()
        if not self.actor.is_operator and query.company:
            # Clients only ever see their own company; the filter is meaningless.
            query = replace(query, company="")
        return (sort or SortSpec()).apply(query.apply(self._orders.values()))

    def tab_counts(self) -> dict[OrderTab, int]:
        return tab_counts(self._orders.values())

    def totals(self, order_id: str) -> OrderTotals:
        return order_totals(self._require(order_id), self.default_tva_rate)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def lock_for(self, order_id: str) -> EditingStatus | None:
        """Current lock holder, from the channel or from the cached order."""
        lock = self.channel.locks.get(order_id)
        if lock is not None:
            return lock
        order = self._orders.get(order_id)
        if order is not None and order.is_editing:
            return EditingStatus(
                order_id=order.id,
                is_editing=True,
                editing_by_user_id=order.editing_by_user_id,
                editing_by_user_name=order.editing_by_user_name,
                editing_started_at=order.editing_started_at,
            )
        return None

    def time_left(self, order_id: str) -> int:
        return self.gate.time_left(self._require(order_id))

    def validation_state(self, order_id: str) -> ValidationState:
        return self.gate.validation_state(self._require(order_id), self.lock_for(order_id))

    def can_validate(self, order_id: str) -> bool:
        order = self._orders.get(order_id)
        if order is None or not self.actor.is_operator:
            return False
        return (
            self.machine.can_transition(order.status, OrderStatus.VALIDATED)
            and self.validation_state(order_id) == ValidationState.READY
        )

    def watch_cooldown(self, order_id: str, on_tick: Callable[[int], Any]) -> CooldownCountdown:
        """Start a one-second countdown for ``order_id``, re-armed by refetches."""
        existing = self._countdowns.get(order_id)
        if existing is not None and existing.running:
            return existing
        countdown = CooldownCountdown(self.gate, self._require(order_id), on_tick)
        countdown.start()
        self._countdowns[order_id] = countdown
        return countdown

    async def unwatch_cooldown(self, order_id: str) -> None:
        countdown = self._countdowns.pop(order_id, None)
        if countdown is not None:
            await countdown.cancel()

    # ------------------------------------------------------------------
    # Refetch
    # ------------------------------------------------------------------

    def start_polling(self) -> asyncio.Task[None]:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll())
        return self._poll_task

    async def _poll(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception:
                logger.exception("order_list_poll_error")
            await asyncio.sleep(self.refresh_seconds)

    def invalidate(self) -> asyncio.Task[None]:
        """Schedule a refetch without waiting for it."""
        task = asyncio.create_task(self.refresh())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def refresh(self) -> None:
        """
        Refetch the order list.

        Calls made while a refetch is in flight are coalesced into a single
        follow-up refetch. Fetch failures are logged and keep the cache.
        """
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_pending = True
            await asyncio.shield(self._refresh_task)
            return
        self._refresh_task = asyncio.create_task(self._refresh_until_clean())
        await asyncio.shield(self._refresh_task)

    async def _refresh_until_clean(self) -> None:
        while True:
            self._refresh_pending = False
            await self._fetch_once()
            if not self._refresh_pending:
                return

    async def _fetch_once(self) -> None:
        company = None if self.actor.is_operator else self.actor.company_name
        try:
            fetched = await self._client.list_orders(
                self.actor.user_id, self.actor.role.value, company
            )
        except _SERVICE_ERRORS as exc:
            logger.warning("order_list_refresh_failed", extra={"error": str(exc)})
            return
        self._replace_cache(fetched)

    def _replace_cache(self, fetched: list[Order]) -> None:
        replaced: dict[str, Order] = {}
        for order in fetched:
            cached = self._orders.get(order.id)
            if (
                cached is not None
                and cached.effective_last_modified > order.effective_last_modified
            ):
                # Stale response; last_modified_at never goes backwards.
                logger.debug("order_list_stale_entry_kept", extra={"order_id": order.id})
                order = cached
            replaced[order.id] = order
        self._orders = replaced

        for order_id, countdown in list(self._countdowns.items()):
            order = replaced.get(order_id)
            if order is None:
                self._cancel_in_background(self._countdowns.pop(order_id))
            else:
                countdown.rearm(order)

        logger.debug("order_list_refreshed", extra={"count": len(replaced)})
        self._fire_listeners()

    def _store(self, order: Order) -> None:
        """Replace one entry with an acknowledged server version."""
        cached = self._orders.get(order.id)
        if cached is not None and cached.effective_last_modified > order.effective_last_modified:
            return
        self._orders = {**self._orders, order.id: order}
        countdown = self._countdowns.get(order.id)
        if countdown is not None:
            countdown.rearm(order)
        self._fire_listeners()

    def _fire_listeners(self) -> None:
        for callback in list(self._listeners):
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    self._spawn(result)
            except Exception:
                logger.exception("order_list_listener_error")

    async def _on_lock_change(self, status: EditingStatus) -> None:
        self._fire_listeners()
        self.invalidate()

    async def _on_order_update(self, event: OrderUpdateEvent) -> None:
        logger.debug("order_update_received", extra={"order_id": event.order_id})
        self.invalidate()

    async def _on_channel_reset(self) -> None:
        # Lock knowledge is gone; views must drop lock badges and refetch.
        logger.debug("order_list_channel_reset")
        self._fire_listeners()
        self.invalidate()

    # ------------------------------------------------------------------
    # User-initiated mutations
    # ------------------------------------------------------------------

    async def update_status(
        self,
        order_id: str,
        target: OrderStatus,
        *,
        print_on_validate: bool = False,
    ) -> Order | None:
        """
        Move an order to ``target``.

        Raises:
            GuardViolation: If the transition is illegal or a gate is not
                clear; no call is made.

        Returns:
            The acknowledged order, or ``None`` when the service call failed
            (the failure was notified).
        """
        order = self._require(order_id)
        self.machine.check_transition(
            order,
            target,
            actor_role=self.actor.role,
            cooldown_clear=self.gate.is_clear(order),
            lock_clear=self.lock_for(order_id) is None,
        )
        try:
            updated = await self._client.update_order_status(
                order_id, target, self.actor.user_id, self.actor.role.value
            )
        except _SERVICE_ERRORS as exc:
            return self._fail("update_order_status", exc, STATUS_FAILED_MESSAGE, order_id)

        logger.info(
            "order_status_updated",
            extra={"order_id": order_id, "from": order.status.value, "to": target.value},
        )
        self._store(updated)
        notify_success(self.notifier, STATUS_MESSAGES.get(target, STATUS_UPDATED_MESSAGE))
        if target == OrderStatus.VALIDATED and print_on_validate:
            self._spawn(self.print_preparation_slip(order_id))
        self.invalidate()
        return updated

    def propose_shipment(
        self,
        order_id: str,
        quantities: Mapping[str, int] | None = None,
        *,
        strict: bool = False,
    ) -> ShipmentProposal:
        return self.reconciler.propose(self._require(order_id), quantities, strict=strict)

    async def ship(
        self,
        order_id: str,
        quantities: Mapping[str, int] | None = None,
    ) -> Order | None:
        """
        Submit delivered quantities for every line.

        Raises:
            PrivilegedOperationDenied: For non-operator roles.
            GuardViolation: If the order is not shippable.
            EmptyShipmentError: If every line is NONE; no call is made.
        """
        if not self.actor.is_operator:
            raise PrivilegedOperationDenied("ship_order", self.actor.role.value)
        proposal = self.propose_shipment(order_id, quantities)
        self.reconciler.validate_for_submission(proposal)
        try:
            shipped = await self._client.ship_order(
                order_id, proposal.to_payload(), self.actor.user_id, self.actor.role.value
            )
        except _SERVICE_ERRORS as exc:
            return self._fail("ship_order", exc, SHIP_FAILED_MESSAGE, order_id)

        logger.info(
            "order_shipped",
            extra={"order_id": order_id, "partial": proposal.is_partial},
        )
        self._store(shipped)
        notify_success(self.notifier, SHIPPED_MESSAGE)
        self.invalidate()
        return shipped

    async def delete(self, order_id: str) -> bool:
        """
        Hard-delete an order. Irreversible.

        Raises:
            PrivilegedOperationDenied: Unless the actor is SYSTEM_ADMIN; no call
                is made.
        """
        if self.actor.role not in DELETE_ROLES:
            raise PrivilegedOperationDenied("delete_order", self.actor.role.value)
        try:
            result = await self._client.delete_order(
                order_id, self.actor.user_id, self.actor.role.value
            )
        except _SERVICE_ERRORS as exc:
            self._fail("delete_order", exc, DELETE_FAILED_MESSAGE, order_id)
            return False

        logger.info("order_deleted", extra={"order_id": order_id})
        self._orders = {k: v for k, v in self._orders.items() if k != order_id}
        countdown = self._countdowns.pop(order_id, None)
        if countdown is not None:
            self._cancel_in_background(countdown)
        self._fire_listeners()
        notify_success(self.notifier, str(result.get("message") or DELETED_MESSAGE))
        self.invalidate()
        return True

    async def sync_dms(self) -> DmsSyncResult | None:
        """Manual DMS synchronization (operators only)."""
        if self.dms_scheduler is None:
            raise PrivilegedOperationDenied("sync_dms_orders", self.actor.role.value)
        return await self.dms_scheduler.sync_now()

    async def print_preparation_slip(self, order_id: str) -> bool:
        if order_id not in self._orders:
            notify_error(self.notifier, ORDER_NOT_FOUND_MESSAGE, order_id=order_id)
            return False
        try:
            await self._client.print_preparation_slip(
                order_id, self.actor.user_id, self.actor.role.value
            )
        except _SERVICE_ERRORS as exc:
            self._fail("print_preparation_slip", exc, PRINT_FAILED_MESSAGE, order_id)
            return False
        return True

    async def fetch_positions(self, order_id: str) -> dict[str, str]:
        return await self._client.fetch_order_positions(
            order_id, self.actor.user_id, self.actor.role.value
        )

    # ------------------------------------------------------------------
    # Edit session
    # ------------------------------------------------------------------

    async def begin_edit(self, order_id: str) -> EditOrderLines | None:
        """
        Lock a PENDING order and return a working copy of its lines.

        Raises:
            PrivilegedOperationDenied: Unless the actor is CLIENT_ADMIN.
            GuardViolation: If the order is not PENDING.
        """
        if self.actor.role not in EDIT_ROLES:
            raise PrivilegedOperationDenied("update_order_contents", self.actor.role.value)
        lines = EditOrderLines(self._require(order_id))
        try:
            await self.channel.acquire(order_id)
        except _SERVICE_ERRORS as exc:
            return self._fail("set_order_editing", exc, LOCK_FAILED_MESSAGE, order_id)
        return lines

    async def save_edit(self, lines: EditOrderLines) -> Order | None:
        """
        Send the edited lines. The service releases the lock on success.

        Raises:
            GuardViolation: If no line is left; no call is made.
        """
        if lines.is_empty:
            raise GuardViolation(
                "An order needs at least one line",
                reason="empty_order",
                order_id=lines.order_id,
            )
        try:
            updated = await self._client.update_order_contents(
                lines.order_id,
                lines.to_payload(),
                self.actor.user_id,
                self.actor.role.value,
                self.actor.company_name,
            )
        except _SERVICE_ERRORS as exc:
            return self._fail("update_order_contents", exc, CONTENTS_FAILED_MESSAGE, lines.order_id)

        self.channel.forget_lock(lines.order_id)
        logger.info(
            "order_contents_updated",
            extra={"order_id": lines.order_id, "lines": lines.item_count},
        )
        self._store(updated)
        notify_success(self.notifier, CONTENTS_UPDATED_MESSAGE)
        self.invalidate()
        return updated

    async def abandon_edit(self, lines: EditOrderLines) -> None:
        """Drop the working copy and release the lock."""
        try:
            await self.channel.release(lines.order_id)
        except _SERVICE_ERRORS as exc:
            self._fail("set_order_editing", exc, LOCK_FAILED_MESSAGE, lines.order_id)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Stop polling, countdowns and any in-flight refetch."""
        tasks = [self._poll_task, self._refresh_task, *self._background]
        self._poll_task = None
        self._refresh_task = None
        for countdown in self._countdowns.values():
            await countdown.cancel()
        self._countdowns.clear()
        for task in tasks:
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._background.clear()

    # ------------------------------------------------------------------

    def _require(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise KeyError(order_id)
        return order

    def _fail(self, operation: str, exc: Exception, default: str, order_id: str) -> None:
        failure = as_network_failure(exc, operation, default)
        self.last_failure = failure
        logger.warning(
            "order_action_failed",
            extra={
                "operation": operation,
                "order_id": order_id,
                "status_code": failure.status_code,
                "error": str(exc),
            },
        )
        notify_error(self.notifier, str(failure), order_id=order_id)
        return None

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _cancel_in_background(self, countdown: CooldownCountdown) -> None:
        self._spawn(countdown.cancel())


__all__ = [
    "DELETE_ROLES",
    "EDIT_ROLES",
    "OrderListCoordinator",
    "STATUS_MESSAGES",
    "STATUS_UPDATED_MESSAGE",
]
