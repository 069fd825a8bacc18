"""
Order Service — Use-case orchestration

Each command:
  1. Loads the order outside the lock and fails fast (404, obvious 409/400)
  2. Hands the atomic mutation to OrderStore, which re-checks everything
     under the per-order lock
  3. Emits events only once the store has committed

Store errors propagate untouched; on failure nothing is emitted.
"""
import logging
from typing import Iterable

from order_service.core.errors import ConflictError, NotFoundError
from order_service.db.order_store import OrderStore
from order_service.domain import transitions
from order_service.models.order import Order, OrderItem, OrderItemStatus, OrderStatus
from order_service.schemas.order import AddOrderItemRequest, UpdateOrderItemRequest
from order_service.services.events import EventEmitter

logger = logging.getLogger(__name__)


def _find_item(order: Order, item_id: str) -> OrderItem:
    for item in order.items:
        if item.id == item_id:
            return item
    raise NotFoundError("Order item not found")


def _require_draft(order: Order, action: str) -> None:
    if order.status != OrderStatus.DRAFT:
        raise ConflictError(f"Cannot {action} order that is not in DRAFT status")


class OrderService:
    def __init__(self, store: OrderStore, emitter: EventEmitter):
        self.store = store
        self.emitter = emitter

    # ── Reads ────────────────────────────────────────────────────────────────

    async def get_order(self, tenant: str, order_id: str) -> Order:
        return await self.store.get_order(tenant, order_id)

    async def list_active_orders(
        self,
        tenant: str,
        statuses: Iterable[OrderStatus] | None = None,
        table_session_id: str | None = None,
    ) -> list[Order]:
        return await self.store.list_orders(tenant, statuses, table_session_id)

    # ── Waiter commands ──────────────────────────────────────────────────────

    async def create_order(
        self, tenant: str, user_id: str, table_session_id: str, notes: str | None = None
    ) -> Order:
        return await self.store.create_order(tenant, user_id, table_session_id, notes)

    async def add_item(self, tenant: str, order_id: str, payload: AddOrderItemRequest) -> OrderItem:
        order = await self.store.get_order(tenant, order_id)
        _require_draft(order, "add items to")
        return await self.store.add_item(
            tenant, order_id, payload.name, payload.qty, payload.unit_price, payload.notes
        )

    async def update_item(
        self, tenant: str, order_id: str, item_id: str, payload: UpdateOrderItemRequest
    ) -> OrderItem:
        order = await self.store.get_order(tenant, order_id)
        _require_draft(order, "update items in")
        if _find_item(order, item_id).status == OrderItemStatus.CANCELLED:
            raise ConflictError("Cannot update cancelled item")
        return await self.store.update_item(tenant, order_id, item_id, payload.changes())

    async def cancel_item(self, tenant: str, order_id: str, item_id: str) -> OrderItem:
        order = await self.store.get_order(tenant, order_id)
        if order.status not in transitions.CANCELLABLE_ORDER_STATUSES:
            raise ConflictError("Cannot cancel items from order that is not in DRAFT or CONFIRMED status")
        _find_item(order, item_id)

        cancellation = await self.store.cancel_item(tenant, order_id, item_id)
        self.emitter.item_status_changed(cancellation.item, cancellation.previous_status)
        return cancellation.item

    async def confirm_order(self, tenant: str, order_id: str) -> Order:
        order = await self.store.get_order(tenant, order_id)
        transitions.check_confirmable(order.status, [i.status for i in order.items])

        transition = await self.store.confirm_order(tenant, order_id)
        self.emitter.order_new(transition.order)
        return transition.order

    # ── Kitchen commands ─────────────────────────────────────────────────────

    async def set_item_status(
        self, tenant: str, order_id: str, item_id: str, status: OrderItemStatus
    ) -> OrderItem:
        order = await self.store.get_order(tenant, order_id)
        item = _find_item(order, item_id)
        transitions.check_item_status_change(order.status, item.status, status)

        # The status seen here is the expected prior state for the conditional write
        change = await self.store.set_item_status(tenant, order_id, item_id, item.status, status)
        self.emitter.item_status_changed(change.item, change.previous_item_status)
        if change.order_changed:
            self.emitter.order_status_changed(change.order, change.previous_order_status)
        return change.item

    # ── Cashier commands ─────────────────────────────────────────────────────

    async def close_order(self, tenant: str, order_id: str) -> Order:
        order = await self.store.get_order(tenant, order_id)
        transitions.check_closable(order.status, [i.status for i in order.items])

        transition = await self.store.close_order(tenant, order_id)
        self.emitter.order_status_changed(transition.order, transition.previous_status)
        return transition.order
