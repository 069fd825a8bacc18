"""
Order Service — Client-side order cache

Merges a REST snapshot with the realtime event stream. Events may arrive twice
(reconnects, retries) or late (after a fresher snapshot), so every event goes
through:

  1. dedupe: eventId, or a composite identity for events without one
  2. staleness: events older than what the cache already holds are dropped
  3. apply: entity update plus status-index maintenance

Orders and items are stored normalized; ``get_order_with_items`` and
``kitchen_board`` rebuild the nested views on demand.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from order_service.models.order import OrderItemStatus, OrderStatus
from order_service.schemas.events import (
    EVENT_MODELS,
    ORDER_ITEM_STATUS_CHANGED,
    ORDER_NEW,
    ORDER_STATUS_CHANGED,
    OrderItemStatusChangedEvent,
    OrderNewEvent,
    OrderStatusChangedEvent,
)
from order_service.schemas.order import OrderItemResponse, OrderResponse

logger = logging.getLogger(__name__)

KITCHEN_QUEUE_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.IN_PROGRESS)


def event_identity(event: str, payload) -> str:
    if payload.event_id:
        return payload.event_id
    if isinstance(payload, OrderNewEvent):
        return f"{event}:{payload.order_id}:{payload.created_at.isoformat()}"
    if isinstance(payload, OrderStatusChangedEvent):
        return f"{event}:{payload.order_id}:{payload.new_status.value}:{payload.updated_at.isoformat()}"
    return (
        f"{event}:{payload.order_id}:{payload.item_id}:"
        f"{payload.new_status.value}:{payload.updated_at.isoformat()}"
    )


@dataclass
class OptimisticUpdate:
    """Handle returned by ``OrdersCache.set_item_status_optimistic``."""

    item_id: str
    previous_status: OrderItemStatus
    new_status: OrderItemStatus
    _rollback: Callable[["OptimisticUpdate"], bool] = field(repr=False)

    def rollback(self) -> bool:
        """Undo the local change. Returns False if a server event already superseded it."""
        return self._rollback(self)


@dataclass
class KitchenBoard:
    in_progress: list[OrderResponse]
    ready: list[OrderResponse]

    @property
    def all(self) -> list[OrderResponse]:
        return self.in_progress + self.ready


class OrdersCache:
    def __init__(self):
        self.orders: dict[str, OrderResponse] = {}
        self.items: dict[str, OrderItemResponse] = {}
        self.items_by_order: dict[str, list[str]] = {}
        self.index_by_status: dict[OrderStatus, list[str]] = {s: [] for s in OrderStatus}
        self.seen_event_ids: set[str] = set()
        self._pending: dict[str, OptimisticUpdate] = {}

    # ── Index maintenance ────────────────────────────────────────────────────

    def _index_add(self, status: OrderStatus, order_id: str) -> None:
        bucket = self.index_by_status[status]
        if order_id not in bucket:
            bucket.append(order_id)

    def _index_remove(self, status: OrderStatus, order_id: str) -> None:
        bucket = self.index_by_status[status]
        if order_id in bucket:
            bucket.remove(order_id)

    def _store_order(self, order: OrderResponse, items: Iterable[OrderItemResponse]) -> None:
        previous = self.orders.get(order.id)
        if previous is not None:
            self._index_remove(previous.status, order.id)
        self.orders[order.id] = order.model_copy(update={"items": []})
        item_ids = []
        for item in items:
            self.items[item.id] = item
            self._pending.pop(item.id, None)
            item_ids.append(item.id)
        self.items_by_order[order.id] = item_ids
        self._index_add(order.status, order.id)

    # ── Snapshot ─────────────────────────────────────────────────────────────

    def hydrate_snapshot(self, orders: Iterable[OrderResponse | dict[str, Any]]) -> None:
        """Replace everything with a fresh snapshot (e.g. GET /api/v1/orders/active)."""
        self.orders.clear()
        self.items.clear()
        self.items_by_order.clear()
        self.index_by_status = {s: [] for s in OrderStatus}
        self._pending.clear()
        for raw in orders:
            order = raw if isinstance(raw, OrderResponse) else OrderResponse.model_validate(raw)
            self._store_order(order, order.items)
        logger.debug("Hydrated %d orders from snapshot", len(self.orders))

    # ── Events ───────────────────────────────────────────────────────────────

    def apply(self, event: str, data: dict[str, Any]) -> bool:
        """Apply one realtime frame. Returns True if the cache changed."""
        model = EVENT_MODELS.get(event)
        if model is None:
            logger.debug("Ignoring unknown event %s", event)
            return False
        payload = model.model_validate(data)
        if event == ORDER_NEW:
            return self.apply_order_new(payload)
        if event == ORDER_STATUS_CHANGED:
            return self.apply_order_status_changed(payload)
        return self.apply_item_status_changed(payload)

    def _seen(self, event: str, payload) -> str | None:
        event_id = event_identity(event, payload)
        if event_id in self.seen_event_ids:
            logger.debug("Duplicate event ignored: %s", event_id)
            return None
        return event_id

    def apply_order_new(self, payload: OrderNewEvent) -> bool:
        event_id = self._seen(ORDER_NEW, payload)
        if event_id is None:
            return False
        existing = self.orders.get(payload.order_id)
        if existing is not None and payload.created_at <= existing.created_at:
            logger.debug("Stale event ignored: %s", event_id)
            return False

        order = OrderResponse(
            id=payload.order_id,
            restaurant_id=payload.restaurant_id,
            table_session_id=payload.table_session_id,
            created_by_user_id=payload.created_by_user_id or "",
            status=payload.status,
            notes=payload.notes,
            confirmed_at=payload.confirmed_at,
            created_at=payload.created_at,
            updated_at=payload.updated_at,
        )
        self._store_order(order, payload.items)
        self.seen_event_ids.add(event_id)
        return True

    def apply_order_status_changed(self, payload: OrderStatusChangedEvent) -> bool:
        event_id = self._seen(ORDER_STATUS_CHANGED, payload)
        if event_id is None:
            return False
        order = self.orders.get(payload.order_id)
        if order is None:
            logger.warning("Order not found for status change: %s", payload.order_id)
            return False
        if payload.updated_at < order.updated_at:
            logger.debug("Stale order status change ignored: %s", event_id)
            return False

        changes: dict[str, Any] = {"status": payload.new_status, "updated_at": payload.updated_at}
        if payload.new_status == OrderStatus.CONFIRMED and order.confirmed_at is None:
            changes["confirmed_at"] = payload.updated_at
        if payload.new_status == OrderStatus.CLOSED:
            changes["closed_at"] = payload.updated_at
        self._index_remove(order.status, order.id)
        self.orders[order.id] = order.model_copy(update=changes)
        self._index_add(payload.new_status, order.id)
        self.seen_event_ids.add(event_id)
        return True

    def apply_item_status_changed(self, payload: OrderItemStatusChangedEvent) -> bool:
        event_id = self._seen(ORDER_ITEM_STATUS_CHANGED, payload)
        if event_id is None:
            return False
        item = self.items.get(payload.item_id)
        if item is None:
            logger.warning("Item not found for status change: %s", payload.item_id)
            return False
        if payload.updated_at < item.updated_at:
            logger.debug("Stale item status change ignored: %s", event_id)
            return False

        self.items[item.id] = item.model_copy(
            update={"status": payload.new_status, "updated_at": payload.updated_at}
        )
        # server-confirmed state wins over any local optimistic change
        self._pending.pop(item.id, None)
        self.seen_event_ids.add(event_id)
        return True

    # ── Optimistic updates ───────────────────────────────────────────────────

    def set_item_status_optimistic(
        self, order_id: str, item_id: str, new_status: OrderItemStatus
    ) -> OptimisticUpdate:
        """
        Show ``new_status`` immediately, before the server confirms it.

        ``updated_at`` is left alone so the confirming event is never mistaken
        for a stale one.
        """
        item = self.items.get(item_id)
        if item is None or item.order_id != order_id:
            raise KeyError(f"Item {item_id} not found in order {order_id}")

        handle = OptimisticUpdate(
            item_id=item_id,
            previous_status=item.status,
            new_status=new_status,
            _rollback=self._rollback,
        )
        self.items[item_id] = item.model_copy(update={"status": new_status})
        self._pending[item_id] = handle
        return handle

    def _rollback(self, handle: OptimisticUpdate) -> bool:
        if self._pending.get(handle.item_id) is not handle:
            return False
        del self._pending[handle.item_id]
        item = self.items[handle.item_id]
        self.items[handle.item_id] = item.model_copy(update={"status": handle.previous_status})
        return True

    # ── Views ────────────────────────────────────────────────────────────────

    def get_order(self, order_id: str) -> OrderResponse | None:
        return self.orders.get(order_id)

    def get_order_with_items(self, order_id: str) -> OrderResponse | None:
        order = self.orders.get(order_id)
        if order is None:
            return None
        items = [self.items[i] for i in self.items_by_order.get(order_id, []) if i in self.items]
        return order.model_copy(update={"items": items})

    def get_orders_by_status(self, status: OrderStatus) -> list[OrderResponse]:
        return [self.orders[i] for i in self.index_by_status[status] if i in self.orders]

    def all_order_ids(self) -> list[str]:
        return list(self.orders)

    def kitchen_board(self) -> KitchenBoard:
        """Orders the kitchen cares about, most recently touched first."""

        def collect(statuses) -> list[OrderResponse]:
            orders = [self.get_order_with_items(i) for s in statuses for i in self.index_by_status[s]]
            return sorted(orders, key=lambda o: o.updated_at, reverse=True)

        return KitchenBoard(in_progress=collect(KITCHEN_QUEUE_STATUSES), ready=collect((OrderStatus.READY,)))
