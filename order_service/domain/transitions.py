"""
Order Service — Order / item state machine

Pure functions, no I/O. Used twice per command: once by the service for a
fast-fail check on freshly loaded rows, and again by the store inside the
per-order lock before the conditional write.

Item edges:
  PENDING     → IN_PROGRESS, CANCELLED
  IN_PROGRESS → READY, CANCELLED
  READY, CANCELLED are terminal

Order edges:
  DRAFT --confirm--> CONFIRMED --(item → IN_PROGRESS)--> IN_PROGRESS
  IN_PROGRESS --(all non-cancelled items READY)--> READY --close--> CLOSED
"""
from typing import Iterable

from order_service.core.errors import BadRequestError, ConflictError
from order_service.models.order import OrderItemStatus, OrderStatus

ITEM_TRANSITIONS: dict[OrderItemStatus, frozenset[OrderItemStatus]] = {
    OrderItemStatus.PENDING: frozenset({OrderItemStatus.IN_PROGRESS, OrderItemStatus.CANCELLED}),
    OrderItemStatus.IN_PROGRESS: frozenset({OrderItemStatus.READY, OrderItemStatus.CANCELLED}),
    OrderItemStatus.READY: frozenset(),
    OrderItemStatus.CANCELLED: frozenset(),
}

# Order statuses in which the kitchen may move items
KITCHEN_ORDER_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.IN_PROGRESS})

# Order statuses in which an item may still be soft-cancelled
CANCELLABLE_ORDER_STATUSES = frozenset({OrderStatus.DRAFT, OrderStatus.CONFIRMED})


def item_transition_allowed(current: OrderItemStatus, requested: OrderItemStatus) -> bool:
    return requested in ITEM_TRANSITIONS.get(current, frozenset())


def _all_active_ready(statuses: Iterable[OrderItemStatus]) -> bool:
    return all(s == OrderItemStatus.READY for s in statuses if s != OrderItemStatus.CANCELLED)


def derive_order_status(
    order_status: OrderStatus,
    item_before: OrderItemStatus,
    item_after: OrderItemStatus,
    all_item_statuses: Iterable[OrderItemStatus],
) -> OrderStatus | None:
    """
    Order status implied by one item moving ``item_before`` → ``item_after``.

    ``all_item_statuses`` must already reflect the change. Returns None when the
    order keeps its status.
    """
    if item_after == OrderItemStatus.IN_PROGRESS and order_status == OrderStatus.CONFIRMED:
        return OrderStatus.IN_PROGRESS
    if (
        item_after == OrderItemStatus.READY
        and order_status == OrderStatus.IN_PROGRESS
        and _all_active_ready(all_item_statuses)
    ):
        return OrderStatus.READY
    return None


def check_confirmable(order_status: OrderStatus, item_statuses: list[OrderItemStatus]) -> None:
    """Raise unless an order with these statuses may be confirmed."""
    if order_status != OrderStatus.DRAFT:
        raise ConflictError(f"Order is {order_status.value}, only DRAFT orders can be confirmed")
    if not item_statuses:
        raise BadRequestError("Order must have at least one item")
    if any(s == OrderItemStatus.CANCELLED for s in item_statuses):
        raise ConflictError("Cannot confirm order with cancelled items")
    if any(s != OrderItemStatus.PENDING for s in item_statuses):
        raise ConflictError("All items must be in PENDING status to confirm order")


def check_closable(order_status: OrderStatus, item_statuses: list[OrderItemStatus]) -> None:
    """Raise unless an order with these statuses may be closed."""
    if not _all_active_ready(item_statuses):
        raise BadRequestError("All items must be READY before closing order")
    if order_status != OrderStatus.READY:
        raise ConflictError(f"Order is {order_status.value}, only READY orders can be closed")


def check_item_status_change(
    order_status: OrderStatus, current: OrderItemStatus, requested: OrderItemStatus
) -> None:
    """Raise unless the kitchen may move an item ``current`` → ``requested``."""
    if order_status not in KITCHEN_ORDER_STATUSES:
        raise ConflictError(
            f"Cannot update item status when order is in {order_status.value} status. "
            "Order must be CONFIRMED or IN_PROGRESS."
        )
    if not item_transition_allowed(current, requested):
        raise ConflictError(f"Invalid status transition from {current.value} to {requested.value}")
