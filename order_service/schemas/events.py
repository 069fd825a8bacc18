"""
Order Service — Realtime event payloads

Every frame on the WebSocket is ``{"event": <name>, "data": <payload>}``.
Payloads carry enough state for a client to update its cache without a
follow-up fetch. ``eventId`` is assigned by the emitter; clients fall back to
a composite identity when it is absent.
"""
from datetime import datetime

from pydantic import Field

from order_service.models.order import OrderItemStatus, OrderStatus
from order_service.schemas.order import CamelModel, OrderItemResponse

ORDER_NEW = "order.new"
ORDER_STATUS_CHANGED = "order.status.changed"
ORDER_ITEM_STATUS_CHANGED = "order.item.status.changed"


class OrderNewEvent(CamelModel):
    """Sent on confirm: the kitchen never sees DRAFT orders, so this is their 'new'."""

    event_id: str | None = None
    order_id: str
    restaurant_id: str
    table_session_id: str
    created_by_user_id: str | None = None
    status: OrderStatus
    notes: str | None = None
    confirmed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemResponse] = Field(default_factory=list)


class OrderStatusChangedEvent(CamelModel):
    event_id: str | None = None
    order_id: str
    restaurant_id: str
    previous_status: OrderStatus
    new_status: OrderStatus
    updated_at: datetime


class OrderItemStatusChangedEvent(CamelModel):
    event_id: str | None = None
    order_id: str
    item_id: str
    restaurant_id: str
    previous_status: OrderItemStatus
    new_status: OrderItemStatus
    updated_at: datetime


EVENT_MODELS: dict[str, type[CamelModel]] = {
    ORDER_NEW: OrderNewEvent,
    ORDER_STATUS_CHANGED: OrderStatusChangedEvent,
    ORDER_ITEM_STATUS_CHANGED: OrderItemStatusChangedEvent,
}
