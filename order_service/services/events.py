"""
Order Service — Domain event emitter

Called only after the store has committed. Publishing is best-effort: a
broken broadcast layer is logged and never turns a committed command into a
failed response.
"""
import logging
import uuid

from order_service.models.order import Order, OrderItem, OrderItemStatus, OrderStatus
from order_service.realtime.hub import BroadcastHub
from order_service.schemas.events import (
    ORDER_ITEM_STATUS_CHANGED,
    ORDER_NEW,
    ORDER_STATUS_CHANGED,
    OrderItemStatusChangedEvent,
    OrderNewEvent,
    OrderStatusChangedEvent,
)
from order_service.schemas.order import CamelModel, OrderItemResponse

logger = logging.getLogger(__name__)


class EventEmitter:
    def __init__(self, hub: BroadcastHub):
        self._hub = hub

    def _publish(self, restaurant_id: str, event: str, payload: CamelModel) -> None:
        payload.event_id = str(uuid.uuid4())
        try:
            self._hub.publish(restaurant_id, event, payload.model_dump(mode="json", by_alias=True))
        except Exception as exc:
            # Broadcast failures MUST NOT affect the committed command
            logger.warning("Failed to publish %s for restaurant %s: %s", event, restaurant_id, exc)

    def order_new(self, order: Order) -> None:
        """Announce a freshly confirmed order, plus its DRAFT → CONFIRMED change."""
        self._publish(
            order.restaurant_id,
            ORDER_NEW,
            OrderNewEvent(
                order_id=order.id,
                restaurant_id=order.restaurant_id,
                table_session_id=order.table_session_id,
                created_by_user_id=order.created_by_user_id,
                status=order.status,
                notes=order.notes,
                confirmed_at=order.confirmed_at,
                created_at=order.created_at,
                updated_at=order.updated_at,
                items=[OrderItemResponse.model_validate(item) for item in order.items],
            ),
        )
        self.order_status_changed(order, OrderStatus.DRAFT)

    def order_status_changed(self, order: Order, previous_status: OrderStatus) -> None:
        self._publish(
            order.restaurant_id,
            ORDER_STATUS_CHANGED,
            OrderStatusChangedEvent(
                order_id=order.id,
                restaurant_id=order.restaurant_id,
                previous_status=previous_status,
                new_status=order.status,
                updated_at=order.updated_at,
            ),
        )

    def item_status_changed(self, item: OrderItem, previous_status: OrderItemStatus) -> None:
        self._publish(
            item.restaurant_id,
            ORDER_ITEM_STATUS_CHANGED,
            OrderItemStatusChangedEvent(
                order_id=item.order_id,
                item_id=item.id,
                restaurant_id=item.restaurant_id,
                previous_status=previous_status,
                new_status=item.status,
                updated_at=item.updated_at,
            ),
        )
