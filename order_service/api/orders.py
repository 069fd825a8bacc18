"""
Order Service — Orders API

Flow:
  1. JWT validated by middleware (request.state.user is the caller's Principal)
  2. Role checked per route
  3. OrderService runs the command; domain errors become 404 / 400 / 409
     through the handler registered in main
  4. Realtime events go out after commit
"""
from fastapi import APIRouter, Depends, Query, status

from order_service.api.deps import get_order_service, get_principal, require_roles
from order_service.core.errors import BadRequestError
from order_service.core.security import Principal
from order_service.models.order import OrderStatus
from order_service.schemas.order import (
    AddOrderItemRequest,
    CreateOrderRequest,
    OrderItemResponse,
    OrderResponse,
    UpdateItemStatusRequest,
    UpdateOrderItemRequest,
)
from order_service.services.order_service import OrderService

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])

waiter = require_roles("ADMIN", "WAITER")
kitchen = require_roles("ADMIN", "KITCHEN")
cashier = require_roles("ADMIN", "CASHIER")


def _parse_statuses(raw: str | None) -> list[OrderStatus] | None:
    if not raw:
        return None
    statuses = []
    for value in raw.split(","):
        value = value.strip().upper()
        if not value:
            continue
        try:
            statuses.append(OrderStatus(value))
        except ValueError:
            raise BadRequestError(f"Unknown order status: {value}")
    return statuses or None


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: CreateOrderRequest,
    principal: Principal = Depends(waiter),
    service: OrderService = Depends(get_order_service),
):
    """Open a DRAFT order on a table session."""
    return await service.create_order(
        principal.restaurant_id, principal.user_id, payload.table_session_id, payload.notes
    )


@router.get("/active", response_model=list[OrderResponse])
async def list_active_orders(
    status_filter: str | None = Query(None, alias="status", description="Comma separated, e.g. CONFIRMED,IN_PROGRESS"),
    table_session_id: str | None = Query(None, alias="tableSessionId"),
    principal: Principal = Depends(get_principal),
    service: OrderService = Depends(get_order_service),
):
    """Snapshot for clients hydrating their cache. Defaults to every non-terminal status."""
    return await service.list_active_orders(
        principal.restaurant_id, _parse_statuses(status_filter), table_session_id
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    principal: Principal = Depends(get_principal),
    service: OrderService = Depends(get_order_service),
):
    return await service.get_order(principal.restaurant_id, order_id)


@router.post("/{order_id}/items", response_model=OrderItemResponse, status_code=status.HTTP_201_CREATED)
async def add_item(
    order_id: str,
    payload: AddOrderItemRequest,
    principal: Principal = Depends(waiter),
    service: OrderService = Depends(get_order_service),
):
    return await service.add_item(principal.restaurant_id, order_id, payload)


@router.patch("/{order_id}/items/{item_id}", response_model=OrderItemResponse)
async def update_item(
    order_id: str,
    item_id: str,
    payload: UpdateOrderItemRequest,
    principal: Principal = Depends(waiter),
    service: OrderService = Depends(get_order_service),
):
    return await service.update_item(principal.restaurant_id, order_id, item_id, payload)


@router.delete("/{order_id}/items/{item_id}", response_model=OrderItemResponse)
async def cancel_item(
    order_id: str,
    item_id: str,
    principal: Principal = Depends(waiter),
    service: OrderService = Depends(get_order_service),
):
    """Soft-cancel: the item stays on the order with status CANCELLED."""
    return await service.cancel_item(principal.restaurant_id, order_id, item_id)


@router.post("/{order_id}/confirm", response_model=OrderResponse)
async def confirm_order(
    order_id: str,
    principal: Principal = Depends(waiter),
    service: OrderService = Depends(get_order_service),
):
    """DRAFT → CONFIRMED. The kitchen receives it as order.new."""
    return await service.confirm_order(principal.restaurant_id, order_id)


@router.post("/{order_id}/items/{item_id}/status", response_model=OrderItemResponse)
async def update_item_status(
    order_id: str,
    item_id: str,
    payload: UpdateItemStatusRequest,
    principal: Principal = Depends(kitchen),
    service: OrderService = Depends(get_order_service),
):
    return await service.set_item_status(principal.restaurant_id, order_id, item_id, payload.status)


@router.post("/{order_id}/close", response_model=OrderResponse)
async def close_order(
    order_id: str,
    principal: Principal = Depends(cashier),
    service: OrderService = Depends(get_order_service),
):
    return await service.close_order(principal.restaurant_id, order_id)
