"""
Order Service — HTTP client for staff tablets

Thin httpx wrapper over the orders API, plus the optimistic item-status flow:
show the change locally, send the command, roll back if the server refuses.
"""
import logging

import httpx

from order_service.client.reconcile import OrdersCache
from order_service.models.order import OrderItemStatus, OrderStatus
from order_service.schemas.order import OrderItemResponse, OrderResponse

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 10.0

# A DRAFT copy in the cache would make the later order.new look stale
# (same createdAt), so the default snapshot starts at CONFIRMED.
SNAPSHOT_STATUSES = (OrderStatus.CONFIRMED, OrderStatus.IN_PROGRESS, OrderStatus.READY)


class OrdersApiClient:
    def __init__(self, base_url: str, token: str, transport: httpx.AsyncBaseTransport | None = None):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_active_orders(
        self, statuses: list[OrderStatus] | None = None, table_session_id: str | None = None
    ) -> list[OrderResponse]:
        params = {}
        if statuses:
            params["status"] = ",".join(s.value for s in statuses)
        if table_session_id:
            params["tableSessionId"] = table_session_id
        r = await self._client.get("/api/v1/orders/active", params=params)
        r.raise_for_status()
        return [OrderResponse.model_validate(o) for o in r.json()]

    async def refresh(self, cache: OrdersCache, statuses: list[OrderStatus] | None = None) -> None:
        """Rebuild ``cache`` from the active-orders snapshot (confirmed onwards unless ``statuses`` is given)."""
        cache.hydrate_snapshot(await self.fetch_active_orders(statuses or list(SNAPSHOT_STATUSES)))

    async def update_item_status(
        self, order_id: str, item_id: str, status: OrderItemStatus
    ) -> OrderItemResponse:
        r = await self._client.post(
            f"/api/v1/orders/{order_id}/items/{item_id}/status", json={"status": status.value}
        )
        r.raise_for_status()
        return OrderItemResponse.model_validate(r.json())

    async def update_item_status_optimistic(
        self, cache: OrdersCache, order_id: str, item_id: str, status: OrderItemStatus
    ) -> OrderItemResponse:
        handle = cache.set_item_status_optimistic(order_id, item_id, status)
        try:
            return await self.update_item_status(order_id, item_id, status)
        except httpx.HTTPError as exc:
            handle.rollback()
            logger.warning(
                "Item %s → %s rejected, rolled back to %s: %s",
                item_id, status.value, handle.previous_status.value, exc,
            )
            raise
