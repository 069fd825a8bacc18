"""
Order Service — Pydantic Schemas (REST API)

Wire format is camelCase; Python attributes stay snake_case.
"""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from order_service.models.order import OrderItemStatus, OrderStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ── Requests ──────────────────────────────────────────────────────────────────

class CreateOrderRequest(CamelModel):
    table_session_id: str = Field(..., min_length=1, max_length=36)
    notes: str | None = Field(None, max_length=500)


class AddOrderItemRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255, examples=["Margherita"])
    qty: int = Field(..., ge=1)
    unit_price: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)
    notes: str | None = Field(None, max_length=500)


class UpdateOrderItemRequest(CamelModel):
    """Partial update: only fields present in the body are written."""

    name: str | None = Field(None, min_length=1, max_length=255)
    qty: int | None = Field(None, ge=1)
    unit_price: Decimal | None = Field(None, ge=0, max_digits=10, decimal_places=2)
    notes: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    def _required_fields_not_null(self):
        for field in ("name", "qty"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class UpdateItemStatusRequest(CamelModel):
    status: OrderItemStatus


# ── Responses ─────────────────────────────────────────────────────────────────

class OrderItemResponse(CamelModel):
    id: str
    order_id: str
    name: str
    qty: int
    unit_price: Decimal | None = None
    status: OrderItemStatus
    notes: str | None = None
    created_at: datetime
    updated_at: datetime


class OrderResponse(CamelModel):
    id: str
    restaurant_id: str
    table_session_id: str
    created_by_user_id: str
    status: OrderStatus
    notes: str | None = None
    confirmed_at: datetime | None = None
    closed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemResponse] = []


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    dependencies: dict[str, str]
