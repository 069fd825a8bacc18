"""
Order Service — Database models

[TRANSACTIONAL DATA] orders, order_items — never physically deleted, cancellation is a status
[EXTERNAL DATA]      table_sessions — owned by the table-session service, read-only here
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import String, Integer, Numeric, Text, Enum, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from order_service.db.database import Base, UTCDateTime, utcnow


class OrderStatus(str, PyEnum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    READY = "READY"
    CANCELLED = "CANCELLED"
    CLOSED = "CLOSED"


class OrderItemStatus(str, PyEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    READY = "READY"
    CANCELLED = "CANCELLED"


class TableSessionStatus(str, PyEnum):
    OPEN = "OPEN"
    CHECKOUT = "CHECKOUT"
    CLOSED = "CLOSED"


ACTIVE_ORDER_STATUSES = (
    OrderStatus.DRAFT,
    OrderStatus.CONFIRMED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.READY,
)


def _uuid() -> str:
    return str(uuid.uuid4())


class TableSession(Base):
    """
    [EXTERNAL DATA] — A seated party at a table. Orders may only be opened
    against a session of the same restaurant that is not CLOSED.
    """
    __tablename__ = "table_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    restaurant_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    table_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[TableSessionStatus] = mapped_column(
        Enum(TableSessionStatus, name="table_session_status"),
        default=TableSessionStatus.OPEN,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Order(Base):
    """
    [TRANSACTIONAL DATA] — One order per waiter round, tied to a table session.
    status moves DRAFT → CONFIRMED → IN_PROGRESS → READY → CLOSED.
    """
    __tablename__ = "orders"
    __table_args__ = (Index("ix_orders_restaurant_status", "restaurant_id", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    restaurant_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    table_session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("table_sessions.id"), index=True, nullable=False
    )
    created_by_user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status"), default=OrderStatus.DRAFT, nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", order_by="OrderItem.created_at", lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status.value}>"


class OrderItem(Base):
    """
    [TRANSACTIONAL DATA] — A dish on an order. CANCELLED is terminal.
    unit_price is an exact decimal, never a float.
    """
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    restaurant_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    status: Mapped[OrderItemStatus] = mapped_column(
        Enum(OrderItemStatus, name="order_item_status"), default=OrderItemStatus.PENDING, nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    order: Mapped[Order] = relationship(back_populates="items", lazy="raise")

    def __repr__(self) -> str:
        return f"<OrderItem id={self.id} status={self.status.value}>"
