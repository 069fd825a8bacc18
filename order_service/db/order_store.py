"""
Order Service — Transactional order repository

Every mutation runs in one transaction that holds the per-order lock
(order_service.core.order_lock) from before the first read until commit, and
writes through conditional updates:

  UPDATE ... WHERE id = :id AND restaurant_id = :tenant AND status = :expected

Exactly one affected row means the precondition still held; anything else is
reported as ConflictError. The lock keeps read-then-write sequences on the
same order from interleaving; the status predicate is what actually detects a
lost race. Every query is scoped by restaurant_id.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import AsyncIterator, Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from order_service.core.errors import BadRequestError, ConflictError, NotFoundError
from order_service.core.order_lock import OrderLockRegistry, acquire_advisory_lock
from order_service.db.database import utcnow
from order_service.domain import transitions
from order_service.models.order import (
    ACTIVE_ORDER_STATUSES,
    Order,
    OrderItem,
    OrderItemStatus,
    OrderStatus,
    TableSession,
    TableSessionStatus,
)

logger = logging.getLogger(__name__)


def _tick(previous: datetime | None) -> datetime:
    """Next updated_at value, strictly later than ``previous``."""
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


@dataclass
class ItemStatusChange:
    item: OrderItem
    order: Order
    previous_item_status: OrderItemStatus
    previous_order_status: OrderStatus
    new_order_status: OrderStatus | None = None

    @property
    def order_changed(self) -> bool:
        return self.new_order_status is not None


@dataclass
class ItemCancellation:
    item: OrderItem
    previous_status: OrderItemStatus


@dataclass
class OrderTransition:
    order: Order
    previous_status: OrderStatus


class OrderStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], locks: OrderLockRegistry):
        self._session_factory = session_factory
        self._locks = locks

    # ── Transaction plumbing ─────────────────────────────────────────────────

    @asynccontextmanager
    async def _order_transaction(self, order_id: str) -> AsyncIterator[AsyncSession]:
        async with self._locks.hold(order_id):
            async with self._session_factory() as session:
                async with session.begin():
                    await acquire_advisory_lock(session, order_id, self._locks.timeout)
                    yield session

    @staticmethod
    async def _conditional_update(session: AsyncSession, stmt, conflict_detail: str) -> None:
        result = await session.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount != 1:
            raise ConflictError(conflict_detail)

    @staticmethod
    async def _load_order(session: AsyncSession, tenant: str, order_id: str) -> Order:
        result = await session.execute(
            select(Order)
            .where(Order.id == order_id, Order.restaurant_id == tenant)
            .options(selectinload(Order.items))
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found")
        return order

    @staticmethod
    async def _load_item(session: AsyncSession, tenant: str, order_id: str, item_id: str) -> OrderItem:
        result = await session.execute(
            select(OrderItem)
            .where(
                OrderItem.id == item_id,
                OrderItem.order_id == order_id,
                OrderItem.restaurant_id == tenant,
            )
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFoundError("Order item not found")
        return item

    # ── Reads ────────────────────────────────────────────────────────────────

    async def get_order(self, tenant: str, order_id: str) -> Order:
        async with self._session_factory() as session:
            return await self._load_order(session, tenant, order_id)

    async def list_orders(
        self,
        tenant: str,
        statuses: Iterable[OrderStatus] | None = None,
        table_session_id: str | None = None,
    ) -> list[Order]:
        wanted = list(statuses) if statuses else list(ACTIVE_ORDER_STATUSES)
        query = (
            select(Order)
            .where(Order.restaurant_id == tenant, Order.status.in_(wanted))
            .options(selectinload(Order.items))
            .order_by(Order.created_at.desc())
        )
        if table_session_id:
            query = query.where(Order.table_session_id == table_session_id)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # ── Mutations ────────────────────────────────────────────────────────────

    async def create_order(
        self, tenant: str, user_id: str, table_session_id: str, notes: str | None = None
    ) -> Order:
        async with self._session_factory() as session:
            async with session.begin():
                table_session = (
                    await session.execute(
                        select(TableSession).where(
                            TableSession.id == table_session_id,
                            TableSession.restaurant_id == tenant,
                        )
                    )
                ).scalar_one_or_none()
                if table_session is None:
                    raise NotFoundError("Table session not found")
                if table_session.status == TableSessionStatus.CLOSED:
                    raise BadRequestError("Cannot create order for closed table session")

                now = utcnow()
                order = Order(
                    restaurant_id=tenant,
                    table_session_id=table_session_id,
                    created_by_user_id=user_id,
                    status=OrderStatus.DRAFT,
                    notes=notes or None,
                    created_at=now,
                    updated_at=now,
                    items=[],
                )
                session.add(order)
            logger.info("Order %s created in DRAFT for session %s", order.id, table_session_id)
            return order

    async def add_item(
        self,
        tenant: str,
        order_id: str,
        name: str,
        qty: int,
        unit_price: Decimal | None = None,
        notes: str | None = None,
    ) -> OrderItem:
        async with self._order_transaction(order_id) as session:
            order = await self._load_order(session, tenant, order_id)
            if order.status != OrderStatus.DRAFT:
                raise ConflictError("Cannot add items to order that is not in DRAFT status")
            now = utcnow()
            item = OrderItem(
                restaurant_id=tenant,
                order_id=order_id,
                name=name,
                qty=qty,
                unit_price=unit_price,
                status=OrderItemStatus.PENDING,
                notes=notes or None,
                created_at=now,
                updated_at=now,
            )
            session.add(item)
        return item

    async def update_item(self, tenant: str, order_id: str, item_id: str, changes: dict) -> OrderItem:
        async with self._order_transaction(order_id) as session:
            order = await self._load_order(session, tenant, order_id)
            if order.status != OrderStatus.DRAFT:
                raise ConflictError("Cannot update items in order that is not in DRAFT status")
            item = await self._load_item(session, tenant, order_id, item_id)
            values = dict(changes)
            if "notes" in values:
                values["notes"] = values["notes"] or None
            values["updated_at"] = _tick(item.updated_at)
            await self._conditional_update(
                session,
                update(OrderItem)
                .where(
                    OrderItem.id == item_id,
                    OrderItem.order_id == order_id,
                    OrderItem.restaurant_id == tenant,
                    OrderItem.status != OrderItemStatus.CANCELLED,
                )
                .values(**values),
                "Cannot update cancelled item",
            )
            return await self._load_item(session, tenant, order_id, item_id)

    async def cancel_item(self, tenant: str, order_id: str, item_id: str) -> ItemCancellation:
        async with self._order_transaction(order_id) as session:
            order = await self._load_order(session, tenant, order_id)
            if order.status not in transitions.CANCELLABLE_ORDER_STATUSES:
                raise ConflictError(
                    "Cannot cancel items from order that is not in DRAFT or CONFIRMED status"
                )
            item = await self._load_item(session, tenant, order_id, item_id)
            previous = item.status
            if previous == OrderItemStatus.CANCELLED:
                raise ConflictError("Item is already cancelled")
            await self._conditional_update(
                session,
                update(OrderItem)
                .where(
                    OrderItem.id == item_id,
                    OrderItem.order_id == order_id,
                    OrderItem.restaurant_id == tenant,
                    OrderItem.status == previous,
                )
                .values(status=OrderItemStatus.CANCELLED, updated_at=_tick(item.updated_at)),
                "Item was modified concurrently",
            )
            item = await self._load_item(session, tenant, order_id, item_id)
        logger.info("Item %s of order %s cancelled (was %s)", item_id, order_id, previous.value)
        return ItemCancellation(item=item, previous_status=previous)

    async def confirm_order(self, tenant: str, order_id: str) -> OrderTransition:
        async with self._order_transaction(order_id) as session:
            order = await self._load_order(session, tenant, order_id)
            transitions.check_confirmable(order.status, [i.status for i in order.items])
            now = _tick(order.updated_at)
            await self._conditional_update(
                session,
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.restaurant_id == tenant,
                    Order.status == OrderStatus.DRAFT,
                )
                .values(status=OrderStatus.CONFIRMED, confirmed_at=now, updated_at=now),
                "Order is not in DRAFT status or was already modified",
            )
            order = await self._load_order(session, tenant, order_id)
        logger.info("Order %s confirmed with %d items", order_id, len(order.items))
        return OrderTransition(order=order, previous_status=OrderStatus.DRAFT)

    async def set_item_status(
        self,
        tenant: str,
        order_id: str,
        item_id: str,
        from_status: OrderItemStatus,
        to_status: OrderItemStatus,
    ) -> ItemStatusChange:
        """
        Move one item ``from_status`` → ``to_status`` and advance the order if implied.

        ``from_status`` is what the caller saw just before calling; if the item
        has moved on since, the conditional write hits zero rows → ConflictError.
        """
        async with self._order_transaction(order_id) as session:
            order = await self._load_order(session, tenant, order_id)
            item = await self._load_item(session, tenant, order_id, item_id)
            transitions.check_item_status_change(order.status, from_status, to_status)

            await self._conditional_update(
                session,
                update(OrderItem)
                .where(
                    OrderItem.id == item_id,
                    OrderItem.order_id == order_id,
                    OrderItem.restaurant_id == tenant,
                    OrderItem.status == from_status,
                )
                .values(status=to_status, updated_at=_tick(item.updated_at)),
                f"Item status changed concurrently. Expected {from_status.value}, but item was modified.",
            )

            previous_order_status = order.status
            statuses = (
                await session.execute(
                    select(OrderItem.status).where(
                        OrderItem.order_id == order_id, OrderItem.restaurant_id == tenant
                    )
                )
            ).scalars().all()
            derived = transitions.derive_order_status(
                previous_order_status, from_status, to_status, statuses
            )

            new_order_status = None
            if derived is not None:
                result = await session.execute(
                    update(Order)
                    .where(
                        Order.id == order_id,
                        Order.restaurant_id == tenant,
                        Order.status == previous_order_status,
                    )
                    .values(status=derived, updated_at=_tick(order.updated_at))
                    .execution_options(synchronize_session=False)
                )
                # zero rows: someone else already advanced the order, nothing to report
                if result.rowcount == 1:
                    new_order_status = derived

            item = await self._load_item(session, tenant, order_id, item_id)
            order = await self._load_order(session, tenant, order_id)

        if new_order_status is not None:
            logger.info(
                "Order %s advanced %s → %s by item %s",
                order_id, previous_order_status.value, new_order_status.value, item_id,
            )
        return ItemStatusChange(
            item=item,
            order=order,
            previous_item_status=from_status,
            previous_order_status=previous_order_status,
            new_order_status=new_order_status,
        )

    async def close_order(self, tenant: str, order_id: str) -> OrderTransition:
        async with self._order_transaction(order_id) as session:
            order = await self._load_order(session, tenant, order_id)
            transitions.check_closable(order.status, [i.status for i in order.items])
            now = _tick(order.updated_at)
            await self._conditional_update(
                session,
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.restaurant_id == tenant,
                    Order.status == OrderStatus.READY,
                )
                .values(status=OrderStatus.CLOSED, closed_at=now, updated_at=now),
                "Order is not in READY status or was already modified",
            )
            order = await self._load_order(session, tenant, order_id)
        logger.info("Order %s closed", order_id)
        return OrderTransition(order=order, previous_status=OrderStatus.READY)
