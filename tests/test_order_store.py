"""
OrderStore — transactional mutations against a scratch SQLite database.
"""
import asyncio
from decimal import Decimal

import pytest

from conftest import OTHER_RESTAURANT_ID, RESTAURANT_ID, seed_table_session
from order_service.core.errors import BadRequestError, ConflictError, LockTimeoutError, NotFoundError
from order_service.core.order_lock import OrderLockRegistry
from order_service.models.order import OrderItemStatus, OrderStatus, TableSessionStatus


async def _confirmed_order(store, table_session_id, item_count=2):
    order = await store.create_order(RESTAURANT_ID, "waiter-1", table_session_id)
    items = [
        await store.add_item(RESTAURANT_ID, order.id, f"Dish {n}", 1, Decimal("9.50"))
        for n in range(item_count)
    ]
    await store.confirm_order(RESTAURANT_ID, order.id)
    return order, items


@pytest.mark.asyncio
async def test_create_order_starts_in_draft(store, table_session_id):
    order = await store.create_order(RESTAURANT_ID, "waiter-1", table_session_id, notes="window seat")
    assert order.status == OrderStatus.DRAFT
    assert order.items == []

    loaded = await store.get_order(RESTAURANT_ID, order.id)
    assert loaded.notes == "window seat"
    assert loaded.created_by_user_id == "waiter-1"


@pytest.mark.asyncio
async def test_create_order_requires_session_of_same_restaurant(store, session_factory):
    foreign = await seed_table_session(session_factory, restaurant_id=OTHER_RESTAURANT_ID)
    with pytest.raises(NotFoundError):
        await store.create_order(RESTAURANT_ID, "waiter-1", foreign)


@pytest.mark.asyncio
async def test_create_order_rejects_closed_session(store, session_factory):
    closed = await seed_table_session(session_factory, status=TableSessionStatus.CLOSED)
    with pytest.raises(BadRequestError):
        await store.create_order(RESTAURANT_ID, "waiter-1", closed)


@pytest.mark.asyncio
async def test_orders_are_invisible_to_other_restaurants(store, table_session_id):
    order = await store.create_order(RESTAURANT_ID, "waiter-1", table_session_id)
    with pytest.raises(NotFoundError):
        await store.get_order(OTHER_RESTAURANT_ID, order.id)
    with pytest.raises(NotFoundError):
        await store.add_item(OTHER_RESTAURANT_ID, order.id, "Soup", 1)
    assert await store.list_orders(OTHER_RESTAURANT_ID) == []


@pytest.mark.asyncio
async def test_add_item_keeps_exact_price(store, table_session_id):
    order = await store.create_order(RESTAURANT_ID, "waiter-1", table_session_id)
    item = await store.add_item(RESTAURANT_ID, order.id, "Risotto", 2, Decimal("12.35"))
    assert item.status == OrderItemStatus.PENDING
    assert item.restaurant_id == RESTAURANT_ID

    loaded = await store.get_order(RESTAURANT_ID, order.id)
    assert [i.unit_price for i in loaded.items] == [Decimal("12.35")]


@pytest.mark.asyncio
async def test_add_item_to_confirmed_order_conflicts(store, table_session_id):
    order, _ = await _confirmed_order(store, table_session_id, item_count=1)
    with pytest.raises(ConflictError):
        await store.add_item(RESTAURANT_ID, order.id, "Late dessert", 1)
    loaded = await store.get_order(RESTAURANT_ID, order.id)
    assert len(loaded.items) == 1


@pytest.mark.asyncio
async def test_update_item_applies_only_given_fields(store, table_session_id):
    order = await store.create_order(RESTAURANT_ID, "waiter-1", table_session_id)
    item = await store.add_item(RESTAURANT_ID, order.id, "Pasta", 1, Decimal("8.00"), notes="no cheese")

    updated = await store.update_item(RESTAURANT_ID, order.id, item.id, {"qty": 3})
    assert updated.qty == 3
    assert updated.name == "Pasta"
    assert updated.notes == "no cheese"
    assert updated.updated_at > item.updated_at


@pytest.mark.asyncio
async def test_update_cancelled_item_conflicts(store, table_session_id):
    order = await store.create_order(RESTAURANT_ID, "waiter-1", table_session_id)
    item = await store.add_item(RESTAURANT_ID, order.id, "Pasta", 1)
    await store.cancel_item(RESTAURANT_ID, order.id, item.id)
    with pytest.raises(ConflictError):
        await store.update_item(RESTAURANT_ID, order.id, item.id, {"qty": 2})


@pytest.mark.asyncio
async def test_cancel_item_is_soft_and_only_once(store, table_session_id):
    order = await store.create_order(RESTAURANT_ID, "waiter-1", table_session_id)
    item = await store.add_item(RESTAURANT_ID, order.id, "Salad", 1)

    cancellation = await store.cancel_item(RESTAURANT_ID, order.id, item.id)
    assert cancellation.previous_status == OrderItemStatus.PENDING
    assert cancellation.item.status == OrderItemStatus.CANCELLED

    loaded = await store.get_order(RESTAURANT_ID, order.id)
    assert [i.status for i in loaded.items] == [OrderItemStatus.CANCELLED]

    with pytest.raises(ConflictError):
        await store.cancel_item(RESTAURANT_ID, order.id, item.id)


@pytest.mark.asyncio
async def test_confirm_twice_conflicts(store, table_session_id):
    order, _ = await _confirmed_order(store, table_session_id)
    loaded = await store.get_order(RESTAURANT_ID, order.id)
    assert loaded.status == OrderStatus.CONFIRMED
    assert loaded.confirmed_at is not None
    assert all(i.status == OrderItemStatus.PENDING for i in loaded.items)

    with pytest.raises(ConflictError):
        await store.confirm_order(RESTAURANT_ID, order.id)


@pytest.mark.asyncio
async def test_confirm_empty_order_is_bad_request(store, table_session_id):
    order = await store.create_order(RESTAURANT_ID, "waiter-1", table_session_id)
    with pytest.raises(BadRequestError):
        await store.confirm_order(RESTAURANT_ID, order.id)


@pytest.mark.asyncio
async def test_set_item_status_with_stale_expectation_conflicts(store, table_session_id):
    order, (item, _) = await _confirmed_order(store, table_session_id)
    await store.set_item_status(
        RESTAURANT_ID, order.id, item.id, OrderItemStatus.PENDING, OrderItemStatus.IN_PROGRESS
    )
    # The caller still believes the item is PENDING
    with pytest.raises(ConflictError):
        await store.set_item_status(
            RESTAURANT_ID, order.id, item.id, OrderItemStatus.PENDING, OrderItemStatus.CANCELLED
        )


@pytest.mark.asyncio
async def test_set_item_status_advances_order(store, table_session_id):
    order, (first, second) = await _confirmed_order(store, table_session_id)

    change = await store.set_item_status(
        RESTAURANT_ID, order.id, first.id, OrderItemStatus.PENDING, OrderItemStatus.IN_PROGRESS
    )
    assert change.order_changed
    assert change.previous_order_status == OrderStatus.CONFIRMED
    assert change.order.status == OrderStatus.IN_PROGRESS

    change = await store.set_item_status(
        RESTAURANT_ID, order.id, second.id, OrderItemStatus.PENDING, OrderItemStatus.IN_PROGRESS
    )
    assert not change.order_changed
    assert change.order.status == OrderStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_updated_at_strictly_increases(store, table_session_id):
    order, (item, _) = await _confirmed_order(store, table_session_id)
    seen = [item.updated_at]
    for before, after in [
        (OrderItemStatus.PENDING, OrderItemStatus.IN_PROGRESS),
        (OrderItemStatus.IN_PROGRESS, OrderItemStatus.READY),
    ]:
        change = await store.set_item_status(RESTAURANT_ID, order.id, item.id, before, after)
        seen.append(change.item.updated_at)
    assert seen == sorted(seen)
    assert len(set(seen)) == len(seen)


@pytest.mark.asyncio
async def test_close_order_and_close_again(store, table_session_id):
    order, (item,) = await _confirmed_order(store, table_session_id, item_count=1)
    with pytest.raises(BadRequestError):
        await store.close_order(RESTAURANT_ID, order.id)

    await store.set_item_status(
        RESTAURANT_ID, order.id, item.id, OrderItemStatus.PENDING, OrderItemStatus.IN_PROGRESS
    )
    await store.set_item_status(
        RESTAURANT_ID, order.id, item.id, OrderItemStatus.IN_PROGRESS, OrderItemStatus.READY
    )
    transition = await store.close_order(RESTAURANT_ID, order.id)
    assert transition.order.status == OrderStatus.CLOSED
    assert transition.order.closed_at is not None

    with pytest.raises(ConflictError):
        await store.close_order(RESTAURANT_ID, order.id)


@pytest.mark.asyncio
async def test_list_orders_filters_by_status_and_session(store, session_factory, table_session_id):
    other_session = await seed_table_session(session_factory)
    draft = await store.create_order(RESTAURANT_ID, "waiter-1", table_session_id)
    confirmed, _ = await _confirmed_order(store, other_session, item_count=1)

    active = await store.list_orders(RESTAURANT_ID)
    assert {o.id for o in active} == {draft.id, confirmed.id}

    kitchen = await store.list_orders(RESTAURANT_ID, statuses=[OrderStatus.CONFIRMED])
    assert [o.id for o in kitchen] == [confirmed.id]
    assert len(kitchen[0].items) == 1

    by_session = await store.list_orders(RESTAURANT_ID, table_session_id=table_session_id)
    assert [o.id for o in by_session] == [draft.id]


@pytest.mark.asyncio
async def test_lock_timeout_aborts_without_writing(session_factory, table_session_id):
    from order_service.db.order_store import OrderStore

    locks = OrderLockRegistry(timeout=0.05)
    store = OrderStore(session_factory, locks)
    order = await store.create_order(RESTAURANT_ID, "waiter-1", table_session_id)

    async with locks.hold(order.id):
        with pytest.raises(LockTimeoutError):
            await store.add_item(RESTAURANT_ID, order.id, "Bread", 1)

    loaded = await store.get_order(RESTAURANT_ID, order.id)
    assert loaded.items == []
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_registry_serializes_same_order():
    locks = OrderLockRegistry(timeout=1.0)
    trace = []

    async def worker(name):
        async with locks.hold("order-1"):
            trace.append(f"{name}:in")
            await asyncio.sleep(0.01)
            trace.append(f"{name}:out")

    await asyncio.gather(worker("a"), worker("b"))
    assert trace in (["a:in", "a:out", "b:in", "b:out"], ["b:in", "b:out", "a:in", "a:out"])
    assert len(locks) == 0
