"""
Order / item state machine — pure policy checks, no database.
"""
import itertools

import pytest

from order_service.core.errors import BadRequestError, ConflictError
from order_service.domain.transitions import (
    check_closable,
    check_confirmable,
    check_item_status_change,
    derive_order_status,
    item_transition_allowed,
)
from order_service.models.order import OrderItemStatus as I
from order_service.models.order import OrderStatus as O

ALLOWED_EDGES = {
    (I.PENDING, I.IN_PROGRESS),
    (I.PENDING, I.CANCELLED),
    (I.IN_PROGRESS, I.READY),
    (I.IN_PROGRESS, I.CANCELLED),
}


@pytest.mark.parametrize("current,requested", list(itertools.product(I, repeat=2)))
def test_item_transition_allows_exactly_the_documented_edges(current, requested):
    assert item_transition_allowed(current, requested) == ((current, requested) in ALLOWED_EDGES)


def test_first_item_in_progress_starts_the_order():
    result = derive_order_status(O.CONFIRMED, I.PENDING, I.IN_PROGRESS, [I.IN_PROGRESS, I.PENDING])
    assert result == O.IN_PROGRESS


def test_second_item_in_progress_keeps_order_status():
    result = derive_order_status(O.IN_PROGRESS, I.PENDING, I.IN_PROGRESS, [I.IN_PROGRESS, I.IN_PROGRESS])
    assert result is None


def test_order_ready_only_when_every_active_item_is_ready():
    assert derive_order_status(O.IN_PROGRESS, I.IN_PROGRESS, I.READY, [I.READY, I.IN_PROGRESS]) is None
    assert derive_order_status(O.IN_PROGRESS, I.IN_PROGRESS, I.READY, [I.READY, I.READY]) == O.READY


def test_cancelled_items_do_not_block_ready():
    result = derive_order_status(O.IN_PROGRESS, I.IN_PROGRESS, I.READY, [I.READY, I.CANCELLED])
    assert result == O.READY


def test_ready_item_on_already_ready_order_is_a_no_op():
    assert derive_order_status(O.READY, I.IN_PROGRESS, I.READY, [I.READY, I.READY]) is None


def test_cancelling_an_item_never_derives_a_new_status():
    assert derive_order_status(O.IN_PROGRESS, I.IN_PROGRESS, I.CANCELLED, [I.READY, I.CANCELLED]) is None


def test_confirm_requires_draft():
    with pytest.raises(ConflictError):
        check_confirmable(O.CONFIRMED, [I.PENDING])


def test_confirm_empty_order_is_bad_request():
    with pytest.raises(BadRequestError):
        check_confirmable(O.DRAFT, [])


@pytest.mark.parametrize(
    "statuses",
    [[I.PENDING, I.CANCELLED], [I.IN_PROGRESS], [I.PENDING, I.READY]],
)
def test_confirm_with_non_pending_items_conflicts(statuses):
    with pytest.raises(ConflictError):
        check_confirmable(O.DRAFT, statuses)


def test_confirm_all_pending_passes():
    check_confirmable(O.DRAFT, [I.PENDING, I.PENDING])


def test_close_with_unready_item_is_bad_request():
    with pytest.raises(BadRequestError):
        check_closable(O.IN_PROGRESS, [I.READY, I.IN_PROGRESS])


def test_close_requires_ready_order():
    with pytest.raises(ConflictError):
        check_closable(O.CLOSED, [I.READY])
    check_closable(O.READY, [I.READY, I.CANCELLED])


@pytest.mark.parametrize("order_status", [O.DRAFT, O.READY, O.CLOSED, O.CANCELLED])
def test_kitchen_cannot_touch_items_outside_kitchen_statuses(order_status):
    with pytest.raises(ConflictError):
        check_item_status_change(order_status, I.PENDING, I.IN_PROGRESS)


def test_kitchen_rejects_invalid_edge():
    with pytest.raises(ConflictError):
        check_item_status_change(O.IN_PROGRESS, I.READY, I.IN_PROGRESS)
    check_item_status_change(O.CONFIRMED, I.PENDING, I.IN_PROGRESS)
