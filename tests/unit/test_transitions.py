from datetime import timedelta

import pytest

from lifecycle_service.errors import InvalidTransition
from lifecycle_service.models import OrderStatus
from lifecycle_service.transitions import allowed_targets, is_valid_transition, validate_transition

from conftest import build_order

FLOW = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]


@pytest.mark.parametrize("current,target", list(zip(FLOW, FLOW[1:])))
def test_next_status_is_allowed(current, target, now):
    order = build_order(status=current, minutes_old=30)
    updated = validate_transition(order, target, now)
    assert updated.status is target
    assert order.status is current


@pytest.mark.parametrize("current", FLOW[:-1])
def test_cancel_from_any_non_terminal_status(current, now):
    updated = validate_transition(build_order(status=current), OrderStatus.CANCELLED, now)
    assert updated.status is OrderStatus.CANCELLED


def test_same_status_returns_order_unchanged(now):
    order = build_order(status=OrderStatus.PREPARING)
    assert validate_transition(order, OrderStatus.PREPARING, now) is order


def test_same_terminal_status_is_not_an_error(now):
    order = build_order(status=OrderStatus.DELIVERED, actual_delivery_time=now)
    assert validate_transition(order, OrderStatus.DELIVERED, now) is order


def test_skipping_forward_is_rejected(now):
    """pending -> delivered must go through every intermediate status."""
    with pytest.raises(InvalidTransition) as excinfo:
        validate_transition(build_order(status=OrderStatus.PENDING), OrderStatus.DELIVERED, now)
    assert excinfo.value.current is OrderStatus.PENDING
    assert excinfo.value.target is OrderStatus.DELIVERED


def test_moving_backward_is_rejected(now):
    with pytest.raises(InvalidTransition):
        validate_transition(build_order(status=OrderStatus.PREPARING), OrderStatus.CONFIRMED, now)


@pytest.mark.parametrize("current,target", [
    (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    (OrderStatus.CANCELLED, OrderStatus.DELIVERED),
    (OrderStatus.CANCELLED, OrderStatus.PENDING),
    (OrderStatus.DELIVERED, OrderStatus.OUT_FOR_DELIVERY),
])
def test_terminal_orders_cannot_move(current, target, now):
    with pytest.raises(InvalidTransition):
        validate_transition(build_order(status=current), target, now)


def test_unknown_target_is_rejected(now):
    with pytest.raises(InvalidTransition):
        validate_transition(build_order(status=OrderStatus.PENDING), OrderStatus.UNKNOWN, now)


def test_unknown_current_status_can_be_repaired(now):
    order = build_order(status=OrderStatus.UNKNOWN)
    assert validate_transition(order, OrderStatus.PREPARING, now).status is OrderStatus.PREPARING


def test_delivered_sets_actual_delivery_time(now):
    order = build_order(status=OrderStatus.OUT_FOR_DELIVERY, minutes_old=40)
    updated = validate_transition(order, OrderStatus.DELIVERED, now)
    assert updated.actual_delivery_time == now
    assert updated.actual_delivery_time >= order.created_at
    assert order.actual_delivery_time is None


def test_delivered_keeps_existing_actual_delivery_time(now):
    earlier = now - timedelta(minutes=3)
    order = build_order(status=OrderStatus.OUT_FOR_DELIVERY, minutes_old=40, actual_delivery_time=earlier)
    updated = validate_transition(order, OrderStatus.DELIVERED, now)
    assert updated.actual_delivery_time == earlier


def test_actual_delivery_time_never_before_creation(now):
    """A clock behind the creation timestamp still yields a valid delivery time."""
    order = build_order(status=OrderStatus.OUT_FOR_DELIVERY, created_at=now + timedelta(seconds=30))
    updated = validate_transition(order, OrderStatus.DELIVERED, now)
    assert updated.actual_delivery_time == order.created_at


def test_out_for_delivery_records_pickup_without_estimate(now):
    order = build_order(status=OrderStatus.READY_FOR_PICKUP, minutes_old=25)
    updated = validate_transition(order, OrderStatus.OUT_FOR_DELIVERY, now)
    assert updated.pickup_confirmed_at == now
    assert updated.estimated_delivery_time is None


def test_default_now_is_used_when_omitted():
    order = build_order(status=OrderStatus.OUT_FOR_DELIVERY, minutes_old=40)
    updated = validate_transition(order, OrderStatus.DELIVERED)
    assert updated.actual_delivery_time is not None
    assert updated.actual_delivery_time >= order.created_at


def test_transition_table():
    assert allowed_targets(OrderStatus.PENDING) == {OrderStatus.CONFIRMED, OrderStatus.CANCELLED}
    assert allowed_targets(OrderStatus.DELIVERED) == frozenset()
    assert is_valid_transition(OrderStatus.READY_FOR_PICKUP, OrderStatus.OUT_FOR_DELIVERY)
    assert not is_valid_transition(OrderStatus.CONFIRMED, OrderStatus.READY_FOR_PICKUP)


def test_delivered_with_naive_creation_time(now):
    order = build_order(status=OrderStatus.OUT_FOR_DELIVERY, created_at="2025-03-01T11:20:00")
    updated = validate_transition(order, OrderStatus.DELIVERED, now)
    assert updated.actual_delivery_time == now
