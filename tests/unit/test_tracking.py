from datetime import timedelta

from lifecycle_service.models import OrderStatus, TravelTime
from lifecycle_service.tracking import (DEFAULT_DELIVERY_MINUTES, apply_delivery_estimate, delivery_progress,
                                        delivery_status_message, estimate_delivery_minutes, minutes_remaining)

from conftest import build_order

TRAVEL_TIMES = [
    TravelTime(from_location_id="ikeja", to_location_id="yaba", average_minutes=25),
    TravelTime(from_location_id="lekki", to_location_id="ikeja", average_minutes=25),
]


def test_estimate_uses_direct_route():
    assert estimate_delivery_minutes(TRAVEL_TIMES, "ikeja", "yaba") == 25


def test_estimate_uses_reverse_route_with_buffer():
    """25 minutes on the reverse route plus 10% rounds up to 28."""
    assert estimate_delivery_minutes(TRAVEL_TIMES, "ikeja", "lekki") == 28


def test_estimate_falls_back_to_default():
    assert estimate_delivery_minutes(TRAVEL_TIMES, "yaba", "lekki") == DEFAULT_DELIVERY_MINUTES


def test_apply_delivery_estimate(now):
    order = build_order(status=OrderStatus.OUT_FOR_DELIVERY)
    assert apply_delivery_estimate(order, 25, now).estimated_delivery_time == now + timedelta(minutes=25)


def test_apply_delivery_estimate_keeps_existing(now):
    order = build_order(status=OrderStatus.OUT_FOR_DELIVERY, estimated_delivery_time=now)
    assert apply_delivery_estimate(order, 25, now) is order


def out_for_delivery(now, picked_up_minutes_ago, eta_minutes=None, **fields):
    pickup = now - timedelta(minutes=picked_up_minutes_ago)
    eta = pickup + timedelta(minutes=eta_minutes) if eta_minutes is not None else None
    return build_order(status=OrderStatus.OUT_FOR_DELIVERY, minutes_old=60, pickup_confirmed_at=pickup,
                       estimated_delivery_time=eta, **fields)


def test_progress_before_pickup(now):
    order = build_order(status=OrderStatus.PREPARING)
    assert delivery_progress(order, now) == 0
    assert delivery_status_message(order, now) == "Preparing order"
    assert minutes_remaining(order, now) is None


def test_progress_without_estimate(now):
    assert delivery_progress(out_for_delivery(now, 5), now) == 50


def test_progress_with_degenerate_estimate(now):
    assert delivery_progress(out_for_delivery(now, 5, eta_minutes=0), now) == 90


def test_progress_halfway(now):
    order = out_for_delivery(now, 10, eta_minutes=20)
    assert delivery_progress(order, now) == 50
    assert delivery_status_message(order, now) == "Rider is halfway there"
    assert minutes_remaining(order, now) == 10


def test_progress_never_negative(now):
    """A pickup timestamp ahead of the local clock reports 0, not a negative percentage."""
    order = out_for_delivery(now, -5, eta_minutes=20)
    assert delivery_progress(order, now) == 0
    assert delivery_status_message(order, now) == "Order picked up, on the way to you"


def test_progress_capped_while_late(now):
    order = out_for_delivery(now, 30, eta_minutes=20)
    assert delivery_progress(order, now) == 99
    assert delivery_status_message(order, now) == "Arriving very soon"
    assert minutes_remaining(order, now) == 1


def test_status_message_bands(now):
    assert delivery_status_message(out_for_delivery(now, 2, eta_minutes=20), now) == \
        "Order picked up, on the way to you"
    assert delivery_status_message(out_for_delivery(now, 6, eta_minutes=20), now) == "Rider is on the way"
    assert delivery_status_message(out_for_delivery(now, 16, eta_minutes=20), now) == "Your order is almost there"


def test_delivered_order(now):
    order = out_for_delivery(now, 20, eta_minutes=20, actual_delivery_time=now)
    assert delivery_progress(order, now) == 100
    assert delivery_status_message(order, now) == "Delivered"
    assert minutes_remaining(order, now) == 0


def test_minutes_remaining_rounds_up(now):
    order = out_for_delivery(now, 0, eta_minutes=0)
    order = order.with_changes(estimated_delivery_time=now + timedelta(minutes=4, seconds=10))
    assert minutes_remaining(order, now) == 5
