"""
tracking.py — Delivery Tracking Helpers

Derives what the rider and customer screens show for an order on its way:
estimated travel time between two locations, progress percentage, a short
status message and the minutes remaining. Like the rest of the lifecycle core
these are pure functions; the reference time is always passed in.
"""

import math
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .models import Order, TravelTime

DEFAULT_DELIVERY_MINUTES = 20
REVERSE_ROUTE_BUFFER = 1.1


def estimate_delivery_minutes(travel_times: Iterable[TravelTime], from_location_id: str,
                              to_location_id: str) -> int:
    """
    Estimates the travel time between two delivery locations.

    Args:
        travel_times (Iterable[TravelTime]): Known average travel times.
        from_location_id (str): Restaurant location.
        to_location_id (str): Delivery location.

    Returns:
        int: Minutes of the direct route if known; otherwise the reverse route
        plus a 10% buffer, rounded up; otherwise DEFAULT_DELIVERY_MINUTES.
    """
    direct = None
    reverse = None
    for travel_time in travel_times:
        if travel_time.from_location_id == from_location_id and travel_time.to_location_id == to_location_id:
            direct = travel_time
        elif travel_time.from_location_id == to_location_id and travel_time.to_location_id == from_location_id:
            reverse = travel_time

    if direct is not None:
        return math.ceil(direct.average_minutes)
    if reverse is not None:
        return math.ceil(reverse.average_minutes * REVERSE_ROUTE_BUFFER)
    return DEFAULT_DELIVERY_MINUTES


def apply_delivery_estimate(order: Order, minutes: int, now: datetime) -> Order:
    """Sets the estimated delivery time to `now + minutes` unless one is already set."""
    if order.estimated_delivery_time is not None:
        return order
    return order.with_changes(estimated_delivery_time=now + timedelta(minutes=minutes))


def delivery_progress(order: Order, now: datetime) -> int:
    """
    Percentage of the trip completed, between 0 and 100.

    100 is only reported once the delivery is confirmed; an order running late
    stays at 99. A reference time before pickup reports 0.
    """
    if order.pickup_confirmed_at is None:
        return 0
    if order.actual_delivery_time is not None:
        return 100
    if order.estimated_delivery_time is None:
        return 50

    total = (order.estimated_delivery_time - order.pickup_confirmed_at).total_seconds()
    if total <= 0:
        return 90

    elapsed = (now - order.pickup_confirmed_at).total_seconds()
    progress = round(elapsed / total * 100)
    return max(0, min(progress, 99))


def delivery_status_message(order: Order, now: datetime) -> str:
    if order.pickup_confirmed_at is None:
        return "Preparing order"
    if order.actual_delivery_time is not None:
        return "Delivered"

    progress = delivery_progress(order, now)
    if progress < 25:
        return "Order picked up, on the way to you"
    if progress < 50:
        return "Rider is on the way"
    if progress < 75:
        return "Rider is halfway there"
    if progress < 90:
        return "Your order is almost there"
    return "Arriving very soon"


def minutes_remaining(order: Order, now: datetime) -> Optional[int]:
    """
    Whole minutes until the estimated delivery time, rounded up.

    Returns None when the order has not been picked up or has no estimate,
    0 once delivered, and at least 1 while the delivery is still open.
    """
    if order.pickup_confirmed_at is None or order.estimated_delivery_time is None:
        return None
    if order.actual_delivery_time is not None:
        return 0

    remaining = (order.estimated_delivery_time - now).total_seconds()
    if remaining <= 0:
        return 1
    return math.ceil(remaining / 60)
