"""
priority.py — Priority Bucketing for Operational Triage

An order is high priority once it has waited longer than the threshold of its
current status. Waiting time is always measured from the order's creation,
not from the moment it entered its current status (the data model keeps no
status history).
"""

from datetime import datetime, timedelta

from .models import Order, OrderStatus, PriorityBucket

WAIT_THRESHOLDS = {
    OrderStatus.PENDING: timedelta(minutes=5),
    OrderStatus.CONFIRMED: timedelta(minutes=10),
    OrderStatus.PREPARING: timedelta(minutes=20),
}


def elapsed_since_creation(order: Order, now: datetime) -> timedelta:
    """Wall-clock time between order creation and `now` (zero if unknown)."""
    if order.created_at is None:
        return timedelta(0)
    return now - order.created_at


def classify_priority(order: Order, now: datetime) -> PriorityBucket:
    """
    Classifies an order as high or normal priority.

    Args:
        order (Order): The order to classify.
        now (datetime): Reference time. Passing it explicitly keeps the
            classification deterministic for a given (now, order) pair.

    Returns:
        PriorityBucket: HIGH when the order's status has a threshold and the
        elapsed time is at least that threshold, NORMAL otherwise.
    """
    threshold = WAIT_THRESHOLDS.get(order.status)
    if threshold is None:
        return PriorityBucket.NORMAL
    if elapsed_since_creation(order, now) >= threshold:
        return PriorityBucket.HIGH
    return PriorityBucket.NORMAL
