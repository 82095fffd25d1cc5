"""
aggregation.py — Dashboard Statistics over a Working Set of Orders

All functions are single-pass reductions over orders that were already fetched
from the Order Store.
"""

from collections import Counter
from datetime import datetime
from typing import Iterable, Optional

from .models import Order, OrderStatus, OrderSummary, PriorityBucket
from .priority import classify_priority


def count_by_status(orders: Iterable[Order], status: Optional[OrderStatus] = None) -> int:
    """Counts all orders, or only those in `status` when it is given."""
    if status is None:
        return sum(1 for _ in orders)
    return sum(1 for order in orders if order.status == status)


def total_revenue(orders: Iterable[Order]) -> float:
    """Sums the total amount of every order that was not cancelled."""
    return sum(order.total_amount for order in orders if order.status is not OrderStatus.CANCELLED)


def summarize(orders: Iterable[Order], now: datetime) -> OrderSummary:
    """
    Builds the dashboard summary in one pass.

    Args:
        orders (Iterable[Order]): Working set of orders.
        now (datetime): Reference time for priority classification.

    Returns:
        OrderSummary: Counts per status, revenue and number of high priority orders.
    """
    by_status = Counter()
    revenue = 0.0
    high_priority = 0
    for order in orders:
        by_status[order.status.value] += 1
        if order.status is not OrderStatus.CANCELLED:
            revenue += order.total_amount
        if classify_priority(order, now) is PriorityBucket.HIGH:
            high_priority += 1

    return OrderSummary(
        total_orders=sum(by_status.values()),
        by_status=dict(by_status),
        revenue=revenue,
        high_priority=high_priority,
    )
