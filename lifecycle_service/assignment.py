"""
assignment.py — Rider Assignment

Assigns, changes or clears the delivery rider of an order. The rider id is not
checked against the rider table; the Order Store's foreign key takes care of
that when the change is persisted.
"""

from typing import Optional

from .errors import InvalidAssignment
from .models import Order


def resolve_assignment(order: Order, rider_id: Optional[str]) -> Order:
    """
    Returns the order with `rider_id` as its delivery rider.

    Args:
        order (Order): The order in its current state.
        rider_id (Optional[str]): The rider to assign. None or an empty string
            unassigns the current rider.

    Returns:
        Order: The updated order, or the same order when the rider is unchanged.

    Raises:
        InvalidAssignment: If the order is delivered or cancelled.
    """
    if order.status.is_terminal:
        raise InvalidAssignment(order.id, order.status)

    rider_id = rider_id or None
    if rider_id == order.delivery_rider_id:
        return order
    return order.with_changes(delivery_rider_id=rider_id)
