"""
transitions.py — Order Status State Machine

Status Flow:
    pending -> confirmed -> preparing -> ready_for_pickup -> out_for_delivery -> delivered
    any non-terminal status -> cancelled

Only the next forward status (or cancellation) is accepted. Orders whose stored
status could not be recognized (UNKNOWN) may be moved to any known status so
that bad rows can be repaired from the admin console.
"""

from datetime import datetime, timezone
from typing import Optional

from .errors import InvalidTransition
from .models import Order, OrderStatus

FORWARD_FLOW = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
)

# Maps current status -> set of allowed next statuses
TRANSITIONS = {
    current: frozenset({following, OrderStatus.CANCELLED})
    for current, following in zip(FORWARD_FLOW, FORWARD_FLOW[1:])
}
TRANSITIONS[OrderStatus.DELIVERED] = frozenset()
TRANSITIONS[OrderStatus.CANCELLED] = frozenset()
TRANSITIONS[OrderStatus.UNKNOWN] = frozenset(s for s in OrderStatus if s is not OrderStatus.UNKNOWN)


def allowed_targets(status: OrderStatus) -> frozenset:
    """Returns the statuses an order in `status` may move to."""
    return TRANSITIONS[status]


def is_valid_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def validate_transition(order: Order, target: OrderStatus, now: Optional[datetime] = None) -> Order:
    """
    Applies a status change to an order.

    Args:
        order (Order): The order in its current state.
        target (OrderStatus): The requested status.
        now (Optional[datetime]): Time used for timestamp side effects.
            Defaults to the current UTC time.

    Returns:
        Order: The updated order. When `target` equals the current status the
        same order is returned without changes.

    Raises:
        InvalidTransition: If the order is terminal, the target is UNKNOWN, or
            the target is not the next status in the flow nor `cancelled`.

    Side effects on the returned copy:
        - delivered: `actual_delivery_time` is set to `now` (never earlier than
          `created_at`) unless it is already set.
        - out_for_delivery: `pickup_confirmed_at` is set to `now` unless already
          set. The estimated delivery time is left untouched.
    """
    current = order.status
    if target == current:
        return order

    if current.is_terminal:
        raise InvalidTransition(current, target, "order is already in a terminal status")
    if target is OrderStatus.UNKNOWN:
        raise InvalidTransition(current, target, "target status is not recognized")
    if not is_valid_transition(current, target):
        raise InvalidTransition(current, target, "only the next status or cancellation is allowed")

    if now is None:
        now = datetime.now(timezone.utc)

    changes = {"status": target}
    if target is OrderStatus.DELIVERED and order.actual_delivery_time is None:
        delivered_at = now
        if order.created_at is not None and delivered_at < order.created_at:
            delivered_at = order.created_at
        changes["actual_delivery_time"] = delivered_at
    if target is OrderStatus.OUT_FOR_DELIVERY and order.pickup_confirmed_at is None:
        changes["pickup_confirmed_at"] = now

    return order.with_changes(**changes)
