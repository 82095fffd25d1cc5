"""
workflow.py — Orchestration of Order Lifecycle Requests

This module connects the pure lifecycle core with its collaborators. Each
request follows the same sequence:

1. Load the current order from the Order Store (REST)
2. Compute the new order state with the lifecycle core
3. Persist only the changed columns with a conditional update on the status
   the order was read in (prevents lost updates between concurrent writers)
4. Publish an order event to RabbitMQ so dashboards can refresh

A failure in steps 1-3 is raised to the caller unchanged. A failure in step 4
happens after the write is committed, so it is logged and not raised.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import httpx
import pika

from .aggregation import summarize
from .assignment import resolve_assignment
from .clients import OrderEventPublisher, OrderStoreClient
from .errors import InvalidAssignment, InvalidTransition
from .models import Order, OrderFilter, OrderStatus, OrderSummary, PriorityBucket
from .priority import classify_priority
from .tracking import DEFAULT_DELIVERY_MINUTES, apply_delivery_estimate, estimate_delivery_minutes
from .transitions import validate_transition

log = logging.getLogger(__name__)


def change_order_status(store: OrderStoreClient, order_id: str, target: OrderStatus,
                        publisher: Optional[OrderEventPublisher] = None,
                        now: Optional[datetime] = None) -> Order:
    """
    Moves an order to a new status and persists the result.

    Args:
        store (OrderStoreClient): Order Store used to read and write the order.
        order_id (str): The order ID.
        target (OrderStatus): Requested status.
        publisher (Optional[OrderEventPublisher]): Receives a 'status_changed'
            event after a successful write.
        now (Optional[datetime]): Time used for timestamps. Defaults to the
            current UTC time.

    Returns:
        Order: The order as stored after the change (or unchanged if the
        requested status equals the current one).

    Raises:
        OrderNotFound: If the order does not exist.
        InvalidTransition: If the state machine rejects the change.
        StaleOrderError: If the order's status changed after it was read.
        httpx.HTTPError: If the Order Store fails or cannot be reached.
    """
    log_prefix = f"[Order: {order_id}]"
    now = now or datetime.now(timezone.utc)

    order = store.get_order(order_id)
    try:
        updated = validate_transition(order, target, now)
    except InvalidTransition as e:
        log.warning(f"{log_prefix} Status change rejected: {e}")
        raise

    if updated is order:
        log.info(f"{log_prefix} Already '{target.value}', nothing to update.")
        return order

    if target is OrderStatus.OUT_FOR_DELIVERY and updated.estimated_delivery_time is None:
        updated = _with_delivery_estimate(store, updated, now)

    fields = changed_fields(order, updated)
    log.info(f"{log_prefix} Status change {order.status.value} -> {target.value}.")
    stored = store.update_order(order_id, fields, expected_status=order.status)

    _publish(publisher, "status_changed", stored, order.status)
    return stored


def assign_rider(store: OrderStoreClient, order_id: str, rider_id: Optional[str],
                 publisher: Optional[OrderEventPublisher] = None) -> Order:
    """
    Assigns, changes or clears the delivery rider of an order.

    Args:
        store (OrderStoreClient): Order Store used to read and write the order.
        order_id (str): The order ID.
        rider_id (Optional[str]): New rider; None or empty unassigns.
        publisher (Optional[OrderEventPublisher]): Receives a 'rider_assigned'
            event after a successful write.

    Returns:
        Order: The order as stored after the change.

    Raises:
        OrderNotFound: If the order does not exist.
        InvalidAssignment: If the order is delivered or cancelled.
        RiderNotFound: If the rider does not exist.
        StaleOrderError: If the order's status changed after it was read.
        httpx.HTTPError: If the Order Store fails or cannot be reached.
    """
    log_prefix = f"[Order: {order_id}]"

    order = store.get_order(order_id)
    try:
        updated = resolve_assignment(order, rider_id)
    except InvalidAssignment as e:
        log.warning(f"{log_prefix} Rider assignment rejected: {e}")
        raise

    if updated is order:
        log.info(f"{log_prefix} Rider unchanged, nothing to update.")
        return order

    # Conditioned on the status so the order cannot have become terminal meanwhile.
    stored = store.update_order(order_id, changed_fields(order, updated), expected_status=order.status)
    if stored.delivery_rider_id:
        log.info(f"{log_prefix} Rider {stored.delivery_rider_id} assigned.")
    else:
        log.info(f"{log_prefix} Rider unassigned.")

    _publish(publisher, "rider_assigned", stored, order.status)
    return stored


def load_dashboard(store: OrderStoreClient, order_filter: Optional[OrderFilter] = None,
                   now: Optional[datetime] = None) -> Tuple[List[Tuple[Order, PriorityBucket]], OrderSummary]:
    """
    Loads a working set of orders and derives what the dashboard displays.

    Returns:
        Tuple: Each order paired with its priority bucket, and the summary.
    """
    now = now or datetime.now(timezone.utc)
    orders = store.list_orders(order_filter)
    prioritized = [(order, classify_priority(order, now)) for order in orders]
    return prioritized, summarize(orders, now)


def changed_fields(before: Order, after: Order) -> dict:
    """Column values of `after` that differ from `before`."""
    names = [name for name in Order.model_fields if getattr(before, name) != getattr(after, name)]
    return after.to_store_fields(*names)


def _with_delivery_estimate(store: OrderStoreClient, order: Order, now: datetime) -> Order:
    """
    Sets the estimated delivery time from the restaurant's travel times.
    Best effort: if the reference data cannot be read the order is returned as is.
    """
    log_prefix = f"[Order: {order.id}]"
    try:
        from_location = store.get_restaurant_location(order.restaurant_id)
        if from_location and order.delivery_location_id:
            minutes = estimate_delivery_minutes(store.list_travel_times(), from_location, order.delivery_location_id)
        else:
            minutes = DEFAULT_DELIVERY_MINUTES
    except httpx.HTTPError as e:
        log.warning(f"{log_prefix} Could not estimate delivery time, leaving it empty: {e}")
        return order

    log.info(f"{log_prefix} Estimated delivery in {minutes} min.")
    return apply_delivery_estimate(order, minutes, now)


def _publish(publisher: Optional[OrderEventPublisher], event: str, order: Order, old_status: OrderStatus):
    if publisher is None:
        return
    try:
        publisher.publish(event, order, old_status)
    except pika.exceptions.AMQPError as e:
        # The write is already committed; dashboards pick the change up on their next refresh.
        log.critical(f"[Order: {order.id}] Change saved but event '{event}' was not delivered: {e}")
