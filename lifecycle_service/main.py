"""
main.py — FastAPI Entry Point for the Order Lifecycle Service

This module provides the REST API used by the admin and restaurant-owner
consoles to triage and move orders through their delivery lifecycle.

Responsibilities:
    • List orders with their priority bucket and dashboard statistics
    • Accept status changes and rider assignments and run them through the workflow
    • Translate lifecycle errors into HTTP responses
    • Start the background thread that listens for order events
    • Provide system health information
"""

import os
import threading
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from .clients import OrderEventPublisher, OrderStoreClient, start_order_event_listener
from .errors import InvalidAssignment, InvalidTransition, NotFound, StaleOrderError
from .logging_config import get_logger, setup_logging
from .models import (Order, OrderFilter, OrderStatus, PriorityBucket, RiderAssignmentRequest, SortField,
                     SortOrder, StatusChangeRequest)
from .priority import classify_priority
from .tracking import delivery_progress, delivery_status_message, minutes_remaining
from .workflow import assign_rider, change_order_status, load_dashboard

ORDER_EVENTS_ENABLED = os.environ.get("ORDER_EVENTS_ENABLED", "true").lower() == "true"
ORDER_EVENTS_LISTENER = os.environ.get("ORDER_EVENTS_LISTENER", "true").lower() == "true"

# Initialization
setup_logging()
log = get_logger(__name__)
app = FastAPI(title="Order Lifecycle Service")
event_publisher = OrderEventPublisher() if ORDER_EVENTS_ENABLED else None


# Dependencies
def get_order_store():
    """Yields an Order Store client for the duration of a request."""
    store = OrderStoreClient()
    try:
        yield store
    finally:
        store.close()


def get_event_publisher() -> Optional[OrderEventPublisher]:
    """Returns the shared event publisher, or None when order events are disabled."""
    return event_publisher


def get_order_filter(
        restaurant_id: Optional[str] = None,
        user_id: Optional[str] = None,
        rider_id: Optional[str] = None,
        status: Optional[OrderStatus] = None,
        location_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        search: Optional[str] = None,
        sort_by: SortField = "created_at",
        sort_order: SortOrder = "desc",
) -> OrderFilter:
    """Collects the order list query parameters into an OrderFilter."""
    return OrderFilter(
        restaurant_id=restaurant_id,
        user_id=user_id,
        rider_id=rider_id,
        status=status,
        location_id=location_id,
        start_date=start_date,
        end_date=end_date,
        search_term=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )


def order_view(order: Order, priority: PriorityBucket) -> dict:
    """Serializes an order for the consoles, with its label and priority."""
    data = order.model_dump(mode="json", by_alias=True)
    data["statusLabel"] = order.status.label
    data["priority"] = priority.value
    return data


# Error translation
@app.exception_handler(InvalidTransition)
@app.exception_handler(InvalidAssignment)
def handle_rejected_request(request: Request, exc: Exception):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFound)
def handle_not_found(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StaleOrderError)
def handle_stale_order(request: Request, exc: StaleOrderError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(httpx.HTTPError)
def handle_store_failure(request: Request, exc: httpx.HTTPError):
    log.error(f"Order Store failure while handling {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": "Order Store unavailable."})


# Startup Event: Launch order event listener
@app.on_event("startup")
def on_startup():
    """
    Starts the background thread that listens for order events.

    The thread runs as a daemon and stops automatically when the app terminates.
    It is only started when ORDER_EVENTS_LISTENER is enabled.
    """
    log.info("Order lifecycle service starting...")
    if ORDER_EVENTS_LISTENER:
        listener_thread = threading.Thread(target=start_order_event_listener, daemon=True)
        listener_thread.start()
        log.info("Order event listener thread started.")


@app.on_event("shutdown")
def on_shutdown():
    """Closes the shared RabbitMQ publisher connection."""
    if event_publisher is not None:
        event_publisher.close()


@app.get("/v1/orders")
def list_orders(order_filter: OrderFilter = Depends(get_order_filter),
                store: OrderStoreClient = Depends(get_order_store)):
    """
    Lists orders matching the query parameters, each with its priority bucket.

    Returns:
        list[dict]: Orders serialized with database column names plus
        `statusLabel` and `priority`.
    """
    prioritized, _ = load_dashboard(store, order_filter)
    return [order_view(order, priority) for order, priority in prioritized]


@app.get("/v1/orders/summary")
def orders_summary(order_filter: OrderFilter = Depends(get_order_filter),
                   store: OrderStoreClient = Depends(get_order_store)):
    """Dashboard statistics (counts per status, revenue, high priority count)."""
    _, summary = load_dashboard(store, order_filter)
    return summary.model_dump()


@app.get("/v1/riders")
def list_riders(store: OrderStoreClient = Depends(get_order_store)):
    """Riders that can be assigned to orders."""
    return [rider.model_dump() for rider in store.list_riders()]


@app.get("/v1/orders/{order_id}")
def get_order(order_id: str, store: OrderStoreClient = Depends(get_order_store)):
    """
    Returns one order with its priority and delivery tracking information.

    Raises:
        404: If the order does not exist.
    """
    now = datetime.now(timezone.utc)
    order = store.get_order(order_id)
    data = order_view(order, classify_priority(order, now))
    data["tracking"] = {
        "progress": delivery_progress(order, now),
        "message": delivery_status_message(order, now),
        "minutesRemaining": minutes_remaining(order, now),
    }
    return data


@app.put("/v1/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusChangeRequest,
                        store: OrderStoreClient = Depends(get_order_store),
                        publisher: Optional[OrderEventPublisher] = Depends(get_event_publisher)):
    """
    Moves an order to a new status.

    Raises:
        400: If the transition is not allowed.
        404: If the order does not exist.
        409: If the order was changed concurrently.
    """
    log.info(f"[Order: {order_id}] Status change to '{payload.status.value}' requested.")
    order = change_order_status(store, order_id, payload.status, publisher=publisher)
    return order_view(order, classify_priority(order, datetime.now(timezone.utc)))


@app.put("/v1/orders/{order_id}/rider")
def update_order_rider(order_id: str, payload: RiderAssignmentRequest,
                       store: OrderStoreClient = Depends(get_order_store),
                       publisher: Optional[OrderEventPublisher] = Depends(get_event_publisher)):
    """
    Assigns, changes or clears (riderId null or empty) the delivery rider.

    Raises:
        400: If the order is delivered or cancelled.
        404: If the order or the rider does not exist.
        409: If the order was changed concurrently.
    """
    log.info(f"[Order: {order_id}] Rider change to '{payload.riderId}' requested.")
    order = assign_rider(store, order_id, payload.riderId, publisher=publisher)
    return order_view(order, classify_priority(order, datetime.now(timezone.utc)))


# Health Check Endpoint
@app.get("/health")
def health_check():
    """
    Simple health check endpoint for monitoring systems and container orchestrators.

    Returns:
        dict: A basic JSON object indicating service availability.
    """
    return {"status": "ok"}
