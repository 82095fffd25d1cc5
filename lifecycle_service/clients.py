"""
This module provides communication clients for the external systems the lifecycle service relies on:
- Order Store (REST API of the hosted database, PostgREST dialect)
- Order event queue (RabbitMQ) used for "order updated" notifications
Each class encapsulates its protocol logic, error handling, and connection management.
"""

import json
import logging
import os
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import httpx
import pika

from .errors import OrderNotFound, RiderNotFound, StaleOrderError
from .models import Order, OrderFilter, OrderStatus, Rider, TravelTime

# Service addresses (normally provided through env vars)
ORDER_STORE_URL = os.environ.get("ORDER_STORE_URL", "http://order_store:8002")
ORDER_STORE_API_KEY = os.environ.get("ORDER_STORE_API_KEY", "")
RABBITMQ_HOST = os.environ.get("RABBITMQ_HOST", "localhost")
RABBITMQ_USER = os.environ.get("RABBITMQ_USER", "guest")
RABBITMQ_PASSWORD = os.environ.get("RABBITMQ_PASSWORD", "guest")
ORDER_EVENTS_QUEUE = os.environ.get("ORDER_EVENTS_QUEUE", "orders.events")

REST_PREFIX = "/rest/v1"
ORDER_SELECT = "*,order_items(*)"

log = logging.getLogger(__name__)


# --- Order Store Client (REST) ---
class OrderStoreClient:
    """
    Client for the Order Store (REST API of the hosted database).
    Reads orders and reference data and writes field-level order updates.
    """
    def __init__(self, client: Optional[httpx.Client] = None, api_key: str = ORDER_STORE_API_KEY):
        """
        Initializes the HTTP client with proper timeout configuration.

        Args:
            client (Optional[httpx.Client]): Preconfigured client to use instead
                of creating one for ORDER_STORE_URL (e.g. a test client).
            api_key (str): Service key sent as `apikey` and bearer token.
        """
        if client is None:
            timeout_config = httpx.Timeout(5.0, read=8.0)
            client = httpx.Client(base_url=ORDER_STORE_URL, timeout=timeout_config)
        self.client = client
        self.headers = {"apikey": api_key, "Authorization": f"Bearer {api_key}"}

    def close(self):
        """Closes the HTTP client session."""
        self.client.close()

    def _get(self, table: str, params) -> list:
        try:
            response = self.client.get(f"{REST_PREFIX}/{table}", params=params, headers=self.headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            log.error(f"Order Store returned HTTP {e.response.status_code} for '{table}': {e.response.text}")
            raise
        except httpx.TransportError as e:
            log.error(f"Order Store unreachable while reading '{table}': {e}")
            raise

    def get_order(self, order_id: str) -> Order:
        """
        Fetches a single order including its items.
        Args:
            order_id (str): The order ID.
        Returns:
            Order: The stored order.
        Raises:
            OrderNotFound: If no order has this ID.
            httpx.HTTPError: If the Order Store fails or cannot be reached.
        """
        rows = self._get("orders", {"id": f"eq.{order_id}", "select": ORDER_SELECT})
        if not rows:
            raise OrderNotFound(order_id)
        return Order.model_validate(rows[0])

    def list_orders(self, order_filter: Optional[OrderFilter] = None) -> List[Order]:
        """
        Lists orders matching a filter set.
        Args:
            order_filter (Optional[OrderFilter]): Equality, date range and search
                predicates plus sort order. Defaults to all orders, newest first.
        Returns:
            List[Order]: Matching orders in the requested order.
        """
        return [Order.model_validate(row) for row in self._get("orders", build_order_query(order_filter or OrderFilter()))]

    def update_order(self, order_id: str, fields: dict, expected_status: Optional[OrderStatus] = None) -> Order:
        """
        Writes a field-level update to an order.

        When `expected_status` is given the update only applies if the stored
        status still equals it (compare-and-swap on the status column).

        Args:
            order_id (str): The order ID.
            fields (dict): Column names and JSON-compatible values to write.
            expected_status (Optional[OrderStatus]): Status the order must still be in.
        Returns:
            Order: The order as stored after the update.
        Raises:
            OrderNotFound: If the order does not exist.
            StaleOrderError: If the order exists but its status changed meanwhile.
            RiderNotFound: If `delivery_rider_id` references a rider that does not exist.
            httpx.HTTPError: If the Order Store fails or cannot be reached.
        """
        params = {"id": f"eq.{order_id}", "select": ORDER_SELECT}
        if expected_status is not None:
            params["order_status"] = f"eq.{expected_status.value}"
        headers = {**self.headers, "Prefer": "return=representation"}

        try:
            response = self.client.patch(f"{REST_PREFIX}/orders", params=params, json=fields, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if _is_foreign_key_violation(e.response) and fields.get("delivery_rider_id"):
                log.warning(f"[Order: {order_id}] Rider {fields['delivery_rider_id']} does not exist.")
                raise RiderNotFound(fields["delivery_rider_id"]) from e
            log.error(f"[Order: {order_id}] Order Store rejected update (HTTP {e.response.status_code}): {e.response.text}")
            raise
        except httpx.TransportError as e:
            log.error(f"[Order: {order_id}] Order Store unreachable during update: {e}")
            raise

        rows = response.json()
        if rows:
            return Order.model_validate(rows[0])
        if expected_status is None:
            raise OrderNotFound(order_id)

        # Nothing matched: either the order is gone or another writer got there first.
        self.get_order(order_id)
        log.warning(f"[Order: {order_id}] Conditional update lost: status is no longer '{expected_status.value}'.")
        raise StaleOrderError(order_id, expected_status)

    def list_riders(self) -> List[Rider]:
        rows = self._get("users", {"user_type": "eq.delivery_rider", "select": "id,full_name,phone_number",
                                   "order": "full_name.asc"})
        return [Rider.model_validate(row) for row in rows]

    def list_travel_times(self) -> List[TravelTime]:
        rows = self._get("location_travel_times", {"select": "from_location_id,to_location_id,average_minutes"})
        return [TravelTime.model_validate(row) for row in rows]

    def get_restaurant_location(self, restaurant_id: str) -> Optional[str]:
        """Returns the location ID of a restaurant, or None if it has none."""
        rows = self._get("restaurants", {"id": f"eq.{restaurant_id}", "select": "location_id"})
        if not rows:
            return None
        return rows[0].get("location_id")


def _is_foreign_key_violation(response: httpx.Response) -> bool:
    """PostgREST answers 409 with Postgres error code 23503 for a missing referenced row."""
    if response.status_code != 409:
        return False
    try:
        return response.json().get("code") == "23503"
    except ValueError:
        return False


def quote_filter_value(value: str) -> str:
    """Double-quotes a PostgREST filter value, escaping backslashes and quotes."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_order_query(order_filter: OrderFilter) -> list:
    """
    Translates an OrderFilter into PostgREST query parameters.

    Returns a list of pairs because the date range needs `created_at` twice.
    """
    params = [("select", ORDER_SELECT)]
    equality = (
        ("user_id", order_filter.user_id),
        ("restaurant_id", order_filter.restaurant_id),
        ("delivery_rider_id", order_filter.rider_id),
        ("order_status", order_filter.status.value if order_filter.status else None),
        ("delivery_location_id", order_filter.location_id),
    )
    for column, value in equality:
        if value:
            params.append((column, f"eq.{value}"))

    if order_filter.start_date:
        params.append(("created_at", f"gte.{order_filter.start_date.isoformat()}"))
    if order_filter.end_date:
        params.append(("created_at", f"lte.{order_filter.end_date.isoformat()}"))
    if order_filter.search_term:
        # Quoted so commas and parentheses in addresses do not split the disjunction.
        pattern = quote_filter_value(f"*{order_filter.search_term}*")
        params.append(("or", f"(id.ilike.{pattern},delivery_address.ilike.{pattern})"))

    params.append(("order", f"{order_filter.sort_by}.{order_filter.sort_order}"))
    return params


# --- Order Event Publisher (MQ) ---
class OrderEventPublisher:
    """
    Publishes order notifications to RabbitMQ.
    Connects on first use and reconnects if the connection was closed or lost.
    One instance is shared by all requests; publishing is serialized because a
    BlockingConnection must not be used from several threads at once.
    """
    def __init__(self, queue: str = ORDER_EVENTS_QUEUE):
        self.queue = queue
        self.connection = None
        self.channel = None
        self.lock = threading.Lock()

    def _connect(self):
        """
        Establishes a RabbitMQ connection and declares the event queue.
        Raises:
            pika.exceptions.AMQPConnectionError: If the connection fails.
        """
        try:
            credentials = pika.PlainCredentials(RABBITMQ_USER, RABBITMQ_PASSWORD)
            self.connection = pika.BlockingConnection(
                pika.ConnectionParameters(host=RABBITMQ_HOST, credentials=credentials, heartbeat=60)
            )
            self.channel = self.connection.channel()
            self.channel.queue_declare(queue=self.queue, durable=True)
            log.info("Order event publisher connected to RabbitMQ.")
        except pika.exceptions.AMQPConnectionError as e:
            log.critical(f"Cannot connect to RabbitMQ for order events: {e}")
            raise

    def publish(self, event: str, order: Order, old_status: Optional[OrderStatus] = None):
        """
        Sends an order notification to the event queue.
        A connection dropped by the broker while idle is reopened once before giving up.
        Args:
            event (str): Event name, e.g. 'status_changed' or 'rider_assigned'.
            order (Order): The order after the change.
            old_status (Optional[OrderStatus]): Status before the change.
        Raises:
            pika.exceptions.AMQPError: If publishing fails.
        """
        body = json.dumps(build_event_message(event, order, old_status))
        with self.lock:
            for attempt in (1, 2):
                try:
                    if not self.connection or self.connection.is_closed:
                        self._connect()

                    self.channel.basic_publish(
                        exchange='',
                        routing_key=self.queue,
                        body=body,
                        properties=pika.BasicProperties(delivery_mode=2)  # persistent message
                    )
                    log.info(f"[Order: {order.id}] Event '{event}' published.")
                    return
                except pika.exceptions.AMQPConnectionError as e:
                    if attempt == 2:
                        log.error(f"[Order: {order.id}] Failed to publish event '{event}': {e}")
                        raise
                    log.warning(f"[Order: {order.id}] RabbitMQ connection lost, reconnecting: {e}")
                    self.connection = None
                except pika.exceptions.AMQPError as e:
                    log.error(f"[Order: {order.id}] Failed to publish event '{event}': {e}")
                    raise

    def close(self):
        with self.lock:
            if self.connection and self.connection.is_open:
                self.connection.close()


def build_event_message(event: str, order: Order, old_status: Optional[OrderStatus] = None) -> dict:
    return {
        "eventId": str(uuid.uuid4()),
        "event": event,
        "orderId": order.id,
        "restaurantId": order.restaurant_id,
        "oldStatus": old_status.value if old_status else None,
        "newStatus": order.status.value,
        "riderId": order.delivery_rider_id,
        "eventTimestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }


def describe_event(data: dict) -> str:
    """Turns an event message into the notification text shown to operators."""
    order_id = data.get("orderId", "UNKNOWN")
    event = data.get("event")
    if event == "status_changed":
        label = OrderStatus.parse(data.get("newStatus")).label
        return f"Order #{order_id} is now {label}"
    if event == "rider_assigned":
        rider_id = data.get("riderId")
        if rider_id:
            return f"Order #{order_id} assigned to rider {rider_id}"
        return f"Order #{order_id} has no rider assigned"
    return f"Order #{order_id} updated"


# --- Order Event Listener (MQ Consumer) ---
def start_order_event_listener(queue: str = ORDER_EVENTS_QUEUE):
    """
    Listens for order events and logs a notification for each one.
    Valid messages are acknowledged; malformed JSON and non-object bodies are
    rejected without requeue (dead-lettered if the broker is configured for it).
    On connection loss or errors the listener reconnects after 10 seconds.
    Intended to run on a daemon thread.
    """
    log.info("Order event listener thread starting...")
    while True:
        try:
            credentials = pika.PlainCredentials(RABBITMQ_USER, RABBITMQ_PASSWORD)
            connection = pika.BlockingConnection(
                pika.ConnectionParameters(host=RABBITMQ_HOST, credentials=credentials)
            )
            channel = connection.channel()
            channel.queue_declare(queue=queue, durable=True)
            channel.basic_consume(queue=queue, on_message_callback=handle_event_message)
            log.info("[ORDER-EVENTS] Listener active.")
            channel.start_consuming()

        except pika.exceptions.AMQPConnectionError:
            log.warning("Order event listener: lost connection to RabbitMQ. Reconnecting in 10s...")
            time.sleep(10)
        except Exception as e:
            log.error(f"Order event listener: unexpected error. {e}. Restarting in 10s.")
            time.sleep(10)


def handle_event_message(ch, method, properties, body):
    try:
        data = json.loads(body)
    except ValueError:
        data = None
    if not isinstance(data, dict):
        log.error(f"[ORDER-EVENTS] Invalid message received: {body}")
        ch.basic_nack(delivery_tag=method.delivery_tag, requeue=False)
        return
    log.info(f"[ORDER-EVENTS][Order: {data.get('orderId', 'UNKNOWN')}] {describe_event(data)}")
    ch.basic_ack(delivery_tag=method.delivery_tag)
