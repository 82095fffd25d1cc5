import os

# Must be set before the service modules are imported.
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("ORDER_EVENTS_LISTENER", "false")
os.environ.setdefault("ORDER_EVENTS_ENABLED", "false")

from datetime import datetime, timedelta, timezone

import pika
import pytest
from fastapi.testclient import TestClient

from lifecycle_service.clients import OrderStoreClient
from lifecycle_service.models import Order, OrderItem, OrderStatus
from mock_services import mock_order_store

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def build_order(status=OrderStatus.PENDING, minutes_old=0, **fields):
    """Builds an Order created `minutes_old` minutes before NOW."""
    values = {
        "id": "order-1",
        "status": status,
        "total_amount": 5500.0,
        "delivery_fee": 500.0,
        "delivery_address": "12 Herbert Macaulay Way, Yaba",
        "restaurant_id": "rest-1",
        "user_id": "user-1",
        "created_at": NOW - timedelta(minutes=minutes_old),
        "order_items": [OrderItem(menu_item_id="jollof-rice", quantity=2, unit_price=2500.0)],
    }
    values.update(fields)
    return Order(**values)


def order_row(order_id, status="pending", minutes_old=0, **fields):
    """Builds a raw Order Store row as the hosted database returns it."""
    row = {
        "id": order_id,
        "order_status": status,
        "total_amount": 5500,
        "delivery_fee": 500,
        "delivery_address": "12 Herbert Macaulay Way, Yaba",
        "restaurant_id": "rest-1",
        "user_id": "user-1",
        "delivery_rider_id": None,
        "delivery_location_id": "loc-yaba",
        "created_at": (NOW - timedelta(minutes=minutes_old)).isoformat(),
    }
    row.update(fields)
    return row


class RecordingPublisher:
    """Stands in for OrderEventPublisher and remembers what was published."""

    def __init__(self, fail=False):
        self.events = []
        self.fail = fail

    def publish(self, event, order, old_status=None):
        if self.fail:
            raise pika.exceptions.AMQPConnectionError("broker down")
        self.events.append((event, order.id, old_status, order.status))

    def close(self):
        pass


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def order_tables():
    """Empty mock Order Store tables, reset after each test."""
    mock_order_store.reset_tables()
    yield mock_order_store.TABLES
    mock_order_store.reset_tables()


@pytest.fixture
def store(order_tables):
    """OrderStoreClient talking to the in-process mock Order Store."""
    client = OrderStoreClient(client=TestClient(mock_order_store.app), api_key="test-key")
    yield client
    client.close()


@pytest.fixture
def publisher():
    return RecordingPublisher()
