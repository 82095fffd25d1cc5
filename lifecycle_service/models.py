"""
models.py — Data Models for the Order Lifecycle

This module defines the data structures shared by the lifecycle core, the
Order Store client and the REST API. It uses Pydantic models to validate the
rows returned by the hosted database and the payloads received from the
presentation layer.

Models:
    - OrderStatus: Closed set of order statuses (with an explicit UNKNOWN fallback).
    - PriorityBucket: Derived triage classification (never persisted).
    - OrderItem: A single line of an order with its captured unit price.
    - Order: The central entity tracked through the delivery lifecycle.
    - Rider, TravelTime: Reference data supplied by the Order Store.
    - OrderFilter: Query parameters for listing orders.
    - OrderSummary: Dashboard statistics over a working set of orders.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OrderStatus(str, Enum):
    """
    Lifecycle status of an order.

    Values match the `order_status` column of the hosted database. Anything the
    database returns that is not listed here is mapped to UNKNOWN instead of
    being carried around as a free-form string.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value) -> "OrderStatus":
        """
        Converts a raw status value into an OrderStatus.

        Args:
            value: A status string, an OrderStatus or None.

        Returns:
            OrderStatus: The matching member, or UNKNOWN for unrecognized values.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def label(self) -> str:
        """Human readable name, e.g. 'Ready for Pickup'."""
        return STATUS_LABELS[self]


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

STATUS_LABELS = {
    OrderStatus.PENDING: "Pending",
    OrderStatus.CONFIRMED: "Confirmed",
    OrderStatus.PREPARING: "Preparing",
    OrderStatus.READY_FOR_PICKUP: "Ready for Pickup",
    OrderStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
    OrderStatus.UNKNOWN: "Unknown",
}


class PriorityBucket(str, Enum):
    HIGH = "high"
    NORMAL = "normal"


class OrderItem(BaseModel):
    """
    Represents a single menu item line in an order.

    Attributes:
        id (str): Unique identifier of the order item.
        menu_item_id (str): The referenced menu item.
        quantity (int): Number of portions. Must be at least one.
        unit_price (float): Price captured when the order was placed. Later menu
            price changes never affect it.
        special_instructions (Optional[str]): Free text from the customer.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: Optional[str] = None
    menu_item_id: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0)
    special_instructions: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


class Order(BaseModel):
    """
    Represents an order as stored in the hosted database.

    The lifecycle core never mutates an Order in place; every operation returns
    an updated copy (see `Order.with_changes`).

    Attributes:
        id (str): Opaque identifier, stable for the lifetime of the order.
        status (OrderStatus): Current status, read from the `order_status` column.
        total_amount (float): Order total including the delivery fee.
        delivery_fee (float): Delivery fee.
        delivery_address (str): Address the order is delivered to.
        delivery_instructions (Optional[str]): Notes for the rider.
        estimated_delivery_time (Optional[datetime]): Expected arrival.
        actual_delivery_time (Optional[datetime]): Set when the order is delivered.
        pickup_confirmed_at (Optional[datetime]): Set when the order leaves the restaurant.
        created_at (Optional[datetime]): Creation timestamp.
        restaurant_id (str): Owning restaurant.
        user_id (str): Customer who placed the order.
        delivery_rider_id (Optional[str]): Assigned rider, if any.
        delivery_location_id (Optional[str]): Delivery location used for travel estimates.
        order_items (List[OrderItem]): Ordered lines from the `order_items` relation.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    status: OrderStatus = Field(OrderStatus.PENDING, alias="order_status")
    total_amount: float = Field(0.0, ge=0)
    delivery_fee: float = Field(0.0, ge=0)
    delivery_address: str = ""
    delivery_instructions: Optional[str] = None
    estimated_delivery_time: Optional[datetime] = None
    actual_delivery_time: Optional[datetime] = None
    pickup_confirmed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    restaurant_id: str
    user_id: str
    delivery_rider_id: Optional[str] = None
    delivery_location_id: Optional[str] = None
    order_items: List[OrderItem] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value):
        return OrderStatus.parse(value)

    @field_validator("created_at", "estimated_delivery_time", "actual_delivery_time", "pickup_confirmed_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # `timestamp without time zone` columns hold UTC.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def items_subtotal(self) -> float:
        return sum(item.line_total for item in self.order_items)

    @property
    def expected_total(self) -> float:
        """Sum of the captured line totals plus the delivery fee."""
        return self.items_subtotal + self.delivery_fee

    def with_changes(self, **changes) -> "Order":
        """Returns a copy of the order with the given fields replaced."""
        return self.model_copy(update=changes)

    def to_store_fields(self, *names: str) -> dict:
        """
        Serializes selected fields using the database column names.

        Args:
            *names (str): Python field names to include.

        Returns:
            dict: JSON-compatible mapping of column name to value.
        """
        return self.model_dump(mode="json", by_alias=True, include=set(names))


class Rider(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    full_name: str
    phone_number: Optional[str] = None


class TravelTime(BaseModel):
    """Average travel time between two delivery locations."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    from_location_id: str
    to_location_id: str
    average_minutes: float = Field(..., ge=0)


SortField = Literal["created_at", "total_amount", "estimated_delivery_time"]
SortOrder = Literal["asc", "desc"]


class OrderFilter(BaseModel):
    """
    Filter set for listing orders.

    All predicates are simple equality or range checks. The date range applies
    to `created_at` and is inclusive on both ends.
    """
    restaurant_id: Optional[str] = None
    user_id: Optional[str] = None
    rider_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    location_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    search_term: Optional[str] = None
    sort_by: SortField = "created_at"
    sort_order: SortOrder = "desc"


class OrderSummary(BaseModel):
    """
    Dashboard statistics over a working set of orders.

    Attributes:
        total_orders (int): Number of orders in the set.
        by_status (Dict[str, int]): Order count per status value.
        revenue (float): Sum of total amounts of all non-cancelled orders.
        high_priority (int): Number of orders classified as high priority.
    """
    total_orders: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    revenue: float = 0.0
    high_priority: int = 0


class StatusChangeRequest(BaseModel):
    """Payload for `PUT /v1/orders/{id}/status`."""
    status: OrderStatus

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value):
        return OrderStatus.parse(value)


class RiderAssignmentRequest(BaseModel):
    """Payload for `PUT /v1/orders/{id}/rider`. A null or empty riderId unassigns."""
    riderId: Optional[str] = None
