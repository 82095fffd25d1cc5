"""
errors.py — Error Taxonomy of the Order Lifecycle

Every lifecycle operation fails fast with one of these exceptions and performs
no partial mutation before raising. Translating them into user-visible
messages is the caller's concern (see `main.py` for the HTTP mapping).
"""


class LifecycleError(Exception):
    """Base class for all order lifecycle errors."""


class InvalidTransition(LifecycleError):
    """
    Raised when a requested status change is not allowed by the state machine.

    Attributes:
        current: Status the order is in.
        target: Status that was requested.
    """
    def __init__(self, current, target, reason: str = "transition not allowed"):
        self.current = current
        self.target = target
        self.reason = reason
        super().__init__(f"Invalid transition {current.value} -> {target.value}: {reason}")


class InvalidAssignment(LifecycleError):
    """Raised when a rider is (un)assigned on an order in a terminal status."""
    def __init__(self, order_id: str, status):
        self.order_id = order_id
        self.status = status
        super().__init__(f"Cannot change rider of order {order_id} in status {status.value}")


class NotFound(LifecycleError):
    """A referenced record does not exist in the Order Store."""


class OrderNotFound(NotFound):
    """Raised by the Order Store client when no order matches the given id."""
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class RiderNotFound(NotFound):
    """Raised when the Order Store rejects a rider id that does not exist."""
    def __init__(self, rider_id: str):
        self.rider_id = rider_id
        super().__init__(f"Rider {rider_id} not found")


class StaleOrderError(LifecycleError):
    """
    Raised when a conditional update matched no row although the order exists.

    Another writer changed the order after it was read; the caller should
    reload the order and retry the request.
    """
    def __init__(self, order_id: str, expected_status):
        self.order_id = order_id
        self.expected_status = expected_status
        super().__init__(
            f"Order {order_id} was modified concurrently (expected status {expected_status.value})"
        )
