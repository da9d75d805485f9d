"""
Error taxonomy shared by the stock reservation protocol and the heartbeat clock.

Reservation errors are terminal for one order and are converted into a
rejected order by the handler. Store errors are recoverable for the heartbeat
(queue + retry) and are logged by everything else.
"""

from __future__ import annotations


class AgriCartError(Exception):
    """Base class for all domain errors raised by this package."""


class StoreError(AgriCartError):
    """A document store operation failed."""


class StoreUnavailableError(StoreError):
    """The shared store could not be reached or refused the write."""


class PartialWriteError(StoreError):
    """The final order flag write failed after product counters were touched."""

    def __init__(self, order_id: str, message: str) -> None:
        super().__init__(f"Order {order_id}: {message}")
        self.order_id = order_id


class ReservationError(AgriCartError):
    """Reservation for an order cannot proceed; the order gets rejected."""


class NotFoundError(ReservationError):
    """A product referenced by an order does not exist."""

    def __init__(self, product_id: str) -> None:
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class InsufficientStockError(ReservationError):
    """A product does not have enough unreserved stock for an order item."""

    def __init__(self, product_id: str, requested: int, available: int) -> None:
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested={requested}, available={available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available
