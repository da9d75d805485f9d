"""Stock reservation and restoration driven by order lifecycle events."""

from stock_service.reservation import StockReservationProtocol

__all__ = ["StockReservationProtocol"]
