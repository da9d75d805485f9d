"""
Shared common module for the order API, the stock consumer and the coop-time publisher.

Framework-agnostic; no FastAPI dependency. Uses Pydantic v2 for schemas.
"""

from common.errors import (
    AgriCartError,
    InsufficientStockError,
    NotFoundError,
    PartialWriteError,
    ReservationError,
    StoreError,
    StoreUnavailableError,
)
from common.events import OrderEventBus
from common.ids import new_event_id, new_order_id, notification_id, now_iso
from common.logging import setup_logging
from common.models import (
    BaseEvent,
    CooperativeTime,
    HeartbeatRecord,
    Item,
    Order,
    OrderCreatedEvent,
    OrderCreateRequest,
    OrderStatus,
    OrderStatusChangedEvent,
    Product,
    QueuedHeartbeat,
)
from common.storage import DocumentStore, init_db, mark_message_processed
from common.timeutils import epoch_ms, iso_weekday, ms_to_iso, utc_now

__all__ = [
    "AgriCartError",
    "StoreError",
    "StoreUnavailableError",
    "PartialWriteError",
    "ReservationError",
    "NotFoundError",
    "InsufficientStockError",
    "OrderEventBus",
    "new_order_id",
    "new_event_id",
    "notification_id",
    "now_iso",
    "setup_logging",
    "Item",
    "Order",
    "OrderStatus",
    "OrderCreateRequest",
    "Product",
    "HeartbeatRecord",
    "QueuedHeartbeat",
    "CooperativeTime",
    "BaseEvent",
    "OrderCreatedEvent",
    "OrderStatusChangedEvent",
    "DocumentStore",
    "init_db",
    "mark_message_processed",
    "utc_now",
    "epoch_ms",
    "ms_to_iso",
    "iso_weekday",
]
