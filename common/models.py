"""
Pydantic v2 data models for orders, products, heartbeats, notifications and events.

Order and product documents keep the camelCase field names the dashboards and
mobile apps write (``productId``, ``stockReserved``, ...); Python code uses the
snake_case attribute names. Documents are read back with ``extra="allow"`` so
fields owned by other collaborators survive a round trip through the store.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from common.timeutils import iso_weekday, ms_to_iso


# -----------------------------------------------------------------------------
# Orders and products
# -----------------------------------------------------------------------------


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    CANCELLATION_CONFIRMED = "cancellation_confirmed"
    OUT_FOR_DELIVERY = "out_for_delivery"
    PICKUP_READY = "pickup_ready"
    DELIVERED = "delivered"
    FAILED = "failed"


# Status changes into these release a previously reserved order's stock.
RESTORING_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REJECTED})

# No further status changes once an order reaches one of these.
FINAL_STATUSES = frozenset(
    {
        OrderStatus.REJECTED,
        OrderStatus.CANCELLATION_CONFIRMED,
        OrderStatus.DELIVERED,
        OrderStatus.FAILED,
    }
)

# Stored status values of orders that must not take a reservation any more.
NON_RESERVABLE_STATUSES = frozenset(s.value for s in RESTORING_STATUSES | FINAL_STATUSES)


class Item(BaseModel):
    """Line item: product id and positive quantity."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    product_id: str = Field(..., alias="productId", min_length=1)
    quantity: int = Field(..., gt=0, description="Quantity must be positive")

    def __str__(self) -> str:
        return f"{self.product_id}:{self.quantity}"


class Order(BaseModel):
    """Order document as stored under ``orders/<id>``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    items: list[dict[str, Any]] = Field(default_factory=list)
    status: OrderStatus = OrderStatus.PENDING
    stock_reserved: bool = Field(False, alias="stockReserved")
    stock_restored: bool = Field(False, alias="stockRestored")
    rejection_reason: str | None = Field(None, alias="rejectionReason")
    customer_id: str | None = Field(None, alias="customerId")
    updated_at: int | None = Field(None, alias="updatedAt")

    def line_items(self) -> list[Item]:
        """Well-formed items only; entries without a product id or quantity are dropped."""
        out: list[Item] = []
        for raw in self.items:
            if not isinstance(raw, dict):
                continue
            product_id = raw.get("productId")
            quantity = raw.get("quantity")
            if not product_id or isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                continue
            out.append(Item(product_id=str(product_id), quantity=quantity))
        return out

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Product(BaseModel):
    """Inventory-bearing part of a product document."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    available_quantity: int = Field(0, alias="availableQuantity", ge=0)
    sold_quantity: int = Field(0, alias="soldQuantity", ge=0)
    current_reserved: int = Field(0, alias="currentReserved", ge=0)

    @property
    def available_qty(self) -> int:
        return self.available_quantity - self.sold_quantity - self.current_reserved

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class OrderCreateRequest(BaseModel):
    """Request to create an order: customer and at least one item."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    customer_id: str | None = Field(None, alias="customerId")
    items: list[Item] = Field(..., min_length=1)


class StatusUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: OrderStatus


class ProductStockRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    available_quantity: int = Field(..., alias="availableQuantity", ge=0)
    sold_quantity: int = Field(0, alias="soldQuantity", ge=0)


class ReservationOutcome(BaseModel):
    """What a reservation attempt did to an order."""

    model_config = ConfigDict(extra="forbid")

    order_id: str
    status: Literal["RESERVED", "REJECTED", "SKIPPED"]
    reason: str | None = None


class ReleaseOutcome(BaseModel):
    """What a restoration attempt did to an order."""

    model_config = ConfigDict(extra="forbid")

    order_id: str
    restored: bool
    missing_products: list[str] = Field(default_factory=list)
    clamped_products: list[str] = Field(default_factory=list)


# -----------------------------------------------------------------------------
# Cooperative time
# -----------------------------------------------------------------------------

COOP_TIME_ID = "coopTime"


class HeartbeatRecord(BaseModel):
    """Shared authoritative time record (singleton ``coopTime``)."""

    model_config = ConfigDict(extra="ignore")

    id: str = COOP_TIME_ID
    epoch_ms: int
    iso: str
    weekday: int = Field(..., ge=1, le=7)
    source: str
    server_ts: int
    updated_at: int

    @classmethod
    def from_epoch_ms(cls, ms: int, source: str) -> HeartbeatRecord:
        """Build the record for one tick; iso and weekday are derived from ms."""
        return cls(
            epoch_ms=ms,
            iso=ms_to_iso(ms),
            weekday=iso_weekday(ms),
            source=source,
            server_ts=ms,
            updated_at=ms,
        )


class QueuedHeartbeat(HeartbeatRecord):
    """A tick waiting in the durable queue for the shared store to come back."""

    queued_at: int

    def to_record(self) -> HeartbeatRecord:
        return HeartbeatRecord.model_validate(self.model_dump(exclude={"queued_at"}))


class FallbackSnapshot(BaseModel):
    """Most recent tick kept in the local key-value cache."""

    model_config = ConfigDict(extra="ignore")

    epoch_ms: int
    iso: str
    weekday: int
    source: str
    is_authoritative: bool = True
    stored_at: int


class CooperativeTime(BaseModel):
    """Answer of the cooperative time read path, tagged with its trust level."""

    model_config = ConfigDict(extra="forbid")

    epoch_ms: int
    iso: str
    weekday: int
    source: Literal["shared-store", "local-fallback", "device-time"]
    updated_at: int


class ConnectionStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_connected: bool
    consecutive_failures: int
    last_successful_publish: int | None
    has_fallback: bool


# -----------------------------------------------------------------------------
# Notifications
# -----------------------------------------------------------------------------


class CustomerNotification(BaseModel):
    """In-app notification document for a customer."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str
    customer_id: str = Field(..., alias="customerId")
    title: str
    message: str
    type: str
    timestamp: int
    is_read: bool = Field(False, alias="isRead")
    order_id: str = Field(..., alias="orderId")


# -----------------------------------------------------------------------------
# Events (for RabbitMQ)
# -----------------------------------------------------------------------------


class BaseEvent(BaseModel):
    """Base event with event_id, event_type, created_at, optional correlation_id."""

    model_config = ConfigDict(extra="forbid")

    event_id: str
    event_type: str
    created_at: str
    correlation_id: str | None = None


class OrderCreatedEvent(BaseEvent):
    """Emitted when an order document is created."""

    event_type: Literal["OrderCreated"] = "OrderCreated"
    order_id: str
    order: dict[str, Any]

    @classmethod
    def from_order(
        cls,
        order_id: str,
        order: dict[str, Any],
        event_id: str,
        created_at: str,
    ) -> OrderCreatedEvent:
        """Build OrderCreatedEvent from an order document."""
        return cls(
            event_id=event_id,
            event_type="OrderCreated",
            created_at=created_at,
            correlation_id=order_id,
            order_id=order_id,
            order=order,
        )


class OrderStatusChangedEvent(BaseEvent):
    """Emitted when an order document is updated; carries both versions."""

    event_type: Literal["OrderStatusChanged"] = "OrderStatusChanged"
    order_id: str
    before: dict[str, Any]
    after: dict[str, Any]

    @classmethod
    def from_change(
        cls,
        order_id: str,
        before: dict[str, Any],
        after: dict[str, Any],
        event_id: str,
        created_at: str,
    ) -> OrderStatusChangedEvent:
        """Build OrderStatusChangedEvent from the before/after documents."""
        return cls(
            event_id=event_id,
            event_type="OrderStatusChanged",
            created_at=created_at,
            correlation_id=order_id,
            order_id=order_id,
            before=before,
            after=after,
        )
