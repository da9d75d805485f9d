"""Shared RabbitMQ broker config and setup."""

from broker.config import (
    EXCHANGE,
    QUEUE_ORDER_CREATED,
    QUEUE_ORDER_EVENTS_DLQ,
    QUEUE_ORDER_STATUS_CHANGED,
    ROUTING_ORDER_CREATED,
    ROUTING_ORDER_STATUS_CHANGED,
)

__all__ = [
    "EXCHANGE",
    "QUEUE_ORDER_CREATED",
    "QUEUE_ORDER_STATUS_CHANGED",
    "QUEUE_ORDER_EVENTS_DLQ",
    "ROUTING_ORDER_CREATED",
    "ROUTING_ORDER_STATUS_CHANGED",
]
