"""
Order event publishers: straight onto the in-process bus, or through RabbitMQ
for a separately deployed stock service.
"""

import asyncio
import logging
from typing import Any

import aio_pika
from aio_pika import ExchangeType

from common import OrderEventBus, new_event_id, now_iso
from common.models import OrderCreatedEvent, OrderStatusChangedEvent

from broker.config import EXCHANGE, ROUTING_ORDER_CREATED, ROUTING_ORDER_STATUS_CHANGED
from broker.setup import connect

logger = logging.getLogger(__name__)


class InProcessPublisher:
    """Runs the bus handlers in a worker thread (they do blocking SQLite I/O)."""

    def __init__(self, bus: OrderEventBus) -> None:
        self.bus = bus

    async def order_created(self, order_id: str, order: dict[str, Any]) -> None:
        await asyncio.to_thread(self.bus.order_created, order_id, order)

    async def order_status_changed(self, order_id: str, before: dict[str, Any], after: dict[str, Any]) -> None:
        await asyncio.to_thread(self.bus.order_status_changed, order_id, before, after)

    async def close(self) -> None:
        pass


class BrokerPublisher:
    def __init__(self) -> None:
        self._connection = None
        self._exchange = None

    async def get_exchange(self) -> aio_pika.abc.AbstractExchange:
        """Lazy init RabbitMQ connection and exchange."""
        if self._exchange is not None:
            return self._exchange
        self._connection = await connect()
        channel = await self._connection.channel()
        self._exchange = await channel.declare_exchange(EXCHANGE, ExchangeType.TOPIC, durable=True)
        return self._exchange

    async def _publish(self, body: bytes, routing_key: str) -> None:
        exchange = await self.get_exchange()
        await exchange.publish(
            aio_pika.Message(
                body=body,
                content_type="application/json",
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
            ),
            routing_key=routing_key,
        )

    async def order_created(self, order_id: str, order: dict[str, Any]) -> None:
        event = OrderCreatedEvent.from_order(
            order_id=order_id,
            order=order,
            event_id=new_event_id(),
            created_at=now_iso(),
        )
        await self._publish(event.model_dump_json().encode(), ROUTING_ORDER_CREATED)
        logger.info("Order %s created, OrderCreated published", order_id)

    async def order_status_changed(self, order_id: str, before: dict[str, Any], after: dict[str, Any]) -> None:
        event = OrderStatusChangedEvent.from_change(
            order_id=order_id,
            before=before,
            after=after,
            event_id=new_event_id(),
            created_at=now_iso(),
        )
        await self._publish(event.model_dump_json().encode(), ROUTING_ORDER_STATUS_CHANGED)
        logger.info("Order %s status %s, OrderStatusChanged published", order_id, after.get("status"))

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._exchange = None
