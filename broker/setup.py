"""Declare RabbitMQ exchanges, queues, bindings, and DLQ."""

import asyncio
import logging

import aio_pika
from aio_pika import ExchangeType
from aio_pika.exceptions import AMQPConnectionError

from broker.config import (
    EXCHANGE,
    QUEUE_ORDER_CREATED,
    QUEUE_ORDER_EVENTS_DLQ,
    QUEUE_ORDER_STATUS_CHANGED,
    RABBIT_URL,
    ROUTING_ORDER_CREATED,
    ROUTING_ORDER_STATUS_CHANGED,
)

logger = logging.getLogger(__name__)

_DEAD_LETTER = {"x-dead-letter-exchange": "", "x-dead-letter-routing-key": QUEUE_ORDER_EVENTS_DLQ}


async def setup_queues(channel: aio_pika.abc.AbstractChannel) -> dict[str, aio_pika.abc.AbstractQueue]:
    """Declare exchange, queues, DLQ, and bindings. Returns queue map for consumers."""
    exchange = await channel.declare_exchange(EXCHANGE, ExchangeType.TOPIC, durable=True)

    # DLQ shared by both order event queues (poison messages)
    await channel.declare_queue(QUEUE_ORDER_EVENTS_DLQ, durable=True)

    order_created = await channel.declare_queue(QUEUE_ORDER_CREATED, durable=True, arguments=_DEAD_LETTER)
    await order_created.bind(exchange, routing_key=ROUTING_ORDER_CREATED)

    status_changed = await channel.declare_queue(
        QUEUE_ORDER_STATUS_CHANGED, durable=True, arguments=_DEAD_LETTER
    )
    await status_changed.bind(exchange, routing_key=ROUTING_ORDER_STATUS_CHANGED)

    logger.info("Broker queues declared")
    return {"order_created": order_created, "order_status_changed": status_changed}


async def connect(attempts: int = 30, delay_s: float = 2.0) -> aio_pika.abc.AbstractRobustConnection:
    """Connect to RabbitMQ, retrying while the broker starts up."""
    for attempt in range(attempts):
        try:
            return await aio_pika.connect_robust(RABBIT_URL)
        except (AMQPConnectionError, OSError) as e:
            logger.warning("RabbitMQ connect attempt %s failed: %s", attempt + 1, e)
            await asyncio.sleep(delay_s)
    raise RuntimeError("Could not connect to RabbitMQ")
