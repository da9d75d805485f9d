"""
StockService: consumes OrderCreated / OrderStatusChanged from RabbitMQ and runs
them through the order event bus (stock reservation, restoration, notifications).
"""

import asyncio
import json
import logging

import aio_pika
from pydantic import BaseModel, ValidationError

from common import mark_message_processed, setup_logging
from common.context import AppContext, build_context
from common.models import OrderCreatedEvent, OrderStatusChangedEvent

from broker.config import QUEUE_ORDER_CREATED, QUEUE_ORDER_STATUS_CHANGED
from broker.setup import connect, setup_queues

setup_logging("stock-service")
logger = logging.getLogger(__name__)


def parse_event(body: bytes, model: type[BaseModel]) -> BaseModel | None:
    """Parse an event from JSON. Returns None if malformed (poison)."""
    try:
        return model.model_validate(json.loads(body))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        logger.warning("Malformed %s message (rejecting to DLQ): %s", model.__name__, type(e).__name__)
        return None


def dispatch(ctx: AppContext, event: BaseModel) -> bool:
    """
    Hand a parsed event to the bus unless its event_id was already processed.
    Returns False for duplicates.
    """
    if not mark_message_processed(ctx.store.db_path, event.event_id):
        logger.info("Duplicate event %s (order %s), skipping", event.event_id, event.order_id)
        return False
    if isinstance(event, OrderCreatedEvent):
        ctx.bus.order_created(event.order_id, event.order)
    elif isinstance(event, OrderStatusChangedEvent):
        ctx.bus.order_status_changed(event.order_id, event.before, event.after)
    return True


async def run_consumer(ctx: AppContext):
    connection = await connect()
    channel = await connection.channel()
    await channel.set_qos(prefetch_count=1)
    queues = await setup_queues(channel)

    def handler(model: type[BaseModel]):
        async def on_message(message: aio_pika.abc.AbstractIncomingMessage):
            async with message.process(ignore_processed=True):
                event = parse_event(message.body, model)
                if event is None:
                    # Poison message: nack without requeue -> goes to DLQ
                    await message.reject(requeue=False)
                    return
                dispatch(ctx, event)

        return on_message

    await queues["order_created"].consume(handler(OrderCreatedEvent))
    await queues["order_status_changed"].consume(handler(OrderStatusChangedEvent))
    logger.info("StockService consuming %s, %s", QUEUE_ORDER_CREATED, QUEUE_ORDER_STATUS_CHANGED)
    return connection


async def main():
    ctx = build_context()
    connection = await run_consumer(ctx)
    try:
        await asyncio.Future()
    finally:
        await connection.close()
        await ctx.close()


if __name__ == "__main__":
    asyncio.run(main())
