"""
Process-wide context: built once at startup, handed to the hosting code.

Holds the document store, the order event bus with the core subscribers
attached, and the cooperative time reader. ``close()`` detaches subscribers
and releases network clients.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from common.config import COOP_TIME_STORE_URL, DB_PATH, PUSH_ENABLED
from common.events import OrderEventBus
from common.storage import DocumentStore
from coop_time import CooperativeTimeReader, DocumentTimeStore, FallbackCache, RestTimeStore, SharedTimeStore
from notification_service import FirebasePushSender, LoggingPushSender, OrderStatusNotifier, PushNotificationSender
from stock_service.reservation import StockReservationProtocol

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    store: DocumentStore
    bus: OrderEventBus
    reservations: StockReservationProtocol
    notifier: OrderStatusNotifier
    time_store: SharedTimeStore
    time_reader: CooperativeTimeReader
    _closers: list = field(default_factory=list)

    async def close(self) -> None:
        self.bus.clear()
        for closer in self._closers:
            await closer()
        self._closers.clear()


def build_context(
    db_path: str = DB_PATH,
    sender: PushNotificationSender | None = None,
    time_store: SharedTimeStore | None = None,
    fallback: FallbackCache | None = None,
) -> AppContext:
    store = DocumentStore(db_path)
    store.init()

    bus = OrderEventBus()
    reservations = StockReservationProtocol(store)
    reservations.subscribe(bus)

    if sender is None:
        sender = FirebasePushSender() if PUSH_ENABLED else LoggingPushSender()
    notifier = OrderStatusNotifier(store, sender)
    notifier.subscribe(bus)

    closers = []
    if time_store is None:
        if COOP_TIME_STORE_URL:
            rest = RestTimeStore()
            closers.append(rest.aclose)
            time_store = rest
        else:
            time_store = DocumentTimeStore(store)
    reader = CooperativeTimeReader(time_store, fallback or FallbackCache())

    logger.info("Context ready (db=%s, push=%s)", db_path, type(sender).__name__)
    return AppContext(
        store=store,
        bus=bus,
        reservations=reservations,
        notifier=notifier,
        time_store=time_store,
        time_reader=reader,
        _closers=closers,
    )
