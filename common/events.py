"""
In-process subscription interface for order lifecycle events.

Hosting code (the order HTTP API, the RabbitMQ bridge) fires the events; core
components subscribe at startup. Every handler sees every event: a handler
that raises is logged and the remaining handlers still run.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

OrderCreatedHandler = Callable[[str, dict[str, Any]], Any]
OrderStatusChangedHandler = Callable[[str, dict[str, Any], dict[str, Any]], Any]


class OrderEventBus:
    def __init__(self) -> None:
        self._created: list[OrderCreatedHandler] = []
        self._status_changed: list[OrderStatusChangedHandler] = []

    def on_order_created(self, handler: OrderCreatedHandler) -> OrderCreatedHandler:
        """Subscribe to record-created events. Usable as a decorator."""
        self._created.append(handler)
        return handler

    def on_order_status_changed(
        self, handler: OrderStatusChangedHandler
    ) -> OrderStatusChangedHandler:
        """Subscribe to record-updated events. Usable as a decorator."""
        self._status_changed.append(handler)
        return handler

    def order_created(self, order_id: str, order: dict[str, Any]) -> None:
        for handler in self._created:
            try:
                handler(order_id, order)
            except Exception:
                logger.exception("OrderCreated handler %s failed for order %s", _name(handler), order_id)

    def order_status_changed(
        self,
        order_id: str,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> None:
        for handler in self._status_changed:
            try:
                handler(order_id, before, after)
            except Exception:
                logger.exception(
                    "OrderStatusChanged handler %s failed for order %s", _name(handler), order_id
                )

    def clear(self) -> None:
        self._created.clear()
        self._status_changed.clear()


def _name(handler: Callable[..., Any]) -> str:
    return getattr(handler, "__qualname__", repr(handler))
