"""
Stock reservation protocol: reserve on order creation, release on cancel/reject.

Per order the stock lifecycle is one-directional:

    unreserved -> reserved -> restored
    unreserved -> rejected          (product missing or not enough stock)

Both transitions are guarded by flags on the order document
(``stockReserved``, ``stockRestored``) which the store re-checks inside the
same transaction that moves the product counters, so a redelivered or
concurrent trigger for the same order is a no-op.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Callable

from pydantic import ValidationError

from common.errors import PartialWriteError, ReservationError, StoreError
from common.events import OrderEventBus
from common.models import RESTORING_STATUSES, Order, OrderStatus, ReleaseOutcome, ReservationOutcome
from common.storage import ORDERS, DocumentStore
from common.timeutils import epoch_ms

logger = logging.getLogger(__name__)


def _parse_order(doc: Any) -> Order | None:
    if not isinstance(doc, dict):
        return None
    try:
        return Order.model_validate(doc)
    except ValidationError as e:
        logger.warning("Malformed order document (%s errors), skipping", e.error_count())
        return None


class StockReservationProtocol:
    """Order-triggered reservation and restoration against a DocumentStore."""

    def __init__(self, store: DocumentStore, clock: Callable[[], int] = epoch_ms) -> None:
        self.store = store
        self.clock = clock
        self.bus: OrderEventBus | None = None

    def subscribe(self, bus: OrderEventBus) -> None:
        """Attach to bus; automatic rejections are announced on it as status changes."""
        self.bus = bus
        bus.on_order_created(self.reserve_stock_on_order_create)
        bus.on_order_status_changed(self.restore_stock_on_order_cancel_or_reject)

    def reserve_stock_on_order_create(
        self, order_id: str, order_doc: dict[str, Any] | None
    ) -> ReservationOutcome:
        """
        Reserve stock for every item of a newly created order.

        Never raises: a missing product or insufficient stock rejects the
        order with a reason; malformed, empty or already reserved orders are
        skipped.
        """
        order = _parse_order(order_doc)
        if order is None:
            return ReservationOutcome(order_id=order_id, status="SKIPPED", reason="malformed order")
        items = order.line_items()
        if not items:
            return ReservationOutcome(order_id=order_id, status="SKIPPED", reason="no items")
        if order.stock_reserved:
            logger.info("Order %s already reserved (idempotent)", order_id)
            return ReservationOutcome(order_id=order_id, status="SKIPPED", reason="already reserved")

        try:
            reserved = self.store.reserve_order_stock(order_id, items, self.clock())
        except PartialWriteError as e:
            logger.error("Reservation for order %s not recorded: %s", order_id, e)
            return ReservationOutcome(order_id=order_id, status="SKIPPED", reason=str(e))
        except (ReservationError, StoreError, sqlite3.Error, ValidationError) as e:
            logger.warning("Error reserving stock for order %s: %s", order_id, e)
            return self._reject(order_id, e)

        if not reserved:
            logger.info("Order %s already reserved or no longer open, nothing reserved", order_id)
            return ReservationOutcome(
                order_id=order_id, status="SKIPPED", reason="already reserved or no longer open"
            )
        logger.info("Order %s stock reserved (%s)", order_id, ", ".join(str(i) for i in items))
        return ReservationOutcome(order_id=order_id, status="RESERVED")

    def _reject(self, order_id: str, error: Exception) -> ReservationOutcome:
        reason = f"Stock reservation failed: {error}"
        changes = {
            "status": OrderStatus.REJECTED.value,
            "rejectionReason": reason,
            "stockReserved": False,
            "updatedAt": self.clock(),
        }
        try:
            before = self.store.get(ORDERS, order_id)
            written = before is not None and self.store.update(ORDERS, order_id, changes)
        except (StoreError, sqlite3.Error):
            logger.exception("Could not mark order %s rejected", order_id)
            written = False

        if written and self.bus is not None:
            self.bus.order_status_changed(order_id, before, {**before, **changes})
        return ReservationOutcome(order_id=order_id, status="REJECTED", reason=reason)

    def restore_stock_on_order_cancel_or_reject(
        self,
        order_id: str,
        before_doc: dict[str, Any] | None,
        after_doc: dict[str, Any] | None,
    ) -> ReleaseOutcome | None:
        """
        Release an order's reservation when its status moves to cancelled or rejected.

        Returns None when the change does not call for a release (not
        reserved, status unchanged, other target status, already restored).
        """
        after = _parse_order(after_doc)
        if after is None:
            return None
        before = _parse_order(before_doc)
        before_status = before.status if before is not None else None

        if not after.stock_reserved:
            return None
        if before_status == after.status or after.status not in RESTORING_STATUSES:
            return None
        if after.stock_restored:
            return None

        try:
            outcome = self.store.release_order_stock(order_id, after.line_items(), self.clock())
        except (StoreError, sqlite3.Error) as e:
            logger.error("Error restoring stock for order %s: %s", order_id, e)
            return None

        if outcome is None:
            logger.info("Order %s has no reservation left to release", order_id)
            return None
        for product_id in outcome.missing_products:
            logger.warning("Order %s: product %s not found while restoring stock", order_id, product_id)
        for product_id in outcome.clamped_products:
            logger.warning(
                "Order %s: currentReserved of product %s would go negative, clamped to 0 "
                "(reserved counter drifted below this order's hold)",
                order_id,
                product_id,
            )
        logger.info("Order %s stock restored after status %s", order_id, after.status.value)
        return outcome
