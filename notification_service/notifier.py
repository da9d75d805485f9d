"""
Order status-change notifications.

Every status change with an entry in STATUS_NOTIFICATIONS writes an in-app
notification for the customer and, when the customer has an FCM token, pushes
it to their device. Notification failures never affect the order itself.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Callable

from common.events import OrderEventBus
from common.ids import notification_id
from common.models import CustomerNotification, OrderStatus
from common.storage import CUSTOMER_NOTIFICATIONS, CUSTOMERS, DocumentStore
from common.timeutils import epoch_ms
from notification_service.push import PushNotificationSender

logger = logging.getLogger(__name__)

# status -> (notification type, title, message template)
STATUS_NOTIFICATIONS: dict[OrderStatus, tuple[str, str, str]] = {
    OrderStatus.CONFIRMED: ("order_confirmed", "Order Confirmed", "Your order #{ref} has been confirmed!"),
    OrderStatus.REJECTED: ("order_rejected", "Order Rejected", "Your order #{ref} has been rejected."),
    OrderStatus.CANCELLED: ("order_cancelled", "Order Cancelled", "Your order #{ref} has been cancelled."),
    OrderStatus.CANCELLATION_CONFIRMED: (
        "order_cancellation_confirmed",
        "Cancellation Confirmed",
        "Your cancellation request for order #{ref} has been confirmed.",
    ),
    OrderStatus.OUT_FOR_DELIVERY: (
        "order_out_for_delivery",
        "Order Out for Delivery",
        "Your order #{ref} is out for delivery!",
    ),
    OrderStatus.PICKUP_READY: (
        "order_ready_to_pickup",
        "Order Ready for Pickup",
        "Your order #{ref} is ready for pickup!",
    ),
    OrderStatus.DELIVERED: (
        "order_delivered",
        "Order Delivered",
        "Your order #{ref} has been delivered successfully!",
    ),
    OrderStatus.FAILED: (
        "order_failed",
        "Order Failed",
        "Your order #{ref} has failed. Please contact support.",
    ),
}


def build_notification(
    order_id: str, customer_id: str, status: OrderStatus, at_ms: int
) -> CustomerNotification | None:
    """
    Notification for a status change, or None if the status is not announced.

    >>> n = build_notification("0123456789AB", "c1", OrderStatus.DELIVERED, 5)
    >>> n.id, n.message
    ('order_0123456789AB_delivered_5', 'Your order #01234567 has been delivered successfully!')
    """
    entry = STATUS_NOTIFICATIONS.get(status)
    if entry is None:
        return None
    kind, title, template = entry
    return CustomerNotification(
        id=notification_id(order_id, status.value, at_ms),
        customer_id=customer_id,
        title=title,
        message=template.format(ref=order_id[:8]),
        type=kind,
        timestamp=at_ms,
        order_id=order_id,
    )


class OrderStatusNotifier:
    def __init__(
        self,
        store: DocumentStore,
        sender: PushNotificationSender | None,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self.store = store
        self.sender = sender
        self.clock = clock

    def subscribe(self, bus: OrderEventBus) -> None:
        bus.on_order_status_changed(self.on_status_changed)

    def on_status_changed(
        self,
        order_id: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> CustomerNotification | None:
        before_status = (before or {}).get("status")
        after_status = (after or {}).get("status")
        if not after_status or before_status == after_status:
            return None
        try:
            status = OrderStatus(after_status)
        except ValueError:
            logger.info("Status %s does not require notification.", after_status)
            return None

        customer_id = (after or {}).get("customerId")
        if not customer_id:
            logger.info("Order %s missing customerId, skipping notification.", order_id)
            return None

        notification = build_notification(order_id, customer_id, status, self.clock())
        if notification is None:
            logger.info("Status %s does not require notification.", status.value)
            return None

        try:
            self.store.set(
                CUSTOMER_NOTIFICATIONS,
                notification.id,
                notification.model_dump(by_alias=True),
            )
            customer = self.store.get(CUSTOMERS, customer_id) or {}
        except sqlite3.Error:
            logger.exception("Could not store notification for order %s", order_id)
            return None

        token = customer.get("fcmToken")
        if not token:
            logger.info("No FCM token for customer %s, skipping push notification.", customer_id)
            return notification
        if self.sender is None:
            return notification

        try:
            message_id = self.sender.send(
                token,
                notification.title,
                notification.message,
                {"type": notification.type, "orderId": order_id, "notificationId": notification.id},
            )
        except Exception as e:
            # Notification is already stored; a failed push is only logged.
            logger.error("Error sending FCM for order %s status change: %s", order_id, e)
            return notification
        logger.info(
            "Sent FCM %s to customer %s for order %s status change: %s",
            message_id,
            customer_id,
            order_id,
            status.value,
        )
        return notification
