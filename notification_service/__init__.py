"""Customer notifications for order status changes."""

from notification_service.notifier import STATUS_NOTIFICATIONS, OrderStatusNotifier, build_notification
from notification_service.push import FirebasePushSender, LoggingPushSender, PushNotificationSender

__all__ = [
    "STATUS_NOTIFICATIONS",
    "OrderStatusNotifier",
    "build_notification",
    "PushNotificationSender",
    "FirebasePushSender",
    "LoggingPushSender",
]
