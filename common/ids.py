"""
Identifiers for orders, broker events and customer notifications.

Orders and events get ULIDs, so ids sort by creation time. Notification keys
are derived from the order, the new status and the moment of the change.
"""

from __future__ import annotations

from ulid import ULID

from common.timeutils import epoch_ms, ms_to_iso


def new_order_id() -> str:
    """
    >>> len(new_order_id())
    26
    """
    return str(ULID())


def new_event_id() -> str:
    """Broker event id; the consumer's idempotency key."""
    return str(ULID())


def notification_id(order_id: str, status: str, at_ms: int) -> str:
    """
    Key of the notification sent for one status change of one order.

    >>> notification_id("abc", "confirmed", 17)
    'order_abc_confirmed_17'
    """
    return f"order_{order_id}_{status}_{at_ms}"


def now_iso() -> str:
    """Current UTC time, millisecond ISO 8601 with a Z suffix."""
    return ms_to_iso(epoch_ms())
