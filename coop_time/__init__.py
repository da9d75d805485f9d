"""Authoritative cooperative time: heartbeat publisher, durable queue and read path."""

from coop_time.heartbeat import HeartbeatClock
from coop_time.localstore import FallbackCache, HeartbeatQueue
from coop_time.reader import CooperativeTimeReader
from coop_time.stores import DocumentTimeStore, RestTimeStore, SharedTimeStore

__all__ = [
    "HeartbeatClock",
    "HeartbeatQueue",
    "FallbackCache",
    "CooperativeTimeReader",
    "SharedTimeStore",
    "DocumentTimeStore",
    "RestTimeStore",
]
