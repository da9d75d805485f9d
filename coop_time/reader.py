"""
Cooperative time read path and the fallback snapshot it relies on.

Trust order: shared store, then a local snapshot younger than the cache
expiry, then the reader's own clock.
"""

from __future__ import annotations

import logging
from typing import Callable

from pydantic import ValidationError

from common.errors import StoreUnavailableError
from common.models import CooperativeTime, FallbackSnapshot, HeartbeatRecord
from common.timeutils import epoch_ms, iso_weekday, ms_to_iso
from coop_time.localstore import FallbackCache
from coop_time.stores import SharedTimeStore

logger = logging.getLogger(__name__)

FALLBACK_KEY = "coopTime_heartbeat_fallback"


def save_snapshot(cache: FallbackCache, record: HeartbeatRecord) -> None:
    """Store record as the fallback snapshot unless a newer one is already held."""
    current = load_snapshot(cache)
    if current is not None and current.epoch_ms >= record.epoch_ms:
        return
    snapshot = FallbackSnapshot(
        epoch_ms=record.epoch_ms,
        iso=record.iso,
        weekday=record.weekday,
        source=record.source,
        stored_at=cache.clock(),
    )
    cache.set(FALLBACK_KEY, snapshot.model_dump())


def load_snapshot(cache: FallbackCache) -> FallbackSnapshot | None:
    value = cache.get(FALLBACK_KEY)
    if value is None:
        return None
    try:
        return FallbackSnapshot.model_validate(value)
    except ValidationError:
        logger.warning("Discarding unreadable fallback heartbeat")
        cache.remove(FALLBACK_KEY)
        return None


class CooperativeTimeReader:
    def __init__(
        self,
        store: SharedTimeStore,
        fallback: FallbackCache,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self.store = store
        self.fallback = fallback
        self.clock = clock

    async def get_cooperative_time(self) -> CooperativeTime:
        try:
            record = await self.store.fetch()
        except StoreUnavailableError as e:
            logger.warning("Error reading shared time: %s", e)
            record = None
        if record is not None:
            return CooperativeTime(
                epoch_ms=record.epoch_ms,
                iso=record.iso,
                weekday=record.weekday,
                source="shared-store",
                updated_at=record.updated_at,
            )

        snapshot = load_snapshot(self.fallback)
        if snapshot is not None:
            return CooperativeTime(
                epoch_ms=snapshot.epoch_ms,
                iso=snapshot.iso,
                weekday=snapshot.weekday,
                source="local-fallback",
                updated_at=snapshot.stored_at,
            )

        now = self.clock()
        return CooperativeTime(
            epoch_ms=now,
            iso=ms_to_iso(now),
            weekday=iso_weekday(now),
            source="device-time",
            updated_at=now,
        )
