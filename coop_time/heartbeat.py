"""
Heartbeat publisher for the authoritative cooperative time.

Every tick upserts ``coopTime`` in the shared store. A failed tick is always
written to the durable queue (and the fallback snapshot), then retried with
exponential backoff up to ``max_retries`` attempts; the regular cadence keeps
going regardless. Queued ticks are reconciled by publishing only the newest
one, since an authoritative clock only cares about the latest time.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Callable

from common.config import (
    HEALTH_CHECK_INTERVAL_MS,
    HEALTH_STALE_AFTER_MS,
    HEARTBEAT_INTERVAL_MS,
    HEARTBEAT_MAX_RETRIES,
    HEARTBEAT_RETRY_DELAY_MS,
    HEARTBEAT_SOURCE,
    QUEUE_SYNC_INTERVAL_MS,
)
from common.errors import StoreUnavailableError
from common.models import ConnectionStatus, HeartbeatRecord, QueuedHeartbeat
from common.timeutils import epoch_ms
from coop_time.localstore import FallbackCache, HeartbeatQueue
from coop_time.reader import load_snapshot, save_snapshot
from coop_time.stores import SharedTimeStore

logger = logging.getLogger(__name__)

# Failure streak after which the publisher warns that it is running offline.
OFFLINE_WARN_AFTER = 5


class HeartbeatClock:
    """
    Publishes the cooperative time every ``interval_ms`` and keeps failed
    ticks until the shared store takes them again.

    Use as an async context manager, or call start() and stop(). Local state
    (last successful publish, fallback snapshot) only ever moves forward.
    """

    def __init__(
        self,
        store: SharedTimeStore,
        queue: HeartbeatQueue | None,
        fallback: FallbackCache,
        *,
        interval_ms: int = HEARTBEAT_INTERVAL_MS,
        max_retries: int = HEARTBEAT_MAX_RETRIES,
        retry_delay_ms: int = HEARTBEAT_RETRY_DELAY_MS,
        sync_interval_ms: int = QUEUE_SYNC_INTERVAL_MS,
        health_interval_ms: int = HEALTH_CHECK_INTERVAL_MS,
        stale_after_ms: int = HEALTH_STALE_AFTER_MS,
        source: str = HEARTBEAT_SOURCE,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self.store = store
        self.queue = queue
        self.fallback = fallback
        self.interval_ms = interval_ms
        self.max_retries = max_retries
        self.retry_delay_ms = retry_delay_ms
        self.sync_interval_ms = sync_interval_ms
        self.health_interval_ms = health_interval_ms
        self.stale_after_ms = stale_after_ms
        self.source = source
        self.clock = clock

        self.consecutive_failures = 0
        self.last_successful_publish: int | None = None
        self._sync_lock = asyncio.Lock()
        self._loops: list[asyncio.Task] = []
        self._retries: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def publish_tick(self, record: HeartbeatRecord | None = None, attempt: int = 1) -> bool:
        """
        Publish one tick (a fresh one unless record is given). Never raises.

        Returns True if the shared store accepted the write or already held
        a newer record, False if the tick was queued instead.
        """
        if record is None:
            record = HeartbeatRecord.from_epoch_ms(self.clock(), self.source)
        try:
            applied = await self.store.upsert(record)
        except StoreUnavailableError as e:
            self._on_publish_failure(record, attempt, e)
            return False

        self.consecutive_failures = 0
        self.last_successful_publish = max(record.epoch_ms, self.last_successful_publish or 0)
        save_snapshot(self.fallback, record)
        if applied:
            logger.info("Heartbeat published: %s", record.epoch_ms)
        else:
            logger.info("Heartbeat %s older than shared record, not applied", record.epoch_ms)
        await self.sync_queue()
        return True

    def _on_publish_failure(self, record: HeartbeatRecord, attempt: int, error: Exception) -> None:
        self.consecutive_failures += 1
        logger.warning(
            "Failed to publish heartbeat %s (attempt %s/%s): %s",
            record.epoch_ms,
            attempt,
            self.max_retries,
            error,
        )
        self._preserve(record)

        if attempt < self.max_retries:
            delay_ms = self.retry_delay_ms * 2 ** (attempt - 1)
            logger.info("Retrying heartbeat %s in %sms", record.epoch_ms, delay_ms)
            self._schedule_retry(record, attempt + 1, delay_ms)
            return
        logger.error("Max retries reached for heartbeat %s; queued for later sync", record.epoch_ms)
        if self.consecutive_failures >= OFFLINE_WARN_AFTER:
            logger.warning(
                "%s consecutive heartbeat failures; heartbeats are being queued",
                self.consecutive_failures,
            )

    def _preserve(self, record: HeartbeatRecord) -> None:
        """Keep a failed tick: durable queue first, fallback snapshot always."""
        if self.queue is not None:
            queued = QueuedHeartbeat(**record.model_dump(), queued_at=self.clock())
            try:
                self.queue.enqueue(queued)
            except sqlite3.Error as e:
                logger.warning("Failed to queue heartbeat %s: %s", record.epoch_ms, e)
        save_snapshot(self.fallback, record)

    def _schedule_retry(self, record: HeartbeatRecord, attempt: int, delay_ms: int) -> None:
        task = asyncio.get_running_loop().create_task(self._retry_later(record, attempt, delay_ms))
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)

    async def _retry_later(self, record: HeartbeatRecord, attempt: int, delay_ms: int) -> None:
        await asyncio.sleep(delay_ms / 1000.0)
        await self.publish_tick(record, attempt)

    # -------------------------------------------------------------------------
    # Queue reconciliation
    # -------------------------------------------------------------------------

    async def sync_queue(self) -> bool:
        """
        Publish the newest queued tick and clear the queue. Never raises.

        Only one sync runs at a time; a call made while another is in flight
        returns False immediately. Returns True if the queue was reconciled.
        """
        if self.queue is None or self._sync_lock.locked():
            return False
        async with self._sync_lock:
            try:
                pending = self.queue.drain_all()
            except sqlite3.Error as e:
                logger.warning("Failed to read queued heartbeats: %s", e)
                return False
            if not pending:
                return False

            logger.info("Syncing %s queued heartbeats", len(pending))
            latest = max(pending, key=lambda hb: hb.epoch_ms)
            try:
                applied = await self.store.upsert(latest.to_record())
            except StoreUnavailableError as e:
                logger.warning("Error syncing queued heartbeat: %s", e)
                return False

            try:
                # Ticks queued while the upsert was in flight are newer; keep them.
                self.queue.clear(up_to=latest.epoch_ms)
            except sqlite3.Error as e:
                logger.warning("Failed to clear heartbeat queue: %s", e)
            self.consecutive_failures = 0
            if applied:
                self.last_successful_publish = max(latest.epoch_ms, self.last_successful_publish or 0)
                logger.info("Synced queued heartbeat %s", latest.epoch_ms)
            else:
                logger.info("Queued heartbeat %s superseded by shared record", latest.epoch_ms)
            return True

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            is_connected=self.consecutive_failures == 0 and self.last_successful_publish is not None,
            consecutive_failures=self.consecutive_failures,
            last_successful_publish=self.last_successful_publish,
            has_fallback=load_snapshot(self.fallback) is not None,
        )

    def check_connection_health(self) -> None:
        if self.last_successful_publish is not None:
            if self.clock() - self.last_successful_publish <= self.stale_after_ms:
                return
        snapshot = load_snapshot(self.fallback)
        if snapshot is not None:
            logger.debug("No recent heartbeat; fallback snapshot %s in use", snapshot.epoch_ms)
        else:
            logger.debug("No recent heartbeat and no fallback snapshot")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _open_queue(self) -> None:
        if self.queue is None:
            return
        try:
            self.queue.init()
        except (sqlite3.Error, OSError) as e:
            logger.warning("Durable heartbeat queue unavailable, using fallback snapshot only: %s", e)
            self.queue = None

    async def _tick_loop(self) -> None:
        while True:
            await self.publish_tick()
            await asyncio.sleep(self.interval_ms / 1000.0)

    async def _periodic_sync(self) -> None:
        # First pass runs unconditionally: it reconciles ticks left by a previous run.
        await self.sync_queue()
        while True:
            await asyncio.sleep(self.sync_interval_ms / 1000.0)
            if self.consecutive_failures == 0:
                await self.sync_queue()

    async def start(self) -> None:
        """Open the queue, then start the tick, sync and health loops."""
        if self._loops:
            return
        self._open_queue()
        loop = asyncio.get_running_loop()
        self._loops = [
            loop.create_task(self._periodic_sync()),
            loop.create_task(self._tick_loop()),
            loop.create_task(self._health_loop()),
        ]
        logger.info("Heartbeat started (every %sms, source=%s)", self.interval_ms, self.source)

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.health_interval_ms / 1000.0)
            self.check_connection_health()

    async def stop(self) -> None:
        """Cancel the loops and every pending retry."""
        tasks = self._loops + list(self._retries)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops = []
        self._retries.clear()
        logger.info("Heartbeat stopped")

    async def __aenter__(self) -> HeartbeatClock:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()
