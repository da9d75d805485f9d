"""Cooperative time read path: shared store, then local snapshot, then device time."""

import asyncio

from common.models import HeartbeatRecord
from coop_time import CooperativeTimeReader
from coop_time.reader import FALLBACK_KEY, load_snapshot, save_snapshot
from tests.conftest import T0, FakeTimeStore

DEVICE_NOW = T0 + 999_000


def read(reader):
    return asyncio.run(reader.get_cooperative_time())


def test_shared_record_wins(fallback):
    time_store = FakeTimeStore()
    time_store.record = HeartbeatRecord.from_epoch_ms(T0, "desk")
    save_snapshot(fallback, HeartbeatRecord.from_epoch_ms(T0 - 60_000, "desk"))

    result = read(CooperativeTimeReader(time_store, fallback, clock=lambda: DEVICE_NOW))

    assert result.source == "shared-store"
    assert result.epoch_ms == T0
    assert result.iso == "2023-11-14T22:13:20.000Z"
    assert result.weekday == 2


def test_unreachable_store_uses_fresh_snapshot(fallback, ticker):
    time_store = FakeTimeStore()
    time_store.online = False
    save_snapshot(fallback, HeartbeatRecord.from_epoch_ms(T0, "desk"))
    ticker.advance(60_000)

    result = read(CooperativeTimeReader(time_store, fallback, clock=lambda: DEVICE_NOW))

    assert result.source == "local-fallback"
    assert result.epoch_ms == T0
    assert result.updated_at == T0


def test_expired_snapshot_falls_back_to_device_time(fallback, ticker):
    time_store = FakeTimeStore()
    time_store.online = False
    save_snapshot(fallback, HeartbeatRecord.from_epoch_ms(T0, "desk"))
    ticker.advance(fallback.expiry_ms)

    result = read(CooperativeTimeReader(time_store, fallback, clock=lambda: DEVICE_NOW))

    assert result.source == "device-time"
    assert result.epoch_ms == DEVICE_NOW
    assert load_snapshot(fallback) is None


def test_empty_store_without_snapshot_uses_device_time(fallback):
    result = read(CooperativeTimeReader(FakeTimeStore(), fallback, clock=lambda: DEVICE_NOW))
    assert result.source == "device-time"


def test_unreadable_snapshot_is_discarded(fallback):
    fallback.set(FALLBACK_KEY, {"epoch_ms": "soon"})
    assert load_snapshot(fallback) is None
    assert fallback.get(FALLBACK_KEY) is None
