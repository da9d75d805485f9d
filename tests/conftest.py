"""Shared fixtures: temporary SQLite stores, a controllable clock and fakes."""

import pytest

from common.errors import StoreUnavailableError
from common.storage import ORDERS, PRODUCTS, DocumentStore
from coop_time import FallbackCache, HeartbeatQueue
from stock_service import StockReservationProtocol

T0 = 1_700_000_000_000  # 2023-11-14T22:13:20Z, a Tuesday


class Ticker:
    """Callable clock returning epoch ms; advanced by hand."""

    def __init__(self, now: int = T0, step: int = 0) -> None:
        self.now = now
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeTimeStore:
    """In-memory shared time store that can be taken offline."""

    def __init__(self) -> None:
        self.online = True
        self.record = None
        self.upserts: list[int] = []

    async def fetch(self):
        if not self.online:
            raise StoreUnavailableError("offline")
        return self.record

    async def upsert(self, record) -> bool:
        self.upserts.append(record.epoch_ms)
        if not self.online:
            raise StoreUnavailableError("offline")
        if self.record is not None and record.epoch_ms <= self.record.epoch_ms:
            return False
        self.record = record
        return True


class FakeSender:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple] = []
        self.fail = fail

    def send(self, token, title, body, data):
        if self.fail:
            raise ValueError("FCM rejected token")
        self.sent.append((token, title, body, data))
        return f"msg-{len(self.sent)}"


@pytest.fixture
def store(tmp_path):
    s = DocumentStore(str(tmp_path / "agricart.db"))
    s.init()
    return s


@pytest.fixture
def protocol(store):
    return StockReservationProtocol(store, clock=lambda: T0)


@pytest.fixture
def ticker():
    return Ticker()


@pytest.fixture
def queue(tmp_path):
    q = HeartbeatQueue(str(tmp_path / "queue.db"), max_size=100)
    q.init()
    return q


@pytest.fixture
def fallback(tmp_path, ticker):
    return FallbackCache(str(tmp_path / "fallback.json"), expiry_ms=10 * 60 * 1000, clock=ticker)


def put_product(store, product_id, available, sold=0, reserved=0):
    store.set(
        PRODUCTS,
        product_id,
        {"availableQuantity": available, "soldQuantity": sold, "currentReserved": reserved},
    )


def put_order(store, order_id, items, **fields):
    doc = {
        "items": [{"productId": p, "quantity": q} for p, q in items],
        "status": "pending",
        "stockReserved": False,
        **fields,
    }
    store.set(ORDERS, order_id, doc)
    return doc
