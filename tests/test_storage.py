"""
Document store primitives: merge writes, newer-only upsert, idempotency table
and the reservation transaction's rollback paths.
"""

import pytest

from common import mark_message_processed
from common.errors import InsufficientStockError, NotFoundError, PartialWriteError
from common.models import Item
from common.storage import ORDERS, PRODUCTS, SYSTEM_DATA
from tests.conftest import T0, put_order, put_product


def test_update_missing_document_writes_nothing(store):
    assert store.update(ORDERS, "nope", {"status": "confirmed"}) is False
    assert store.get(ORDERS, "nope") is None


def test_upsert_merges_into_existing_document(store):
    store.set(PRODUCTS, "rice", {"name": "Rice", "availableQuantity": 5})
    store.upsert(PRODUCTS, "rice", {"availableQuantity": 9})
    assert store.get(PRODUCTS, "rice") == {"name": "Rice", "availableQuantity": 9}


def test_delete(store):
    store.set(PRODUCTS, "rice", {})
    assert store.delete(PRODUCTS, "rice") is True
    assert store.delete(PRODUCTS, "rice") is False


def test_upsert_if_newer_only_moves_forward(store):
    assert store.upsert_if_newer(SYSTEM_DATA, "coopTime", {"epoch_ms": T0, "source": "a"}, "epoch_ms")
    assert not store.upsert_if_newer(SYSTEM_DATA, "coopTime", {"epoch_ms": T0, "source": "b"}, "epoch_ms")
    assert not store.upsert_if_newer(SYSTEM_DATA, "coopTime", {"epoch_ms": T0 - 1, "source": "c"}, "epoch_ms")
    assert store.upsert_if_newer(SYSTEM_DATA, "coopTime", {"epoch_ms": T0 + 1, "source": "d"}, "epoch_ms")
    assert store.get(SYSTEM_DATA, "coopTime") == {"epoch_ms": T0 + 1, "source": "d"}


def test_mark_message_processed_once(store):
    assert mark_message_processed(store.db_path, "evt-1") is True
    assert mark_message_processed(store.db_path, "evt-1") is False
    assert mark_message_processed(store.db_path, "evt-2") is True


def test_reserve_returns_false_when_already_flagged(store):
    put_product(store, "rice", 10)
    put_order(store, "o1", [("rice", 2)], stockReserved=True)
    assert store.reserve_order_stock("o1", [Item(product_id="rice", quantity=2)], T0) is False
    assert store.get(PRODUCTS, "rice")["currentReserved"] == 0


def test_reserve_raises_typed_errors(store):
    put_product(store, "rice", 3)
    put_order(store, "o1", [])
    with pytest.raises(NotFoundError) as missing:
        store.reserve_order_stock("o1", [Item(product_id="ghost", quantity=1)], T0)
    assert missing.value.product_id == "ghost"

    with pytest.raises(InsufficientStockError) as short:
        store.reserve_order_stock("o1", [Item(product_id="rice", quantity=4)], T0)
    assert (short.value.requested, short.value.available) == (4, 3)


def test_reserve_without_order_document_rolls_back(store):
    put_product(store, "rice", 10)
    with pytest.raises(PartialWriteError):
        store.reserve_order_stock("gone", [Item(product_id="rice", quantity=2)], T0)
    assert store.get(PRODUCTS, "rice")["currentReserved"] == 0


def test_release_without_order_document_raises(store):
    put_product(store, "rice", 10, reserved=2)
    with pytest.raises(PartialWriteError):
        store.release_order_stock("gone", [Item(product_id="rice", quantity=2)], T0)
    assert store.get(PRODUCTS, "rice")["currentReserved"] == 2


def test_release_requires_stored_reservation(store):
    put_product(store, "rice", 10, reserved=2)
    put_order(store, "o1", [("rice", 2)], status="cancelled")
    assert store.release_order_stock("o1", [Item(product_id="rice", quantity=2)], T0) is None
    assert store.get(PRODUCTS, "rice")["currentReserved"] == 2
    assert "stockRestored" not in store.get(ORDERS, "o1")


def test_reserve_skips_closed_orders(store):
    put_product(store, "rice", 10)
    for status in ("cancelled", "rejected", "delivered"):
        put_order(store, status, [("rice", 1)], status=status)
        assert store.reserve_order_stock(status, [Item(product_id="rice", quantity=1)], T0) is False
    assert store.get(PRODUCTS, "rice")["currentReserved"] == 0
