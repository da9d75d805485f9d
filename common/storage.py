"""
SQLite document store for orders, products, shared records and idempotency.

Documents are JSON payloads keyed by (collection, key). Reservation and
restoration run inside ``BEGIN IMMEDIATE`` transactions, which take SQLite's
write lock up front: the availability check and the ``currentReserved``
increment of every item in an order happen atomically with respect to any
other connection or process using the same database file.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from common.errors import InsufficientStockError, NotFoundError, PartialWriteError
from common.ids import now_iso
from common.models import NON_RESERVABLE_STATUSES, Item, Product, ReleaseOutcome

ORDERS = "orders"
PRODUCTS = "products"
CUSTOMERS = "customers"
SYSTEM_DATA = "system_data"
CUSTOMER_NOTIFICATIONS = "customer_notifications"

# Seconds a connection waits for the write lock before giving up.
BUSY_TIMEOUT_S = 30.0


def init_db(db_path: str) -> None:
    """
    Create database and tables if they do not exist.
    Enables WAL mode for better concurrency.

    Tables:
    - documents(collection, doc_key, payload_json, updated_at)
    - processed_messages(message_id, seen_at)
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with _connection(db_path) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                doc_key TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (collection, doc_key)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS processed_messages (
                message_id TEXT PRIMARY KEY,
                seen_at TEXT NOT NULL
            )
        """)


@contextmanager
def _connection(db_path: str) -> Iterator[sqlite3.Connection]:
    """Context manager for a SQLite connection (auto-commit on exit, rollback on error)."""
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_S)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


@contextmanager
def _transaction(db_path: str) -> Iterator[sqlite3.Connection]:
    """Write transaction holding the database lock from the first statement."""
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_S, isolation_level=None)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def _read(conn: sqlite3.Connection, collection: str, key: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT payload_json FROM documents WHERE collection = ? AND doc_key = ?",
        (collection, key),
    ).fetchone()
    if row is None:
        return None
    return json.loads(row["payload_json"])


def _write(conn: sqlite3.Connection, collection: str, key: str, doc: dict[str, Any]) -> None:
    conn.execute(
        """
        INSERT OR REPLACE INTO documents (collection, doc_key, payload_json, updated_at)
        VALUES (?, ?, ?, ?)
        """,
        (collection, key, json.dumps(doc), now_iso()),
    )


class DocumentStore:
    """Keyed JSON documents in one SQLite file; one connection per call."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def init(self) -> None:
        init_db(self.db_path)

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        """Return the document, or None if not found."""
        with _connection(self.db_path) as conn:
            return _read(conn, collection, key)

    def set(self, collection: str, key: str, doc: dict[str, Any]) -> None:
        """Create or overwrite a document."""
        with _connection(self.db_path) as conn:
            _write(conn, collection, key, doc)

    def delete(self, collection: str, key: str) -> bool:
        """Remove a document. Returns False if it did not exist."""
        with _connection(self.db_path) as conn:
            cur = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_key = ?",
                (collection, key),
            )
            return cur.rowcount > 0

    def upsert(self, collection: str, key: str, record: dict[str, Any]) -> None:
        """Merge record into the document, creating it if absent."""
        with _transaction(self.db_path) as conn:
            doc = _read(conn, collection, key) or {}
            doc.update(record)
            _write(conn, collection, key, doc)

    def update(self, collection: str, key: str, fields: dict[str, Any]) -> bool:
        """
        Merge fields into an existing document.
        Returns False (and writes nothing) if the document does not exist.

        >>> import tempfile, os
        >>> store = DocumentStore(os.path.join(tempfile.mkdtemp(), "t.db"))
        >>> store.init()
        >>> store.update("orders", "o1", {"status": "confirmed"})
        False
        >>> store.set("orders", "o1", {"status": "pending"})
        >>> store.update("orders", "o1", {"status": "confirmed"})
        True
        >>> store.get("orders", "o1")["status"]
        'confirmed'
        """
        with _transaction(self.db_path) as conn:
            doc = _read(conn, collection, key)
            if doc is None:
                return False
            doc.update(fields)
            _write(conn, collection, key, doc)
            return True

    def upsert_if_newer(
        self,
        collection: str,
        key: str,
        record: dict[str, Any],
        field: str,
    ) -> bool:
        """
        Upsert record only if record[field] is greater than the stored value.
        Returns True if written, False if the stored document is as new or newer.
        """
        with _transaction(self.db_path) as conn:
            current = _read(conn, collection, key)
            if current is not None and current.get(field) is not None:
                if record[field] <= current[field]:
                    return False
            doc = dict(current or {})
            doc.update(record)
            _write(conn, collection, key, doc)
            return True

    def reserve_order_stock(self, order_id: str, items: list[Item], now_ms: int) -> bool:
        """
        Reserve every item of an order and flag the order, all-or-nothing.

        Returns False without touching anything if the stored order is already
        flagged ``stockReserved`` or its status no longer takes a reservation
        (a cancel handled before the create event). Raises NotFoundError or
        InsufficientStockError for the first item that cannot be reserved,
        and PartialWriteError if the order document has disappeared; in every
        error case the transaction is rolled back.
        """
        with _transaction(self.db_path) as conn:
            order = _read(conn, ORDERS, order_id)
            if order is not None:
                if order.get("stockReserved") is True or order.get("status") in NON_RESERVABLE_STATUSES:
                    return False

            for item in items:
                doc = _read(conn, PRODUCTS, item.product_id)
                if doc is None:
                    raise NotFoundError(item.product_id)
                product = Product.model_validate(doc)
                if product.available_qty < item.quantity:
                    raise InsufficientStockError(
                        item.product_id, item.quantity, product.available_qty
                    )
                doc["currentReserved"] = product.current_reserved + item.quantity
                _write(conn, PRODUCTS, item.product_id, doc)

            if order is None:
                raise PartialWriteError(order_id, "order document missing, reservation rolled back")
            order["stockReserved"] = True
            order["updatedAt"] = now_ms
            _write(conn, ORDERS, order_id, order)
            return True

    def release_order_stock(
        self,
        order_id: str,
        items: list[Item],
        now_ms: int,
    ) -> ReleaseOutcome | None:
        """
        Release the reserved quantities of an order and flag it ``stockRestored``.

        Returns None if the stored order is already restored or never held a
        reservation. Missing products are skipped; a decrement below zero is
        clamped to zero and reported in ``clamped_products``.
        """
        with _transaction(self.db_path) as conn:
            order = _read(conn, ORDERS, order_id)
            if order is None:
                raise PartialWriteError(order_id, "order document missing, release rolled back")
            if order.get("stockRestored") is True or order.get("stockReserved") is not True:
                return None

            outcome = ReleaseOutcome(order_id=order_id, restored=True)
            for item in items:
                doc = _read(conn, PRODUCTS, item.product_id)
                if doc is None:
                    outcome.missing_products.append(item.product_id)
                    continue
                reserved = int(doc.get("currentReserved") or 0)
                remaining = reserved - item.quantity
                if remaining < 0:
                    outcome.clamped_products.append(item.product_id)
                    remaining = 0
                doc["currentReserved"] = remaining
                _write(conn, PRODUCTS, item.product_id, doc)

            order["stockRestored"] = True
            order["updatedAt"] = now_ms
            _write(conn, ORDERS, order_id, order)
            return outcome


def mark_message_processed(db_path: str, message_id: str) -> bool:
    """
    Record that a message was processed (idempotency). Returns True if inserted,
    False if message_id was already seen.

    >>> import tempfile, os
    >>> db = os.path.join(tempfile.mkdtemp(), "m.db")
    >>> init_db(db)
    >>> mark_message_processed(db, "msg-1")
    True
    >>> mark_message_processed(db, "msg-1")
    False
    """
    seen_at = now_iso()
    with _connection(db_path) as conn:
        try:
            conn.execute(
                "INSERT INTO processed_messages (message_id, seen_at) VALUES (?, ?)",
                (message_id, seen_at),
            )
            return True
        except sqlite3.IntegrityError:
            return False
