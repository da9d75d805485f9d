"""
Local storage for the heartbeat publisher.

HeartbeatQueue is the durable queue: a SQLite table keyed by ``epoch_ms`` that
survives restarts and keeps at most ``max_size`` ticks, dropping the oldest.
FallbackCache is a plain JSON file of expiring values; it is not
transactional and only ever holds the latest snapshot per key.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from common.config import FALLBACK_CACHE_PATH, FALLBACK_EXPIRY_MS, HEARTBEAT_QUEUE_MAX, HEARTBEAT_QUEUE_PATH
from common.models import QueuedHeartbeat
from common.timeutils import epoch_ms

logger = logging.getLogger(__name__)


@contextmanager
def _connection(db_path: str) -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(db_path, timeout=5)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


class HeartbeatQueue:
    """Bounded durable queue of heartbeats that could not be published."""

    def __init__(self, db_path: str = HEARTBEAT_QUEUE_PATH, max_size: int = HEARTBEAT_QUEUE_MAX) -> None:
        self.db_path = db_path
        self.max_size = max_size

    def init(self) -> None:
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with _connection(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS heartbeat_queue (
                    epoch_ms INTEGER PRIMARY KEY,
                    payload_json TEXT NOT NULL,
                    queued_at INTEGER NOT NULL
                )
            """)

    def enqueue(self, heartbeat: QueuedHeartbeat) -> None:
        """Add a tick; a tick with the same epoch_ms replaces the earlier entry."""
        with _connection(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO heartbeat_queue (epoch_ms, payload_json, queued_at) VALUES (?, ?, ?)",
                (heartbeat.epoch_ms, heartbeat.model_dump_json(), heartbeat.queued_at),
            )
            conn.execute(
                """
                DELETE FROM heartbeat_queue WHERE epoch_ms NOT IN (
                    SELECT epoch_ms FROM heartbeat_queue ORDER BY epoch_ms DESC LIMIT ?
                )
                """,
                (self.max_size,),
            )

    def drain_all(self) -> list[QueuedHeartbeat]:
        """All queued ticks, oldest first. Entries stay queued until clear()."""
        with _connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT payload_json FROM heartbeat_queue ORDER BY epoch_ms ASC"
            ).fetchall()
        return [QueuedHeartbeat.model_validate_json(row["payload_json"]) for row in rows]

    def clear(self, up_to: int | None = None) -> None:
        """Remove every entry, or only those with epoch_ms <= up_to."""
        with _connection(self.db_path) as conn:
            if up_to is None:
                conn.execute("DELETE FROM heartbeat_queue")
            else:
                conn.execute("DELETE FROM heartbeat_queue WHERE epoch_ms <= ?", (up_to,))

    def count(self) -> int:
        with _connection(self.db_path) as conn:
            return conn.execute("SELECT COUNT(*) FROM heartbeat_queue").fetchone()[0]


class FallbackCache:
    """
    Expiring key-value cache in a JSON file.

    >>> import tempfile, os
    >>> now = [0]
    >>> cache = FallbackCache(os.path.join(tempfile.mkdtemp(), "c.json"), expiry_ms=100, clock=lambda: now[0])
    >>> cache.set("k", {"v": 1})
    >>> cache.get("k")
    {'v': 1}
    >>> now[0] = 100
    >>> cache.get("k") is None
    True
    """

    def __init__(
        self,
        path: str = FALLBACK_CACHE_PATH,
        expiry_ms: int = FALLBACK_EXPIRY_MS,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self.path = Path(path)
        self.expiry_ms = expiry_ms
        self.clock = clock

    def _load(self) -> dict[str, Any]:
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to read fallback cache %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            json.dump(data, handle)
        os.replace(tmp, self.path)

    def set(self, key: str, value: dict[str, Any]) -> None:
        data = self._load()
        data[key] = {"stored_at": self.clock(), "value": value}
        try:
            self._save(data)
        except OSError as e:
            logger.warning("Failed to store fallback value %s: %s", key, e)

    def get(self, key: str) -> dict[str, Any] | None:
        """The value, or None if missing or expired (expired entries are removed)."""
        data = self._load()
        entry = data.get(key)
        if not isinstance(entry, dict):
            return None
        age = self.clock() - int(entry.get("stored_at") or 0)
        if age < self.expiry_ms:
            return entry.get("value")
        self.remove(key)
        return None

    def remove(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is None:
            return
        try:
            self._save(data)
        except OSError as e:
            logger.warning("Failed to remove fallback value %s: %s", key, e)
