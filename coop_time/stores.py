"""
Shared stores for the authoritative ``coopTime`` record.

Both implementations make every write conditional on ``epoch_ms`` being newer
than what is stored, so a retried or queued tick can never move the shared
clock backwards. Connectivity problems surface as StoreUnavailableError.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import Protocol

import httpx

from common.config import COOP_TIME_STORE_KEY, COOP_TIME_STORE_URL, COOP_TIME_TIMEOUT_MS
from common.errors import StoreUnavailableError
from common.models import COOP_TIME_ID, HeartbeatRecord
from common.storage import SYSTEM_DATA, DocumentStore

logger = logging.getLogger(__name__)


class SharedTimeStore(Protocol):
    async def fetch(self) -> HeartbeatRecord | None: ...

    async def upsert(self, record: HeartbeatRecord) -> bool:
        """Write record if newer than the stored one; False if it was stale."""
        ...


class DocumentTimeStore:
    """coopTime record kept in the SQLite document store (``system_data`` collection)."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def fetch(self) -> HeartbeatRecord | None:
        try:
            doc = await asyncio.to_thread(self.store.get, SYSTEM_DATA, COOP_TIME_ID)
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Reading {COOP_TIME_ID} failed: {e}") from e
        if doc is None:
            return None
        return HeartbeatRecord.model_validate(doc)

    async def upsert(self, record: HeartbeatRecord) -> bool:
        try:
            return await asyncio.to_thread(
                self.store.upsert_if_newer,
                SYSTEM_DATA,
                record.id,
                record.model_dump(),
                "epoch_ms",
            )
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Writing {record.id} failed: {e}") from e


class RestTimeStore:
    """
    coopTime record in a Supabase/PostgREST ``system_data`` table.

    The newer-only write is a filtered PATCH (``epoch_ms=lt.<new>``); when it
    matches nothing, an insert that ignores duplicates creates the row if it
    does not exist yet. If neither writes a row, the stored record is newer.
    """

    def __init__(
        self,
        base_url: str = COOP_TIME_STORE_URL,
        api_key: str = COOP_TIME_STORE_KEY,
        client: httpx.AsyncClient | None = None,
        timeout_ms: int = COOP_TIME_TIMEOUT_MS,
        table: str = SYSTEM_DATA,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}/{table}"
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_ms / 1000.0)
        self.headers = headers

    async def _request(self, method: str, **kwargs) -> httpx.Response:
        try:
            resp = await self.client.request(method, self.url, headers=kwargs.pop("headers", self.headers), **kwargs)
        except (httpx.TimeoutException, httpx.RequestError) as e:
            raise StoreUnavailableError(f"{method} {self.url} failed: {e}") from e
        if resp.status_code >= 400:
            raise StoreUnavailableError(f"{method} {self.url} rejected: {resp.status_code} {resp.text}")
        return resp

    async def fetch(self) -> HeartbeatRecord | None:
        resp = await self._request("GET", params={"id": f"eq.{COOP_TIME_ID}", "select": "*"})
        rows = _rows(resp)
        if not rows:
            return None
        return HeartbeatRecord.model_validate(rows[0])

    async def upsert(self, record: HeartbeatRecord) -> bool:
        body = record.model_dump()
        resp = await self._request(
            "PATCH",
            params={"id": f"eq.{record.id}", "epoch_ms": f"lt.{record.epoch_ms}"},
            headers={**self.headers, "Prefer": "return=representation"},
            json=body,
        )
        if _rows(resp):
            return True
        resp = await self._request(
            "POST",
            params={"on_conflict": "id"},
            headers={**self.headers, "Prefer": "resolution=ignore-duplicates,return=representation"},
            json=body,
        )
        if _rows(resp):
            return True
        logger.debug("Stored %s is newer than %s, write skipped", record.id, record.epoch_ms)
        return False

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def _rows(resp: httpx.Response) -> list[dict]:
    if not resp.content:
        return []
    data = resp.json()
    return data if isinstance(data, list) else [data]
