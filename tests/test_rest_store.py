"""PostgREST-backed shared time store against an httpx mock transport."""

import asyncio
import json

import httpx
import pytest

from common.errors import StoreUnavailableError
from common.models import HeartbeatRecord
from coop_time import RestTimeStore
from tests.conftest import T0

BASE_URL = "https://coop.example/rest/v1"


class FakePostgrest:
    """Single-row system_data table honouring the filters RestTimeStore sends."""

    def __init__(self, row=None, fail_with=None):
        self.row = row
        self.fail_with = fail_with
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            if isinstance(self.fail_with, Exception):
                raise self.fail_with
            return httpx.Response(self.fail_with, text="unavailable")

        params = request.url.params
        if request.method == "GET":
            return httpx.Response(200, json=[self.row] if self.row else [])
        body = json.loads(request.content)
        if request.method == "PATCH":
            bound = int(params["epoch_ms"].removeprefix("lt."))
            if self.row is None or self.row["epoch_ms"] >= bound:
                return httpx.Response(200, json=[])
            self.row = {**self.row, **body}
            return httpx.Response(200, json=[self.row])
        if request.method == "POST":
            if self.row is not None:
                return httpx.Response(201, json=[])
            self.row = body
            return httpx.Response(201, json=[body])
        return httpx.Response(405)


def make_store(backend):
    client = httpx.AsyncClient(transport=httpx.MockTransport(backend))
    return RestTimeStore(BASE_URL, api_key="anon-key", client=client)


def record(ms):
    return HeartbeatRecord.from_epoch_ms(ms, "desk")


def test_first_write_inserts_then_patches_forward():
    backend = FakePostgrest()
    store = make_store(backend)

    async def scenario():
        assert await store.upsert(record(T0)) is True
        assert await store.upsert(record(T0 + 15_000)) is True
        return await store.fetch()

    fetched = asyncio.run(scenario())

    assert fetched.epoch_ms == T0 + 15_000
    methods = [r.method for r in backend.requests]
    assert methods == ["PATCH", "POST", "PATCH", "GET"]
    patch = backend.requests[2]
    assert patch.url.params["id"] == "eq.coopTime"
    assert patch.url.params["epoch_ms"] == f"lt.{T0 + 15_000}"
    assert patch.headers["apikey"] == "anon-key"
    assert patch.headers["authorization"] == "Bearer anon-key"


def test_stale_write_is_not_applied():
    backend = FakePostgrest(row=record(T0 + 1_000).model_dump())
    store = make_store(backend)

    assert asyncio.run(store.upsert(record(T0))) is False
    assert backend.row["epoch_ms"] == T0 + 1_000


def test_fetch_empty_table():
    assert asyncio.run(make_store(FakePostgrest()).fetch()) is None


@pytest.mark.parametrize(
    "failure",
    [503, httpx.ConnectError("connection refused"), httpx.ReadTimeout("timed out")],
)
def test_transport_failures_become_store_unavailable(failure):
    store = make_store(FakePostgrest(fail_with=failure))

    async def scenario():
        with pytest.raises(StoreUnavailableError):
            await store.upsert(record(T0))
        with pytest.raises(StoreUnavailableError):
            await store.fetch()

    asyncio.run(scenario())
