"""Tests for the memory and redis session stores."""

import asyncio
import json
import threading

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from oidc_consumer.storage.common import session_key
from oidc_consumer.storage.errors import SessionStoreError
from oidc_consumer.storage.memory import MemorySessionStore
from oidc_consumer.storage.models import SessionRecord, TokenRecord
from oidc_consumer.storage.redis_cache import RedisSessionStore


def _flow_record():
    record = SessionRecord.new()
    record.state = "nonce"
    record.redirect_destination = "https://app.example.com/home"
    record.data["theme"] = "dark"
    return record


class TestMemorySessionStore:
    async def test_save_load_destroy(self):
        store = MemorySessionStore()
        record = _flow_record()
        await store.save(record)

        loaded = await store.load(record.id)
        assert loaded == record
        assert loaded is not record

        await store.destroy(record.id)
        assert await store.load(record.id) is None
        # Destroying twice is harmless
        await store.destroy(record.id)

    async def test_records_are_copied(self):
        store = MemorySessionStore()
        record = _flow_record()
        await store.save(record)
        record.data["theme"] = "light"
        record.state = "changed-locally"

        loaded = await store.load(record.id)
        assert loaded.data["theme"] == "dark"
        assert loaded.state == "nonce"

    async def test_reload_refreshes_in_place(self):
        store = MemorySessionStore()
        record = _flow_record()
        await store.save(record)
        local = SessionRecord(id=record.id)

        await store.reload(local)

        assert local.state == "nonce"
        assert local.redirect_destination == "https://app.example.com/home"
        assert local.data == {"theme": "dark"}

    async def test_reload_of_missing_record_clears_flow(self):
        store = MemorySessionStore()
        local = _flow_record()
        await store.reload(local)
        assert local.state is None
        assert local.redirect_destination is None

    def test_concurrent_saves(self):
        store = MemorySessionStore()
        records = [SessionRecord.new() for _ in range(200)]

        def worker(chunk):
            for record in chunk:
                asyncio.run(store.save(record))

        threads = [threading.Thread(target=worker, args=(records[i::4],)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(store) == 200


class FakeAsyncRedis:
    """Minimal async stand-in for ``redis.asyncio.Redis``."""

    def __init__(self, fail=False):
        self.values = {}
        self.expiry = {}
        self.fail = fail

    def _check(self):
        if self.fail:
            raise RedisConnectionError("connection refused")

    async def get(self, key):
        self._check()
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.values[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self._check()
        self.values.pop(key, None)


class TestRedisSessionStore:
    async def test_round_trip_with_ttl(self):
        client = FakeAsyncRedis()
        store = RedisSessionStore("redis://localhost:6379/0", ttl_seconds=120, client=client)
        record = _flow_record()

        await store.save(record)

        key = session_key(record.id)
        assert key.startswith("oidc:session:")
        assert client.expiry[key] == 120
        assert json.loads(client.values[key])["state"] == "nonce"
        assert await store.load(record.id) == record

    async def test_reload_and_destroy(self):
        client = FakeAsyncRedis()
        store = RedisSessionStore("redis://localhost:6379/0", client=client)
        record = _flow_record()
        await store.save(record)

        local = SessionRecord(id=record.id)
        await store.reload(local)
        assert local.state == "nonce"

        await store.destroy(record.id)
        await store.reload(local)
        assert local.state is None

    async def test_corrupt_payload_is_missing(self):
        client = FakeAsyncRedis()
        client.values[session_key("abc")] = "{not json"
        store = RedisSessionStore("redis://localhost:6379/0", client=client)
        assert await store.load("abc") is None

    @pytest.mark.parametrize("operation", ["load", "save", "destroy"])
    async def test_backend_errors_are_wrapped(self, operation):
        store = RedisSessionStore("redis://localhost:6379/0", client=FakeAsyncRedis(fail=True))
        record = _flow_record()
        argument = record if operation == "save" else record.id
        with pytest.raises(SessionStoreError):
            await getattr(store, operation)(argument)


class TestTokenRecord:
    def test_expiry_from_expires_in(self):
        token = TokenRecord.from_response(
            {"access_token": "a", "expires_in": 3600, "token_type": "bearer"}, now=1000.0
        )
        assert token.expires_at == 4600.0
        assert token.token_type == "bearer"
        assert token.raw["expires_in"] == 3600

    def test_expired(self):
        assert TokenRecord(access_token="a", expires_at=1.0).expired()
        assert not TokenRecord(access_token="a").expired()
        assert not TokenRecord(access_token="a", expires_at=4102444800.0).expired(within=60)
