"""Shared fixtures and in-memory test doubles for Redis and WebSockets."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable

import pytest
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from taskhub.cache.client import KeyValueCache
from taskhub.cache.layer import ReadThroughCache
from taskhub.core.config import Settings, get_settings
from taskhub.database import build_engine, build_sessionmaker, create_db_and_tables
from taskhub.events.publisher import EventPublisher
from taskhub.main import create_app, init_state
from taskhub.notifications.broadcaster import Broadcaster


class FakePubSub:
    """Minimal redis.asyncio PubSub stand-in fed by FakeRedis.publish."""

    def __init__(self, redis: FakeRedis) -> None:
        self.redis = redis
        self.channels: set[str] = set()
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        self.redis._check()
        self.channels.update(channels)
        self.redis.pubsubs.append(self)

    async def unsubscribe(self, *channels: str) -> None:
        self.channels.difference_update(channels)

    async def get_message(
        self, ignore_subscribe_messages: bool = False, timeout: float = 0.0
    ) -> dict | None:
        try:
            item = await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        self.closed = True


class FakeRedis:
    """In-memory substitute for redis.asyncio.Redis (string values only)."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.published: list[tuple[str, str]] = []
        self.pubsubs: list[FakePubSub] = []
        self.calls: list[tuple[str, str]] = []
        self.ping_calls = 0
        self.closed = False
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis is down")

    async def get(self, key: str) -> str | None:
        self.calls.append(("get", key))
        self._check()
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.calls.append(("set", key))
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        for key in keys:
            self.calls.append(("delete", key))
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def ping(self) -> bool:
        self.ping_calls += 1
        self._check()
        return True

    async def publish(self, channel: str, payload: str) -> int:
        self.calls.append(("publish", channel))
        self._check()
        self.published.append((channel, payload))
        receivers = 0
        for pubsub in self.pubsubs:
            if channel in pubsub.channels:
                pubsub.queue.put_nowait(
                    {"type": "message", "channel": channel, "data": payload}
                )
                receivers += 1
        return receivers

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self)

    async def aclose(self) -> None:
        self.closed = True


class MockWebSocket:
    """Mock WebSocket for testing broadcasts."""

    def __init__(self, fail: bool = False) -> None:
        self.sent_messages: list[str] = []
        self.accepted = False
        self.fail = fail

    async def accept(self) -> None:
        self.accepted = True

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent_messages.append(data)


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail after timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, cache_namespace="test:")


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def kv(fake_redis: FakeRedis, settings: Settings) -> KeyValueCache:
    return KeyValueCache(fake_redis, namespace=settings.cache_namespace)


@pytest.fixture
def read_cache(kv: KeyValueCache) -> ReadThroughCache:
    return ReadThroughCache(kv, default_ttl=300)


@pytest.fixture
def publisher(fake_redis: FakeRedis) -> EventPublisher:
    return EventPublisher(lambda: fake_redis)


@pytest.fixture
def broadcaster() -> Broadcaster:
    return Broadcaster()


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'tasks.db'}")
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def app(settings: Settings, engine, kv: KeyValueCache, publisher: EventPublisher):
    app = create_app()
    init_state(app, settings, kv, publisher, build_sessionmaker(engine))
    app.dependency_overrides[get_settings] = lambda: settings
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
