"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, UTC

import pytest
from fastapi.testclient import TestClient

from src.shortener.core.config import Settings
from src.shortener.core.errors import StorageError
from src.shortener.main import create_app
from src.shortener.services.registry import Registry
from src.shortener.services.storage import SqlAlchemyLinkStore


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start=datetime(2026, 1, 1, 12, 0, tzinfo=UTC)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeRedis:
    """In-process stand-in for the handful of Redis commands the store uses."""

    def __init__(self):
        self.hashes = {}
        self.lists = {}

    def hset(self, name, key, value):
        self.hashes.setdefault(name, {})[key] = value
        return 1

    def hget(self, name, key):
        return self.hashes.get(name, {}).get(key)

    def hexists(self, name, key):
        return key in self.hashes.get(name, {})

    def hgetall(self, name):
        return dict(self.hashes.get(name, {}))

    def hdel(self, name, *keys):
        bucket = self.hashes.get(name, {})
        return sum(1 for key in keys if bucket.pop(key, None) is not None)

    def rpush(self, name, *values):
        self.lists.setdefault(name, []).extend(values)
        return len(self.lists[name])

    def lrange(self, name, start, end):
        values = self.lists.get(name, [])
        return list(values[start:] if end == -1 else values[start:end + 1])

    def lrem(self, name, count, value):
        values = self.lists.get(name, [])
        kept = [v for v in values if v != value]
        self.lists[name] = kept
        return len(values) - len(kept)

    def delete(self, *names):
        removed = 0
        for name in names:
            removed += int(self.hashes.pop(name, None) is not None)
            removed += int(self.lists.pop(name, None) is not None)
        return removed

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def transaction(self, func, *watches, **kwargs):
        pipe = FakePipeline(self)
        pipe.watch(*watches)
        func(pipe)
        return pipe.execute()


class FakePipeline:
    """Queues commands until execute(); after watch() they run immediately until multi()."""

    def __init__(self, redis):
        self._redis = redis
        self._calls = []
        self._buffered = True

    def watch(self, *names):
        self._buffered = False

    def multi(self):
        self._buffered = True

    def __getattr__(self, name):
        if not self._buffered:
            return getattr(self._redis, name)

        def queue(*args):
            self._calls.append((name, args))
            return self
        return queue

    def execute(self):
        results = [getattr(self._redis, name)(*args) for name, args in self._calls]
        self._calls = []
        return results


class FailingStore:
    """Store whose writes always fail."""

    def load_all(self):
        return []

    def add(self, link):
        raise StorageError("disk full")

    def record_click(self, link, event):
        raise StorageError("disk full")

    def delete_many(self, links):
        raise StorageError("disk full")

    def delete_all(self):
        raise StorageError("disk full")


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sql_store():
    return SqlAlchemyLinkStore.from_url("sqlite://")


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def registry(sql_store, settings, clock):
    return Registry(store=sql_store, settings=settings, clock=clock)


@pytest.fixture
def client(registry):
    return TestClient(create_app(registry))


@pytest.fixture
def sample_urls():
    return [
        "https://example.com/a",
        "https://github.com/user/repo",
        "https://stackoverflow.com/questions/123456",
    ]
