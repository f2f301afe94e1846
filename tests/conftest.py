"""
Shared fixtures: in-memory cache/lock backends on a controllable clock,
and an isolated SQLite catalog database.
"""
import os
import tempfile

# Must be set before config.settings is imported anywhere
_TEST_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR}/storefront_test.db"
os.environ["CACHE_BACKEND"] = "memory"

from concurrent.futures import Executor, Future

import pytest

from app.cache import (
    CacheManager,
    DistributedLock,
    InMemoryCacheStore,
    InMemoryLockBackend,
    InMemoryTaggableCacheStore,
)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SynchronousExecutor(Executor):
    """Runs submitted work immediately so refresh effects are visible right away."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """Records lock retry sleeps instead of sleeping."""
    return []


@pytest.fixture
def lock_backend(clock):
    return InMemoryLockBackend(clock=clock)


@pytest.fixture
def lock(lock_backend, sleeps):
    return DistributedLock(lock_backend, sleep=sleeps.append)


@pytest.fixture
def taggable_store(clock):
    return InMemoryTaggableCacheStore(clock=clock)


@pytest.fixture
def plain_store(clock):
    return InMemoryCacheStore(clock=clock)


@pytest.fixture
def sync_executor():
    return SynchronousExecutor()


@pytest.fixture
def manager(taggable_store, lock, sync_executor):
    return CacheManager(taggable_store, lock, executor=sync_executor, lock_retry_backoff=0)


class CountingProducer:
    """Producer returning successive values and counting invocations."""

    def __init__(self, *values):
        self.values = list(values) or ["value"]
        self.calls = 0

    def __call__(self):
        value = self.values[min(self.calls, len(self.values) - 1)]
        self.calls += 1
        return value


@pytest.fixture
def producer_factory():
    return CountingProducer
