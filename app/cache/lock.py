"""
Short-lived distributed lock used to serialize background cache refreshes.

A lock is a key holding a random token. Acquisition is an atomic
set-if-absent with expiry; release is an atomic compare-and-delete so a
holder whose lock already expired cannot delete a lock taken by someone else.

Failing to acquire is not an error: it means another worker is already
refreshing, and the caller should skip its own attempt.
"""
import logging
import secrets
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Tuple

import redis
from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_fixed

from .exceptions import CacheBackendError

logger = logging.getLogger("cache.lock")

DEFAULT_LOCK_TTL = 60
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF = 0.2  # seconds


class LockBackend(ABC):
    """Atomic primitives a lock store must provide."""

    @abstractmethod
    def set_if_absent(self, key: str, token: str, ttl_seconds: int) -> bool:
        ...

    @abstractmethod
    def compare_and_delete(self, key: str, token: str) -> bool:
        ...

    @abstractmethod
    def current_token(self, key: str) -> Optional[str]:
        ...


class InMemoryLockBackend(LockBackend):
    """
    Process-local lock table.

    Only serializes threads of one process; multi-process deployments need
    RedisLockBackend.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._locks: Dict[str, Tuple[str, float]] = {}
        self._mutex = threading.Lock()
        self._clock = clock

    def _held(self, key: str) -> Optional[str]:
        held = self._locks.get(key)
        if held is None:
            return None
        token, expires_at = held
        if self._clock() >= expires_at:
            del self._locks[key]
            return None
        return token

    def set_if_absent(self, key: str, token: str, ttl_seconds: int) -> bool:
        with self._mutex:
            if self._held(key) is not None:
                return False
            self._locks[key] = (token, self._clock() + ttl_seconds)
            return True

    def compare_and_delete(self, key: str, token: str) -> bool:
        with self._mutex:
            if self._held(key) != token:
                return False
            del self._locks[key]
            return True

    def current_token(self, key: str) -> Optional[str]:
        with self._mutex:
            return self._held(key)


class RedisLockBackend(LockBackend):
    """SET NX EX for acquisition, a Lua script for compare-and-delete."""

    RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""

    def __init__(self, client: redis.Redis):
        self._client = client
        self._release = client.register_script(self.RELEASE_SCRIPT)

    def set_if_absent(self, key: str, token: str, ttl_seconds: int) -> bool:
        try:
            return bool(self._client.set(key, token, nx=True, ex=ttl_seconds))
        except redis.RedisError as e:
            raise CacheBackendError("lock_acquire", key, str(e)) from e

    def compare_and_delete(self, key: str, token: str) -> bool:
        try:
            return self._release(keys=[key], args=[token]) == 1
        except redis.RedisError as e:
            raise CacheBackendError("lock_release", key, str(e)) from e

    def current_token(self, key: str) -> Optional[str]:
        try:
            value = self._client.get(key)
        except redis.RedisError as e:
            raise CacheBackendError("lock_get", key, str(e)) from e
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value


class DistributedLock:
    """
    Token-based lock over a LockBackend.

    Usage:
        lock = DistributedLock(RedisLockBackend(client))
        token = lock.acquire("lock:refresh:homepage_data", ttl_seconds=60)
        if token:
            try:
                ...
            finally:
                lock.release("lock:refresh:homepage_data", token)
    """

    def __init__(self, backend: LockBackend, sleep: Callable[[float], None] = time.sleep):
        self._backend = backend
        self._sleep = sleep

    @property
    def backend(self) -> LockBackend:
        return self._backend

    def acquire(
        self,
        key: str,
        ttl_seconds: int = DEFAULT_LOCK_TTL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
    ) -> Optional[str]:
        """
        Try to take the lock, making up to ``max_retries`` attempts.

        Returns:
            The ownership token, or None if the lock stayed busy (or the
            backend was unreachable).
        """
        token = secrets.token_hex(20)
        attempts = Retrying(
            stop=stop_after_attempt(max(1, max_retries)),
            wait=wait_fixed(retry_backoff),
            retry=retry_if_result(lambda acquired: not acquired),
            retry_error_callback=lambda retry_state: False,
            sleep=self._sleep,
        )

        try:
            acquired = attempts(self._backend.set_if_absent, key, token, ttl_seconds)
        except CacheBackendError as e:
            logger.warning(f"Lock backend unavailable, skipping {key}: {e}")
            return None

        if not acquired:
            logger.debug(f"Lock busy after {max_retries} attempts: {key}")
            return None

        logger.debug(f"Lock acquired: {key}")
        return token

    def release(self, key: str, token: str) -> bool:
        """
        Release the lock if ``token`` still owns it.

        Returns:
            False when the lock expired or belongs to another holder.
        """
        try:
            released = self._backend.compare_and_delete(key, token)
        except CacheBackendError as e:
            logger.error(f"Lock release failed for {key}: {e}")
            return False

        if not released:
            logger.warning(f"Lock {key} was not held by this token (expired or taken over)")
        return released

    @contextmanager
    def hold(
        self,
        key: str,
        ttl_seconds: int = DEFAULT_LOCK_TTL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
    ) -> Iterator[Optional[str]]:
        """Acquire for the duration of a block; yields None if not acquired."""
        token = self.acquire(key, ttl_seconds, max_retries, retry_backoff)
        try:
            yield token
        finally:
            if token is not None:
                self.release(key, token)
