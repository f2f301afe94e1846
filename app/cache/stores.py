"""
Cache store backends.

Two capability tiers:
- CacheStore: plain key-value with TTL
- TaggableCacheStore: additionally groups keys under tags for bulk invalidation

Capability is a property of the store's type and flags, so the manager decides
once at construction whether tagging and TTL introspection are available.
"""
import fnmatch
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import redis

from .core import CacheEntry, CacheLookup
from .exceptions import CacheBackendError, CapabilityNotSupported

logger = logging.getLogger("cache.stores")


class CacheStore(ABC):
    """Basic key-value cache with per-entry TTL."""

    backend_name = "cache"
    supports_tags = False
    supports_ttl_introspection = True
    supports_key_enumeration = False

    @abstractmethod
    def has(self, key: str) -> bool:
        ...

    @abstractmethod
    def get(self, key: str) -> CacheLookup:
        ...

    @abstractmethod
    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    def forget(self, key: str) -> None:
        ...

    @abstractmethod
    def remaining_ttl(self, key: str) -> Optional[int]:
        """Seconds until expiry, or None when the backend cannot tell."""

    def keys_matching(self, pattern: str) -> List[str]:
        """Keys matching a glob pattern (only on enumerable backends)."""
        raise CapabilityNotSupported("key enumeration", self.backend_name)


class TaggableCacheStore(CacheStore):
    """Cache store that can group keys under tags."""

    supports_tags = True

    @abstractmethod
    def put_tagged(self, key: str, value: Any, ttl_seconds: int, tags: Iterable[str]) -> None:
        ...

    @abstractmethod
    def flush_tags(self, tags: Iterable[str]) -> int:
        """Delete every entry carrying any of the tags. Returns keys removed."""


# =============================================================================
# In-memory backends (single process; tests and local development)
# =============================================================================

class InMemoryCacheStore(CacheStore):
    """
    Thread-safe dict-backed store.

    Expiry is enforced lazily on access, and every write sweeps out entries
    that expired without being read again. The clock is injectable so tests
    can move time forward without sleeping.
    """

    backend_name = "memory"
    supports_key_enumeration = True

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        ttl_introspection: bool = True,
    ):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._clock = clock
        self.supports_ttl_introspection = ttl_introspection

    def _live_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is not None and entry.is_expired(self._clock()):
            self._evict(key)
            return None
        return entry

    def _evict(self, key: str) -> None:
        self._entries.pop(key, None)

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, entry in self._entries.items() if entry.is_expired(now)]:
            self._evict(key)

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    def get(self, key: str) -> CacheLookup:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return CacheLookup.miss()
            return CacheLookup.found(entry.value)

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        entry = CacheEntry(key=key, value=value, ttl_seconds=ttl_seconds, stored_at=self._clock())
        with self._lock:
            self._purge_expired()
            self._evict(key)
            self._entries[key] = entry

    def forget(self, key: str) -> None:
        with self._lock:
            self._evict(key)

    def remaining_ttl(self, key: str) -> Optional[int]:
        if not self.supports_ttl_introspection:
            return None
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return None
            return entry.remaining_ttl(self._clock())

    def keys_matching(self, pattern: str) -> List[str]:
        with self._lock:
            self._purge_expired()
            return [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._entries)


class InMemoryTaggableCacheStore(InMemoryCacheStore, TaggableCacheStore):
    """In-memory store with a tag -> keys index."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, ttl_introspection: bool = True):
        super().__init__(clock=clock, ttl_introspection=ttl_introspection)
        self._tag_index: Dict[str, Set[str]] = {}

    def _evict(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]

    def put_tagged(self, key: str, value: Any, ttl_seconds: int, tags: Iterable[str]) -> None:
        tag_set = frozenset(tags)
        entry = CacheEntry(
            key=key, value=value, ttl_seconds=ttl_seconds,
            stored_at=self._clock(), tags=tag_set,
        )
        with self._lock:
            self._purge_expired()
            self._evict(key)
            self._entries[key] = entry
            for tag in tag_set:
                self._tag_index.setdefault(tag, set()).add(key)

    def flush_tags(self, tags: Iterable[str]) -> int:
        with self._lock:
            keys: Set[str] = set()
            for tag in tags:
                keys |= self._tag_index.get(tag, set())
            for key in keys:
                self._evict(key)
            return len(keys)

    def keys_for_tag(self, tag: str) -> Set[str]:
        with self._lock:
            self._purge_expired()
            return set(self._tag_index.get(tag, set()))


# =============================================================================
# Redis backends (shared across worker processes)
# =============================================================================

class RedisCacheStore(CacheStore):
    """
    Redis-backed store. Values are JSON encoded; keys are namespaced by prefix.

    The client should be created with short socket timeouts so a stuck server
    surfaces as a CacheBackendError instead of hanging the request.
    """

    backend_name = "redis"
    supports_key_enumeration = True

    def __init__(self, client: redis.Redis, prefix: str = "storefront_cache"):
        self._client = client
        self._prefix = prefix

    def _full_key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def _strip_prefix(self, full_key) -> str:
        if isinstance(full_key, bytes):
            full_key = full_key.decode("utf-8")
        return full_key[len(self._prefix) + 1:]

    def _call(self, operation: str, key: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except redis.RedisError as e:
            logger.error(f"Redis {operation} failed for {key}: {e}")
            raise CacheBackendError(operation, key, str(e)) from e

    def has(self, key: str) -> bool:
        full_key = self._full_key(key)
        return bool(self._call("has", key, lambda: self._client.exists(full_key)))

    def get(self, key: str) -> CacheLookup:
        full_key = self._full_key(key)
        raw = self._call("get", key, lambda: self._client.get(full_key))
        if raw is None:
            return CacheLookup.miss()
        try:
            return CacheLookup.found(json.loads(raw))
        except ValueError as e:
            raise CacheBackendError("decode", key, str(e)) from e

    def _encode(self, key: str, value: Any) -> str:
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            raise CacheBackendError("encode", key, str(e)) from e

    def put(self, key: str, value: Any, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        payload = self._encode(key, value)
        full_key = self._full_key(key)
        self._call("put", key, lambda: self._client.set(full_key, payload, ex=ttl_seconds))

    def forget(self, key: str) -> None:
        full_key = self._full_key(key)
        self._call("forget", key, lambda: self._client.delete(full_key))

    def remaining_ttl(self, key: str) -> Optional[int]:
        full_key = self._full_key(key)
        ttl = self._call("ttl", key, lambda: self._client.ttl(full_key))
        # -2: missing, -1: no expiry set
        if ttl is None or ttl < 0:
            return None
        return int(ttl)

    def keys_matching(self, pattern: str) -> List[str]:
        match = self._full_key(pattern)
        return self._call(
            "scan", pattern,
            lambda: [self._strip_prefix(k) for k in self._client.scan_iter(match=match, count=500)],
        )


class RedisTaggableCacheStore(RedisCacheStore, TaggableCacheStore):
    """
    Redis store keeping a SET of member keys per tag.

    Each tag set expires no earlier than its longest-lived member, so sets for
    tags nobody flushes do not outlive the data they index. Needs Redis 7+
    for EXPIRE NX/GT.
    """

    def _tag_key(self, tag: str) -> str:
        return f"{self._prefix}:tag:{tag}"

    def put_tagged(self, key: str, value: Any, ttl_seconds: int, tags: Iterable[str]) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        payload = self._encode(key, value)
        full_key = self._full_key(key)
        tag_list = list(tags)

        def write():
            pipe = self._client.pipeline(transaction=True)
            pipe.set(full_key, payload, ex=ttl_seconds)
            for tag in tag_list:
                tag_key = self._tag_key(tag)
                pipe.sadd(tag_key, key)
                # NX sets a TTL on a new set, GT only ever extends it
                pipe.expire(tag_key, ttl_seconds, nx=True)
                pipe.expire(tag_key, ttl_seconds, gt=True)
            return pipe.execute()

        self._call("put_tagged", key, write)

    def flush_tags(self, tags: Iterable[str]) -> int:
        tag_keys = [self._tag_key(tag) for tag in tags]
        if not tag_keys:
            return 0
        label = ",".join(tag_keys)

        members = self._call("flush_tags", label, lambda: self._client.sunion(tag_keys))
        keys = [m.decode("utf-8") if isinstance(m, bytes) else m for m in members]

        def delete():
            pipe = self._client.pipeline(transaction=True)
            if keys:
                pipe.delete(*[self._full_key(k) for k in keys])
            pipe.delete(*tag_keys)
            return pipe.execute()

        self._call("flush_tags", label, delete)
        return len(keys)
