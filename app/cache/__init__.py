"""
Storefront caching module: stale-while-revalidate reads, refresh locks and tag invalidation.
"""
from .core import CacheEntry, CacheLookup, CacheMeta, CacheStatus
from .exceptions import CacheBackendError, CacheError, CapabilityNotSupported
from .stores import (
    CacheStore,
    TaggableCacheStore,
    InMemoryCacheStore,
    InMemoryTaggableCacheStore,
    RedisCacheStore,
    RedisTaggableCacheStore,
)
from .lock import DistributedLock, InMemoryLockBackend, LockBackend, RedisLockBackend
from .ttl_policies import (
    DEFAULT_TTL,
    SHORT_TTL,
    MEDIUM_TTL,
    LONG_TTL,
    REFRESH_THRESHOLD_PERCENT,
    DEFAULT_POLICY,
    CachePolicy,
    key_for,
    refresh_lock_key,
)
from .manager import CacheManager
from .invalidation import CacheInvalidator
from .headers import build_cache_headers, build_no_store_headers, compute_etag

__all__ = [
    # Core types
    "CacheEntry",
    "CacheLookup",
    "CacheMeta",
    "CacheStatus",
    # Errors
    "CacheError",
    "CacheBackendError",
    "CapabilityNotSupported",
    # Stores
    "CacheStore",
    "TaggableCacheStore",
    "InMemoryCacheStore",
    "InMemoryTaggableCacheStore",
    "RedisCacheStore",
    "RedisTaggableCacheStore",
    # Locking
    "DistributedLock",
    "LockBackend",
    "InMemoryLockBackend",
    "RedisLockBackend",
    # TTL policies
    "DEFAULT_TTL",
    "SHORT_TTL",
    "MEDIUM_TTL",
    "LONG_TTL",
    "REFRESH_THRESHOLD_PERCENT",
    "DEFAULT_POLICY",
    "CachePolicy",
    "key_for",
    "refresh_lock_key",
    # Orchestration
    "CacheManager",
    "CacheInvalidator",
    # HTTP helpers
    "build_cache_headers",
    "build_no_store_headers",
    "compute_etag",
]
