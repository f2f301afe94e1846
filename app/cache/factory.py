"""
Build cache collaborators from application settings.
"""
import logging

import redis

from config.settings import Settings
from .invalidation import CacheInvalidator
from .lock import DistributedLock, InMemoryLockBackend, LockBackend, RedisLockBackend
from .manager import CacheManager
from .stores import (
    CacheStore,
    InMemoryCacheStore,
    InMemoryTaggableCacheStore,
    RedisCacheStore,
    RedisTaggableCacheStore,
)

logger = logging.getLogger("cache.factory")

BACKENDS = ("memory", "redis")


def _redis_client(url: str, settings: Settings) -> redis.Redis:
    return redis.Redis.from_url(
        url,
        socket_timeout=settings.cache_backend_timeout,
        socket_connect_timeout=settings.cache_backend_timeout,
        decode_responses=True,
    )


def _check_backend(settings: Settings) -> str:
    backend = settings.cache_backend.lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown cache backend '{settings.cache_backend}' (expected one of {BACKENDS})")
    return backend


def build_cache_store(settings: Settings) -> CacheStore:
    """Cache store for the configured backend, taggable unless disabled."""
    backend = _check_backend(settings)
    tagging = settings.cache_tagging_enabled

    if backend == "redis":
        client = _redis_client(settings.redis_url, settings)
        store_cls = RedisTaggableCacheStore if tagging else RedisCacheStore
        return store_cls(client, prefix=settings.cache_prefix)

    return InMemoryTaggableCacheStore() if tagging else InMemoryCacheStore()


def build_lock_backend(settings: Settings) -> LockBackend:
    backend = _check_backend(settings)
    if backend == "redis":
        return RedisLockBackend(_redis_client(settings.lock_redis_url or settings.redis_url, settings))

    logger.warning("Using in-process refresh locks; refreshes are not coordinated across processes")
    return InMemoryLockBackend()


def build_cache_manager(settings: Settings) -> CacheManager:
    """Wire store, lock and refresh pool into a CacheManager."""
    store = build_cache_store(settings)
    lock = DistributedLock(build_lock_backend(settings))
    logger.info(
        f"Cache manager using '{store.backend_name}' store "
        f"(tagging={store.supports_tags}, workers={settings.cache_revalidation_workers})"
    )
    return CacheManager(
        store=store,
        lock=lock,
        max_revalidation_workers=settings.cache_revalidation_workers,
        refresh_lock_ttl=settings.cache_lock_ttl_seconds,
        lock_max_retries=settings.cache_lock_max_retries,
        lock_retry_backoff=settings.cache_lock_retry_backoff,
        refresh_threshold_percent=settings.cache_refresh_threshold_percent,
    )


def build_invalidator(manager: CacheManager) -> CacheInvalidator:
    """Invalidator bound to the same store as ``manager``."""
    return CacheInvalidator(manager.store)
