"""
Main cache orchestration: read-through caching with stale-while-revalidate.
"""
import threading
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Tuple
from concurrent.futures import Executor, ThreadPoolExecutor

from .core import CacheMeta, CacheStatus
from .exceptions import CacheBackendError
from .lock import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_BACKOFF, DistributedLock
from .stores import CacheStore, TaggableCacheStore
from .ttl_policies import REFRESH_LOCK_TTL, REFRESH_THRESHOLD_PERCENT, refresh_lock_key

logger = logging.getLogger("cache.manager")

Producer = Callable[[], Any]


class CacheManager:
    """
    Stale-while-revalidate cache over an injected store and lock:
    - Cold miss: producer runs on the request path, result is stored (tagged
      when the store supports it)
    - Hit: cached value returned immediately; if the entry is aging, a
      background refresh is scheduled
    - Background refresh: guarded by a distributed lock so only one worker
      recomputes a given key at a time
    - Store failures fail open toward calling the producer directly
    """

    def __init__(
        self,
        store: CacheStore,
        lock: DistributedLock,
        executor: Optional[Executor] = None,
        max_revalidation_workers: int = 4,
        refresh_lock_ttl: int = REFRESH_LOCK_TTL,
        lock_max_retries: int = DEFAULT_MAX_RETRIES,
        lock_retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        refresh_threshold_percent: int = REFRESH_THRESHOLD_PERCENT,
    ):
        """
        Initialize the cache manager.

        Args:
            store: Cache backend; tagging is used only if it is a TaggableCacheStore
            lock: Lock guarding background refreshes
            executor: Runs background refreshes; a thread pool is created if omitted
            max_revalidation_workers: Pool size when the pool is created here
            refresh_lock_ttl: Lifetime of the refresh lock (seconds)
            lock_max_retries: Acquisition attempts before giving up on a refresh
            lock_retry_backoff: Sleep between acquisition attempts (seconds)
            refresh_threshold_percent: Default share of TTL left that triggers a refresh
        """
        self._store = store
        self._lock = lock

        # Capabilities resolved once
        self._tagging = isinstance(store, TaggableCacheStore)
        self._ttl_introspection = store.supports_ttl_introspection
        if not self._tagging:
            logger.info(f"Cache store '{store.backend_name}' has no tag support; tags will be ignored")
        if not self._ttl_introspection:
            logger.info(f"Cache store '{store.backend_name}' cannot report TTLs; background refresh disabled")

        # Background revalidation
        self._owns_executor = executor is None
        self._revalidation_pool = executor or ThreadPoolExecutor(
            max_workers=max_revalidation_workers,
            thread_name_prefix="cache-revalidate",
        )
        self._refresh_lock_ttl = refresh_lock_ttl
        self._lock_max_retries = lock_max_retries
        self._lock_retry_backoff = lock_retry_backoff
        self._refresh_threshold_percent = refresh_threshold_percent

        # Keys with a refresh queued or running in this process
        self._revalidating: set = set()
        self._revalidating_lock = threading.Lock()

        # Stats tracking
        self._stats = {
            "hits": 0,
            "misses": 0,
            "refreshes_triggered": 0,
            "refreshes_completed": 0,
            "refreshes_skipped": 0,
            "refresh_failures": 0,
            "backend_errors": 0,
        }
        self._stats_lock = threading.Lock()
        self._last_refresh_error: Optional[str] = None

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def lock(self) -> DistributedLock:
        return self._lock

    @property
    def supports_tags(self) -> bool:
        return self._tagging

    def _bump(self, counter: str) -> None:
        with self._stats_lock:
            self._stats[counter] += 1

    # =========================================================================
    # Read paths
    # =========================================================================

    def get_or_refresh(
        self,
        key: str,
        ttl_seconds: int,
        producer: Producer,
        tags: Iterable[str] = (),
        refresh_threshold_percent: Optional[int] = None,
    ) -> Any:
        """
        Return the cached value for ``key``, computing it on a cold miss.

        Args:
            key: Cache key
            ttl_seconds: TTL applied when (re)storing the value
            producer: Zero-argument callable computing the value; may run more
                than once for the same key
            tags: Tags attached to the entry when the store supports tagging
            refresh_threshold_percent: Refresh in the background once less
                than this share of ``ttl_seconds`` remains

        Returns:
            Cached or freshly produced value

        Raises:
            Exception: Whatever the producer raises on a cold miss
        """
        value, _ = self.lookup(key, ttl_seconds, producer, tags, refresh_threshold_percent)
        return value

    def lookup(
        self,
        key: str,
        ttl_seconds: int,
        producer: Producer,
        tags: Iterable[str] = (),
        refresh_threshold_percent: Optional[int] = None,
    ) -> Tuple[Any, CacheMeta]:
        """
        Same as get_or_refresh, also returning access metadata.

        Returns:
            (value, cache_meta) tuple; cache_meta.status tells the caller
            whether the value came from the cache (for X-Cache-Status)
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        tags = tuple(tags)
        threshold = (
            self._refresh_threshold_percent
            if refresh_threshold_percent is None
            else refresh_threshold_percent
        )

        try:
            cached = self._store.get(key)
        except CacheBackendError as e:
            logger.warning(f"Cache read failed for {key}, calling producer directly: {e}")
            self._bump("backend_errors")
            self._bump("misses")
            return producer(), CacheMeta(key=key, status=CacheStatus.MISS, ttl_seconds=ttl_seconds)

        # Cold miss - the only path that blocks on the producer
        if not cached.hit:
            logger.info(f"CACHE MISS: {key}")
            value = producer()
            self._store_value(key, value, ttl_seconds, tags)
            self._bump("misses")
            return value, CacheMeta(
                key=key, status=CacheStatus.MISS,
                ttl_seconds=ttl_seconds, remaining_ttl=ttl_seconds,
            )

        self._bump("hits")
        remaining = self._remaining_ttl(key)
        refresh_triggered = False

        if remaining is not None and remaining < ttl_seconds * threshold / 100:
            logger.info(
                f"CACHE HIT (aging, revalidating): {key} "
                f"[remaining={remaining}s of {ttl_seconds}s]"
            )
            refresh_triggered = self._trigger_background_refresh(key, ttl_seconds, producer, tags, threshold)
        else:
            logger.debug(f"CACHE HIT: {key} [remaining={remaining}s]")

        return cached.value, CacheMeta(
            key=key, status=CacheStatus.HIT, ttl_seconds=ttl_seconds,
            remaining_ttl=remaining, refresh_triggered=refresh_triggered,
        )

    def remember(
        self,
        key: str,
        ttl_seconds: int,
        producer: Producer,
        tags: Iterable[str] = (),
    ) -> Any:
        """
        Plain read-through caching without background refresh.

        The entry simply expires; the next caller after expiry pays for the
        recomputation.
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        tags = tuple(tags)
        try:
            cached = self._store.get(key)
        except CacheBackendError as e:
            logger.warning(f"Cache read failed for {key}, calling producer directly: {e}")
            self._bump("backend_errors")
            self._bump("misses")
            return producer()

        if cached.hit:
            self._bump("hits")
            return cached.value

        value = producer()
        self._store_value(key, value, ttl_seconds, tags)
        self._bump("misses")
        return value

    def _remaining_ttl(self, key: str) -> Optional[int]:
        """Best-effort TTL introspection; None means skip the refresh check."""
        if not self._ttl_introspection:
            return None
        try:
            return self._store.remaining_ttl(key)
        except CacheBackendError as e:
            logger.warning(f"Could not determine cache TTL for {key}: {e}")
            self._bump("backend_errors")
            return None

    # =========================================================================
    # Write paths
    # =========================================================================

    def _store_value(self, key: str, value: Any, ttl_seconds: int, tags: Tuple[str, ...]) -> None:
        """Store data in cache, tagged if possible. Never raises on backend failure."""
        if tags and self._tagging:
            try:
                self._store.put_tagged(key, value, ttl_seconds, tags)
                return
            except CacheBackendError as e:
                logger.warning(f"Cache tagging failed for {key}, using regular cache: {e}")
                self._bump("backend_errors")

        try:
            self._store.put(key, value, ttl_seconds)
        except CacheBackendError as e:
            logger.error(f"Cache write failed for {key}: {e}")
            self._bump("backend_errors")

    def _trigger_background_refresh(
        self,
        key: str,
        ttl_seconds: int,
        producer: Producer,
        tags: Tuple[str, ...],
        threshold: int,
    ) -> bool:
        """Schedule a refresh without blocking the caller, once per key in flight."""
        with self._revalidating_lock:
            if key in self._revalidating:
                logger.debug(f"Already revalidating: {key}")
                self._bump("refreshes_skipped")
                return False
            self._revalidating.add(key)

        def do_refresh():
            try:
                self.refresh(key, ttl_seconds, producer, tags, refresh_threshold_percent=threshold)
            finally:
                with self._revalidating_lock:
                    self._revalidating.discard(key)

        try:
            self._revalidation_pool.submit(do_refresh)
        except RuntimeError as e:
            # Pool already shut down (application stopping)
            logger.warning(f"Background refresh not scheduled for {key}: {e}")
            with self._revalidating_lock:
                self._revalidating.discard(key)
            return False
        self._bump("refreshes_triggered")
        return True

    def refresh(
        self,
        key: str,
        ttl_seconds: int,
        producer: Producer,
        tags: Iterable[str] = (),
        refresh_threshold_percent: Optional[int] = None,
    ) -> bool:
        """
        Recompute and store ``key`` if no other worker is already doing so.

        With ``refresh_threshold_percent`` the entry is checked again once the
        lock is held, and left alone if another worker already refreshed it.

        Producer failures are logged and recorded, never raised: the caller
        that triggered the refresh has already been served the stale value.

        Returns:
            True if a fresh value was stored
        """
        lock_key = refresh_lock_key(key)
        token = self._lock.acquire(
            lock_key,
            ttl_seconds=self._refresh_lock_ttl,
            max_retries=self._lock_max_retries,
            retry_backoff=self._lock_retry_backoff,
        )
        if token is None:
            logger.debug(f"Refresh already in progress elsewhere: {key}")
            self._bump("refreshes_skipped")
            return False

        try:
            if refresh_threshold_percent is not None:
                remaining = self._remaining_ttl(key)
                if remaining is not None and remaining >= ttl_seconds * refresh_threshold_percent / 100:
                    logger.debug(f"Already refreshed elsewhere: {key} [remaining={remaining}s]")
                    self._bump("refreshes_skipped")
                    return False

            logger.debug(f"Background refresh started: {key}")
            value = producer()
            self._store_value(key, value, ttl_seconds, tuple(tags))
            self._bump("refreshes_completed")
            logger.info(f"Background refresh complete: {key}")
            return True
        except Exception as e:
            logger.exception(f"Background refresh failed: {key}")
            with self._stats_lock:
                self._stats["refresh_failures"] += 1
                self._last_refresh_error = f"{key}: {type(e).__name__}: {e}"
            return False
        finally:
            self._lock.release(lock_key, token)

    # =========================================================================
    # Lifecycle and stats
    # =========================================================================

    def shutdown(self, wait: bool = True) -> None:
        """Stop the refresh pool (only if this manager created it)."""
        if self._owns_executor:
            self._revalidation_pool.shutdown(wait=wait)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
            last_error = self._last_refresh_error

        total_requests = stats["hits"] + stats["misses"]
        hit_rate = (stats["hits"] / total_requests * 100) if total_requests > 0 else 0

        stats.update({
            "hit_rate_percent": round(hit_rate, 1),
            "backend": self._store.backend_name,
            "tagging": self._tagging,
            "ttl_introspection": self._ttl_introspection,
            "last_refresh_error": last_error,
        })
        return stats
