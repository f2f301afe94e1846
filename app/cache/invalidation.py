"""
Cache invalidation by key, tag and key pattern.

Tag and key invalidation never fail the request: if the backend cannot do it,
entries fall back to expiring through their TTL.
"""
import logging
from typing import Iterable

from .exceptions import CacheBackendError, CapabilityNotSupported
from .stores import CacheStore, TaggableCacheStore

logger = logging.getLogger("cache.invalidation")


class CacheInvalidator:
    """Forces misses on a store by deleting entries."""

    def __init__(self, store: CacheStore):
        self._store = store
        self._tagging = isinstance(store, TaggableCacheStore)

    @property
    def supports_tags(self) -> bool:
        return self._tagging

    @property
    def supports_patterns(self) -> bool:
        return self._store.supports_key_enumeration

    def invalidate_by_tag(self, tags: Iterable[str]) -> int:
        """
        Delete every entry carrying any of ``tags``.

        Returns:
            Number of keys removed (0 when tagging is unsupported)
        """
        tags = list(tags)
        if not tags:
            return 0

        if not self._tagging:
            logger.warning(
                f"Cache tagging not supported by '{self._store.backend_name}'. "
                f"Cannot invalidate by tags: {', '.join(tags)}"
            )
            return 0

        try:
            removed = self._store.flush_tags(tags)
        except CacheBackendError as e:
            logger.error(f"Error invalidating cache by tags {tags}: {e}")
            return 0

        logger.info(f"Cache invalidated for tags {', '.join(tags)}: {removed} keys")
        return removed

    def invalidate_by_key(self, key: str) -> bool:
        """Delete a single entry. Returns False if the backend failed."""
        try:
            self._store.forget(key)
        except CacheBackendError as e:
            logger.error(f"Error invalidating cache for key: {key} - {e}")
            return False
        logger.info(f"Cache invalidated for key: {key}")
        return True

    def invalidate_by_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern (e.g. "products_by_type:*").

        Returns:
            Number of keys invalidated

        Raises:
            CapabilityNotSupported: If the store cannot enumerate keys
        """
        if not self._store.supports_key_enumeration:
            raise CapabilityNotSupported("key enumeration", self._store.backend_name)

        try:
            keys = self._store.keys_matching(pattern)
            for key in keys:
                self._store.forget(key)
        except CacheBackendError as e:
            logger.error(f"Error invalidating cache for pattern: {pattern} - {e}")
            return 0

        logger.info(f"Cache invalidated for pattern: {pattern}, {len(keys)} keys affected")
        return len(keys)
