"""
TTL configuration, endpoint-to-duration mapping and cache key generation.
"""
import hashlib
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple


# TTL tiers (in seconds)
DEFAULT_TTL = 3600      # 1 hour
SHORT_TTL = 300         # 5 minutes, frequently changing data
MEDIUM_TTL = 1800       # 30 minutes, semi-static data
LONG_TTL = 86400        # 24 hours, mostly static data

# Refresh in the background once less than this share of the TTL remains
REFRESH_THRESHOLD_PERCENT = 10

# Refresh lock lifetime, sized to the producer runtime rather than the cache TTL
REFRESH_LOCK_TTL = 60

# Browser-side stale-while-revalidate window
STALE_WHILE_REVALIDATE_SECONDS = 86400

NO_CACHE = 0


@dataclass(frozen=True)
class PolicyRule:
    """A path fragment and the server-side cache duration it maps to."""
    pattern: str
    ttl_seconds: int

    def matches(self, path: str) -> bool:
        return self.pattern in path


def _tier(ttl: int, *patterns: str) -> Tuple[PolicyRule, ...]:
    return tuple(PolicyRule(pattern, ttl) for pattern in patterns)


# Order matters: first match wins, and user-specific / real-time endpoints
# come first so they can never land in a cacheable tier.
RESPONSE_CACHE_RULES: Tuple[PolicyRule, ...] = (
    _tier(NO_CACHE, "cart", "user/profile", "orders", "checkout", "payment", "notifications")
    + _tier(3600, "categories", "settings", "pages", "countries", "states", "cities")
    + _tier(600, "products", "banners", "promotions", "featured")
    + _tier(120, "stock", "availability", "search")
)
RESPONSE_CACHE_DEFAULT = 300

# Browser Cache-Control max-age, matched as path prefixes
HEADER_MAX_AGE_RULES: Tuple[Tuple[Tuple[str, ...], int], ...] = (
    (("api/categories",), 3600),
    (("api/products",), 1800),
    (("api/user", "api/profile"), 300),
    (("api/static", "api/settings"), 86400),
)
HEADER_MAX_AGE_DEFAULT = 600


@dataclass(frozen=True)
class CachePolicy:
    """
    Read-only mapping from request paths to cache durations.

    Built once at startup; ``duration_for`` returning 0 means "do not cache".
    """
    rules: Tuple[PolicyRule, ...] = RESPONSE_CACHE_RULES
    default_ttl: int = RESPONSE_CACHE_DEFAULT
    header_rules: Tuple[Tuple[Tuple[str, ...], int], ...] = HEADER_MAX_AGE_RULES
    header_default: int = HEADER_MAX_AGE_DEFAULT

    def duration_for(self, resource_path: str) -> int:
        """
        Server-side cache duration for a request path.

        Args:
            resource_path: Request path, with or without leading slash

        Returns:
            TTL in seconds, or 0 if the endpoint must not be cached
        """
        path = _normalize_path(resource_path)
        for rule in self.rules:
            if rule.matches(path):
                return rule.ttl_seconds
        return self.default_ttl

    def is_cacheable(self, resource_path: str) -> bool:
        return self.duration_for(resource_path) > 0

    def header_max_age_for(self, resource_path: str) -> int:
        """Browser max-age for a request path (prefix match)."""
        path = _normalize_path(resource_path)
        for prefixes, max_age in self.header_rules:
            if path.startswith(prefixes):
                return max_age
        return self.header_default


def _normalize_path(path: str) -> str:
    return path.split("?", 1)[0].lstrip("/")


def key_for(base: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Build a stable cache key from a base name and request parameters.

    Parameters are sorted by name before hashing, so the same logical request
    maps to the same key regardless of query-string order.

    Example:
        key_for("products", {"b": 2, "a": 1}) == key_for("products", {"a": 1, "b": 2})
    """
    if not params:
        return base

    canonical = json.dumps(dict(params), sort_keys=True, separators=(",", ":"), default=str)
    params_hash = hashlib.md5(canonical.encode("utf-8")).hexdigest()
    return f"{base}:{params_hash}"


def refresh_lock_key(cache_key: str) -> str:
    """Name of the lock guarding background refresh of ``cache_key``."""
    return f"lock:refresh:{cache_key}"


DEFAULT_POLICY = CachePolicy()


def get_duration_for_path(resource_path: str) -> int:
    """Module-level shortcut using the default policy."""
    return DEFAULT_POLICY.duration_for(resource_path)


def describe_policy(policy: CachePolicy = DEFAULT_POLICY) -> Dict[str, Any]:
    """Policy table as plain data (for the stats endpoint)."""
    return {
        "rules": [{"pattern": r.pattern, "ttl": r.ttl_seconds} for r in policy.rules],
        "default": policy.default_ttl,
    }
