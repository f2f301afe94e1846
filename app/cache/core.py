"""
Core cache data structures.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, FrozenSet, Optional
from enum import Enum


class CacheStatus(Enum):
    """Whether a lookup was served from the cache."""
    HIT = "HIT"     # Entry present, possibly aging
    MISS = "MISS"   # Producer ran on the request path


@dataclass
class CacheEntry:
    """
    A stored value with the metadata needed for TTL introspection.

    Stores own their entries; the value is whatever the producer returned.
    """
    key: str
    value: Any
    ttl_seconds: int
    stored_at: float
    tags: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        if self.ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {self.ttl_seconds}")

    @property
    def expires_at(self) -> float:
        """Clock reading at which the entry stops being served."""
        return self.stored_at + self.ttl_seconds

    def remaining_ttl(self, now: float) -> int:
        """Whole seconds left before expiry (never negative)."""
        return max(0, int(self.expires_at - now))

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class CacheLookup:
    """
    Result of a store read: hit-with-value or miss.

    A cached ``None`` is a hit, so callers check ``hit`` rather than the value.
    """
    hit: bool
    value: Any = None

    @classmethod
    def found(cls, value: Any) -> "CacheLookup":
        return cls(hit=True, value=value)

    @classmethod
    def miss(cls) -> "CacheLookup":
        return cls(hit=False)


@dataclass
class CacheMeta:
    """
    Metadata about a cache access, used by callers to set response headers.
    """
    key: str
    status: CacheStatus
    ttl_seconds: int
    remaining_ttl: Optional[int] = None
    refresh_triggered: bool = False
    served_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )

    @property
    def is_hit(self) -> bool:
        return self.status is CacheStatus.HIT

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        result = {
            "cacheStatus": self.status.value,
            "servedAt": self.served_at,
            "ttl": self.ttl_seconds,
        }
        if self.remaining_ttl is not None:
            result["remainingTtl"] = self.remaining_ttl
        if self.refresh_triggered:
            result["refreshTriggered"] = True
        return result
