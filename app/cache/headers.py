"""
HTTP cache header helpers for endpoint handlers.

The cache core never touches responses; handlers call these with the
CacheMeta they got back from the manager.
"""
import hashlib
import json
from email.utils import formatdate
from time import time
from typing import Any, Dict, Optional

from .core import CacheMeta
from .ttl_policies import STALE_WHILE_REVALIDATE_SECONDS


def compute_etag(payload: Any) -> str:
    """md5 of the canonical JSON encoding of a response body."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(body.encode("utf-8")).hexdigest()


def build_cache_headers(
    max_age: int,
    payload: Any = None,
    meta: Optional[CacheMeta] = None,
    stale_while_revalidate: int = STALE_WHILE_REVALIDATE_SECONDS,
) -> Dict[str, str]:
    """
    Headers for a cacheable public response.

    Args:
        max_age: Browser max-age in seconds
        payload: Response body, used for the ETag when given
        meta: Cache access metadata, used for X-Cache-Status when given
        stale_while_revalidate: Browser SWR window (0 to omit the directive)
    """
    cache_control = f"public, max-age={max_age}"
    if stale_while_revalidate > 0:
        cache_control += f", stale-while-revalidate={stale_while_revalidate}"

    headers = {
        "Cache-Control": cache_control,
        "Expires": formatdate(time() + max_age, usegmt=True),
        "Vary": "Accept-Encoding",
    }
    if payload is not None:
        headers["ETag"] = f'"{compute_etag(payload)}"'
    if meta is not None:
        headers["X-Cache-Status"] = meta.status.value
    return headers


def build_no_store_headers() -> Dict[str, str]:
    """Headers for user-specific or real-time responses."""
    return {
        "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
        "Pragma": "no-cache",
        "Expires": "Sat, 01 Jan 2000 00:00:00 GMT",
    }
