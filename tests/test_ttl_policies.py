"""
Tests for path-to-TTL policy, cache key generation and header helpers.
"""
import dataclasses

import pytest

from app.cache import DEFAULT_POLICY, CacheMeta, CacheStatus, build_cache_headers, compute_etag, key_for
from app.cache.headers import build_no_store_headers
from app.cache.ttl_policies import CachePolicy, PolicyRule, get_duration_for_path, refresh_lock_key


# ===== key_for =====

def test_key_for_is_parameter_order_independent():
    assert key_for("products", {"b": 2, "a": 1}) == key_for("products", {"a": 1, "b": 2})


def test_key_for_without_params_is_base():
    assert key_for("homepage_data") == "homepage_data"
    assert key_for("homepage_data", {}) == "homepage_data"


def test_key_for_format():
    key = key_for("products_by_type", {"type": "featured", "limit": 10})
    base, digest = key.split(":")
    assert base == "products_by_type"
    assert len(digest) == 32


def test_key_for_distinguishes_values():
    assert key_for("products", {"limit": 10}) != key_for("products", {"limit": 20})
    assert key_for("products", {"limit": 10}) != key_for("categories", {"limit": 10})


def test_refresh_lock_key():
    assert refresh_lock_key("homepage_data") == "lock:refresh:homepage_data"


# ===== duration_for =====

@pytest.mark.parametrize("path", [
    "api/cart",
    "/api/cart/items",
    "api/user/profile",
    "api/orders/17",
    "api/checkout",
    "api/payment/intent",
    "api/notifications",
])
def test_user_specific_paths_are_not_cached(path):
    assert DEFAULT_POLICY.duration_for(path) == 0
    assert not DEFAULT_POLICY.is_cacheable(path)


def test_no_cache_rules_win_over_cacheable_tiers():
    # Contains both "products" (600) and "cart" (0)
    assert DEFAULT_POLICY.duration_for("api/products/cart-suggestions") == 0


@pytest.mark.parametrize("path,expected", [
    ("api/categories/tree", 3600),
    ("/api/settings", 3600),
    ("api/products/type/featured", 600),
    ("api/banners", 600),
    ("api/stock/42", 120),
    ("api/search?q=water", 120),
    ("api/homepage", 300),
])
def test_cacheable_tiers(path, expected):
    assert DEFAULT_POLICY.duration_for(path) == expected


def test_first_matching_tier_wins():
    # "products" (medium) is checked before "search" (short)
    assert DEFAULT_POLICY.duration_for("api/products/search") == 600


def test_query_string_is_ignored():
    assert DEFAULT_POLICY.duration_for("api/homepage?next=cart") == 300


def test_module_shortcut_uses_default_policy():
    assert get_duration_for_path("api/categories") == 3600


def test_custom_policy_table():
    policy = CachePolicy(rules=(PolicyRule("live", 0), PolicyRule("reports", 60)), default_ttl=10)
    assert policy.duration_for("api/live/scores") == 0
    assert policy.duration_for("api/reports/daily") == 60
    assert policy.duration_for("api/other") == 10


def test_policy_is_read_only():
    with pytest.raises(dataclasses.FrozenInstanceError):
        DEFAULT_POLICY.default_ttl = 1


# ===== header_max_age_for =====

@pytest.mark.parametrize("path,expected", [
    ("/api/categories/tree", 3600),
    ("/api/products/type/featured", 1800),
    ("/api/user/addresses", 300),
    ("/api/profile", 300),
    ("/api/static/logo", 86400),
    ("/api/settings", 86400),
    ("/api/homepage", 600),
])
def test_header_max_age(path, expected):
    assert DEFAULT_POLICY.header_max_age_for(path) == expected


# ===== headers =====

def test_etag_is_stable_across_key_order():
    assert compute_etag({"a": 1, "b": [1, 2]}) == compute_etag({"b": [1, 2], "a": 1})
    assert compute_etag({"a": 1}) != compute_etag({"a": 2})


def test_build_cache_headers():
    meta = CacheMeta(key="homepage_data", status=CacheStatus.HIT, ttl_seconds=3600)
    headers = build_cache_headers(3600, payload={"a": 1}, meta=meta)

    assert headers["Cache-Control"] == "public, max-age=3600, stale-while-revalidate=86400"
    assert headers["X-Cache-Status"] == "HIT"
    assert headers["ETag"] == f'"{compute_etag({"a": 1})}"'
    assert headers["Vary"] == "Accept-Encoding"
    assert headers["Expires"].endswith("GMT")


def test_build_cache_headers_minimal():
    headers = build_cache_headers(60, stale_while_revalidate=0)
    assert headers["Cache-Control"] == "public, max-age=60"
    assert "ETag" not in headers
    assert "X-Cache-Status" not in headers


def test_no_store_headers():
    headers = build_no_store_headers()
    assert "no-store" in headers["Cache-Control"]
    assert headers["Pragma"] == "no-cache"


def test_cache_meta_served_at_is_utc():
    meta = CacheMeta(key="k", status=CacheStatus.MISS, ttl_seconds=60)
    assert meta.served_at.endswith("Z")
    assert "+00:00" not in meta.served_at
    assert meta.to_dict()["servedAt"] == meta.served_at
