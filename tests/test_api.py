"""
Endpoint tests: cached catalog reads, cache headers and invalidation
"""
from datetime import date, timedelta

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from app import crud
from app.cache import CacheInvalidator, CacheManager, InMemoryCacheStore, key_for
from app.db import SessionLocal, init_db
from app.main import app, cached_json, get_cache_manager, get_invalidator
from app.models import Category, Product


def products_key(product_type, limit):
    return key_for("products_by_type", {"type": product_type, "limit": limit})


@pytest.fixture
def seeded_db():
    """Fresh catalog: two top-level categories (one with children) and a few products."""
    init_db()
    db = SessionLocal()
    try:
        db.query(Product).delete()
        db.query(Category).delete()
        db.commit()

        drinks = Category(name="Drinks", slug="drinks", is_active=True)
        snacks = Category(name="Snacks", slug="snacks", is_active=True)
        db.add_all([drinks, snacks])
        db.flush()
        db.add_all([
            Category(name="Water", slug="water", is_active=True, parent_id=drinks.id),
            Category(name="Juice", slug="juice", is_active=True, parent_id=drinks.id),
            Category(name="Retired", slug="retired", is_active=False, parent_id=drinks.id),
        ])

        today = date.today()
        db.add_all([
            Product(name="Spring Water 1L", slug="spring-water-1l", category_id=drinks.id,
                    base_price=1.5, stock=100, is_featured=True, total_sold=40),
            Product(name="Orange Juice", slug="orange-juice", category_id=drinks.id,
                    base_price=3.0, sale_price=2.4, stock=20, is_new_arrival=True, total_sold=5,
                    expiry_date=today + timedelta(days=10)),
            Product(name="Crisps", slug="crisps", category_id=snacks.id,
                    base_price=2.0, sale_price=1.0, stock=50, total_sold=90),
            Product(name="Hidden", slug="hidden", category_id=snacks.id,
                    base_price=9.0, stock=1, is_featured=True, is_active=False),
        ])
        db.commit()
    finally:
        db.close()
    yield


@pytest.fixture
def cache_manager(taggable_store, lock, sync_executor):
    return CacheManager(taggable_store, lock, executor=sync_executor, lock_retry_backoff=0)


@pytest.fixture
def client(seeded_db, cache_manager):
    app.dependency_overrides[get_cache_manager] = lambda: cache_manager
    yield TestClient(app)
    app.dependency_overrides.clear()


# ===== HOMEPAGE =====

def test_homepage_miss_then_hit(client):
    first = client.get("/api/homepage")
    assert first.status_code == 200
    assert first.headers["x-cache-status"] == "MISS"
    assert "stale-while-revalidate=86400" in first.headers["cache-control"]
    assert first.json()["cached"] is False

    second = client.get("/api/homepage")
    assert second.headers["x-cache-status"] == "HIT"
    assert second.json()["cached"] is True
    assert second.json()["data"] == first.json()["data"]
    assert second.headers["etag"] == first.headers["etag"]


def test_homepage_payload(client):
    data = client.get("/api/homepage").json()["data"]

    assert [c["name"] for c in data["categories"]] == ["Drinks", "Snacks"]
    assert [p["name"] for p in data["featuredProducts"]] == ["Spring Water 1L"]
    assert [p["name"] for p in data["newArrivals"]] == ["Orange Juice"]
    assert [p["name"] for p in data["bestSellers"]] == ["Crisps", "Spring Water 1L", "Orange Juice"]
    # 50% off beats 20% off
    assert [p["name"] for p in data["hotDeals"]] == ["Crisps", "Orange Juice"]


def test_homepage_force_refresh_recomputes(client, taggable_store):
    client.get("/api/homepage")
    assert taggable_store.has("homepage_data")

    response = client.get("/api/homepage?forceRefresh=true")
    assert response.headers["x-cache-status"] == "MISS"


def test_homepage_force_refresh_without_tag_support(seeded_db, clock, lock, sync_executor):
    store = InMemoryCacheStore(clock=clock)
    manager = CacheManager(store, lock, executor=sync_executor)
    app.dependency_overrides[get_cache_manager] = lambda: manager
    try:
        client = TestClient(app)
        client.get("/api/homepage")
        response = client.get("/api/homepage?forceRefresh=true")
        assert response.status_code == 200
        assert response.headers["x-cache-status"] == "MISS"
    finally:
        app.dependency_overrides.clear()


def test_homepage_etag_revalidation(client):
    etag = client.get("/api/homepage").headers["etag"]

    response = client.get("/api/homepage", headers={"If-None-Match": etag})
    assert response.status_code == 304


def test_homepage_sections(client, taggable_store):
    response = client.get("/api/homepage/sections?sections=categories&sections=featured&sections=bogus")
    assert response.status_code == 200
    data = response.json()["data"]

    assert set(data) == {"categories", "featured"}
    assert taggable_store.has("homepage_categories")
    assert taggable_store.has("homepage_featured")
    assert not taggable_store.has("homepage_new_arrivals")


# ===== CATALOG =====

def test_category_tree_nests_active_children(client):
    response = client.get("/api/categories/tree")
    assert response.status_code == 200
    assert response.headers["cache-control"].startswith("public, max-age=3600")

    tree = response.json()["data"]
    drinks = tree[0]
    assert drinks["has_children"] is True
    assert [c["name"] for c in drinks["children"]] == ["Juice", "Water"]
    assert tree[1]["has_children"] is False
    assert response.json()["cache_ttl"] == 3600


def test_products_by_type(client, taggable_store):
    response = client.get("/api/products/type/featured?limit=5")
    assert response.status_code == 200
    assert [p["slug"] for p in response.json()["data"]] == ["spring-water-1l"]
    assert response.json()["cache_ttl"] == 600
    assert response.headers["cache-control"].startswith("public, max-age=1800")

    assert taggable_store.keys_for_tag("products") == {
        products_key("featured", 5),
    }


def test_products_by_type_unknown(client):
    response = client.get("/api/products/type/mystery")
    assert response.status_code == 404


def test_expiring_soon(client):
    data = client.get("/api/products/type/expiring_soon").json()["data"]
    assert [p["slug"] for p in data] == ["orange-juice"]


def test_featured_falls_back_to_active_products(seeded_db):
    db = SessionLocal()
    try:
        db.query(Product).update({Product.is_featured: False})
        db.commit()
        products = crud.get_products_by_type(db, "featured", 10)
    finally:
        db.close()

    assert len(products) == 3
    assert "hidden" not in [p["slug"] for p in products]


def test_producer_failure_on_cold_miss_is_500(client, monkeypatch):
    def broken(db, *args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(crud, "get_category_tree", broken)
    response = client.get("/api/categories/tree")
    assert response.status_code == 500


# ===== CACHE ADMIN =====

def test_invalidate_by_tag_endpoint(client, taggable_store):
    client.get("/api/categories/tree")
    client.get("/api/products/type/featured")

    response = client.post("/api/cache/invalidate", json={"tags": ["categories"]})
    assert response.status_code == 200
    body = response.json()
    assert body["tag_keys_removed"] == 1
    assert body["tagging_supported"] is True

    assert not taggable_store.has("categories_tree")
    assert taggable_store.has(products_key("featured", 10))


def test_invalidate_by_key_and_pattern(client, taggable_store):
    client.get("/api/products/type/featured")
    client.get("/api/products/type/best_sellers")
    client.get("/api/categories/tree")

    response = client.post(
        "/api/cache/invalidate",
        json={"keys": ["categories_tree"], "pattern": "products_by_type:*"},
    )
    body = response.json()
    assert body["keys_removed"] == 1
    assert body["pattern_keys_removed"] == 2
    assert len(taggable_store) == 0


def test_invalidate_pattern_unsupported_is_501(client, clock):
    class NoScanStore(InMemoryCacheStore):
        supports_key_enumeration = False

    app.dependency_overrides[get_invalidator] = lambda: CacheInvalidator(NoScanStore(clock=clock))
    response = client.post("/api/cache/invalidate", json={"pattern": "products_by_type:*"})
    assert response.status_code == 501


def test_cache_stats(client):
    client.get("/api/categories/tree")
    client.get("/api/categories/tree")

    stats = client.get("/api/cache/stats").json()
    assert stats["cache"]["hits"] == 1
    assert stats["cache"]["misses"] == 1
    assert stats["policy"]["default"] == 300


def test_cached_none_is_served_without_etag(cache_manager):
    banner_app = FastAPI()

    @banner_app.get("/api/banners/empty")
    def empty(request: Request):
        return cached_json(request, cache_manager, "banners_empty", lambda: None)

    client = TestClient(banner_app)
    first = client.get("/api/banners/empty")
    second = client.get("/api/banners/empty", headers={"If-None-Match": '"anything"'})

    assert first.status_code == 200
    assert first.json()["data"] is None
    assert "etag" not in first.headers
    assert second.status_code == 200
    assert second.headers["x-cache-status"] == "HIT"
