"""
Storefront API - Main FastAPI Application
Composite catalog reads are served through the stale-while-revalidate cache
"""
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Callable, Iterable, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

from app import crud
from app.cache import (
    DEFAULT_POLICY,
    CacheInvalidator,
    CacheManager,
    CapabilityNotSupported,
    build_cache_headers,
    build_no_store_headers,
    key_for,
)
from app.cache.factory import build_cache_manager, build_invalidator
from app.cache.ttl_policies import describe_policy
from app.db import init_db, run_in_session
from app.schemas import InvalidationRequest, InvalidationResult
from config.settings import settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("storefront.api")

# Version tracking
APP_VERSION = "v0.3.0"
APP_NAME = "Storefront API"

HOMEPAGE_CACHE_KEY = "homepage_data"
HOMEPAGE_CACHE_TAGS = ["homepage", "frontend", "products", "categories"]
HOMEPAGE_CACHE_TTL = 3600

# Per-section caching for /api/homepage/sections
SECTION_CACHE = {
    "categories": ("homepage_categories", 3600),
    "featured": ("homepage_featured", 900),
    "newArrivals": ("homepage_new_arrivals", 900),
}

policy = DEFAULT_POLICY


@lru_cache()
def get_cache_manager() -> CacheManager:
    """Cache manager for this worker process (overridable in tests)."""
    return build_cache_manager(settings)


def get_invalidator(manager: CacheManager = Depends(get_cache_manager)) -> CacheInvalidator:
    return build_invalidator(manager)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield
    if get_cache_manager.cache_info().currsize:
        get_cache_manager().shutdown(wait=False)


app = FastAPI(
    title=APP_NAME,
    description="Storefront catalog API with stale-while-revalidate caching",
    version=APP_VERSION,
    lifespan=lifespan,
)


def cached_json(
    request: Request,
    manager: CacheManager,
    key: str,
    producer: Callable[[], Any],
    tags: Iterable[str] = (),
    ttl: Optional[int] = None,
) -> Response:
    """
    Serve ``producer``'s data through the cache with HTTP cache headers.

    The TTL comes from the path policy unless given; a zero TTL means the
    endpoint is user-specific or real-time and bypasses the cache entirely.
    """
    path = request.url.path
    ttl = policy.duration_for(path) if ttl is None else ttl

    try:
        if ttl == 0:
            return JSONResponse(
                {"status": "success", "data": producer(), "cached": False},
                headers=build_no_store_headers(),
            )
        data, meta = manager.lookup(key, ttl, producer, tags)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Failed to build response for {key}")
        raise HTTPException(status_code=500, detail=str(e))

    headers = build_cache_headers(policy.header_max_age_for(path), payload=data, meta=meta)
    etag = headers.get("ETag")
    if etag is not None and request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers=headers)

    return JSONResponse(
        {
            "status": "success",
            "data": data,
            "cached": meta.is_hit,
            "cache_ttl": ttl,
            "_meta": meta.to_dict(),
        },
        headers=headers,
    )


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version_info():
    """Version information endpoint."""
    return {"name": APP_NAME, "version": APP_VERSION}


# ===== HOMEPAGE =====

@app.get("/api/homepage")
def homepage(
    request: Request,
    forceRefresh: bool = Query(default=False, description="Drop cached homepage data first"),
    manager: CacheManager = Depends(get_cache_manager),
    invalidator: CacheInvalidator = Depends(get_invalidator),
):
    """
    All homepage data in a single call: category tree plus merchandising sections.
    """
    if forceRefresh:
        invalidator.invalidate_by_tag(HOMEPAGE_CACHE_TAGS)
        # Untagged stores cannot flush by tag; drop the aggregate directly
        invalidator.invalidate_by_key(HOMEPAGE_CACHE_KEY)

    return cached_json(
        request,
        manager,
        HOMEPAGE_CACHE_KEY,
        lambda: run_in_session(crud.get_homepage_data),
        tags=HOMEPAGE_CACHE_TAGS,
        ttl=HOMEPAGE_CACHE_TTL,
    )


@app.get("/api/homepage/sections")
def homepage_sections(
    sections: List[str] = Query(default=[], description="Sections to include"),
    manager: CacheManager = Depends(get_cache_manager),
):
    """
    Only the requested homepage sections, each cached separately.
    """
    producers = {
        "categories": lambda: run_in_session(crud.get_category_tree),
        "featured": lambda: run_in_session(crud.get_products_by_type, "featured", 10),
        "newArrivals": lambda: run_in_session(crud.get_products_by_type, "new_arrivals", 10),
    }

    data = {}
    for section in sections:
        if section not in SECTION_CACHE:
            continue
        key, ttl = SECTION_CACHE[section]
        data[section] = manager.remember(key, ttl, producers[section], tags=["homepage"])

    return {"status": "success", "data": data}


# ===== CATALOG =====

@app.get("/api/categories/tree")
def category_tree(
    request: Request,
    manager: CacheManager = Depends(get_cache_manager),
):
    """Categories in a hierarchical tree structure."""
    return cached_json(
        request,
        manager,
        "categories_tree",
        lambda: run_in_session(crud.get_category_tree),
        tags=["categories", "frontend"],
    )


@app.get("/api/products/type/{product_type}")
def products_by_type(
    product_type: str,
    request: Request,
    limit: int = Query(default=10, ge=1, le=50),
    manager: CacheManager = Depends(get_cache_manager),
):
    """Active products for a merchandising section (featured, best_sellers, ...)."""
    if product_type not in crud.PRODUCT_TYPES:
        raise HTTPException(status_code=404, detail=f"Unknown product type: {product_type}")

    key = key_for("products_by_type", {"type": product_type, "limit": limit})
    return cached_json(
        request,
        manager,
        key,
        lambda: run_in_session(crud.get_products_by_type, product_type, limit),
        tags=["products", "frontend"],
    )


# ===== CACHE ADMIN =====

@app.get("/api/cache/stats")
def cache_stats(manager: CacheManager = Depends(get_cache_manager)):
    """Get cache statistics."""
    return {"cache": manager.get_stats(), "policy": describe_policy(policy)}


@app.post("/api/cache/invalidate", response_model=InvalidationResult)
def invalidate_cache(
    body: InvalidationRequest,
    invalidator: CacheInvalidator = Depends(get_invalidator),
):
    """Drop cache entries by tag, key and/or glob pattern."""
    pattern_removed = None
    if body.pattern:
        try:
            pattern_removed = invalidator.invalidate_by_pattern(body.pattern)
        except CapabilityNotSupported as e:
            raise HTTPException(status_code=501, detail=str(e))

    tag_removed = invalidator.invalidate_by_tag(body.tags)
    keys_removed = sum(1 for key in body.keys if invalidator.invalidate_by_key(key))

    return InvalidationResult(
        tags=body.tags,
        tag_keys_removed=tag_removed,
        keys_removed=keys_removed,
        pattern_keys_removed=pattern_removed,
        tagging_supported=invalidator.supports_tags,
    )
