"""
Catalog read queries
These are the expensive composite reads that endpoint handlers hand to the cache as producers.
Every function returns plain JSON-serializable data so results can be stored in any cache backend.
"""
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session, joinedload

from app.models import Category, Product
from app.schemas import CategoryNode, ProductSummary

PRODUCT_TYPES = ("featured", "new_arrivals", "best_sellers", "hot_deals", "expiring_soon")

# Types that fall back to the newest active products when empty
FALLBACK_TYPES = ("featured", "best_sellers")

EXPIRING_WINDOW_DAYS = 30


# ===== CATEGORIES =====

def _build_category_tree(categories: List[Category], include_inactive: bool) -> List[CategoryNode]:
    nodes = []
    for category in categories:
        children = [c for c in category.subcategories if include_inactive or c.is_active]
        child_nodes = _build_category_tree(children, include_inactive)
        nodes.append(CategoryNode(
            id=category.id,
            name=category.name,
            slug=category.slug,
            description=category.description,
            image=category.image,
            is_active=category.is_active,
            has_children=bool(child_nodes),
            children=child_nodes,
        ))
    return nodes


def get_category_tree(db: Session, include_inactive: bool = False) -> List[Dict[str, Any]]:
    """
    Get top-level categories with nested subcategories, ordered by name
    """
    query = db.query(Category).filter(Category.parent_id.is_(None))
    if not include_inactive:
        query = query.filter(Category.is_active.is_(True))
    roots = query.order_by(Category.name).all()
    return [node.model_dump(mode="json") for node in _build_category_tree(roots, include_inactive)]


# ===== PRODUCTS =====

def _to_summaries(products: List[Product]) -> List[Dict[str, Any]]:
    return [ProductSummary.model_validate(p).model_dump(mode="json") for p in products]


def _active_products(db: Session):
    return (
        db.query(Product)
        .options(joinedload(Product.category))
        .filter(Product.is_active.is_(True))
    )


def get_products_by_type(
    db: Session,
    product_type: str,
    limit: int = 10,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """
    Get active products for a merchandising section

    Raises:
        ValueError: Unknown product type
    """
    if product_type not in PRODUCT_TYPES:
        raise ValueError(f"Unknown product type: {product_type}")

    today = today or date.today()
    query = _active_products(db)

    if product_type == "featured":
        query = query.filter(Product.is_featured.is_(True)).order_by(desc(Product.created_at))
    elif product_type == "new_arrivals":
        query = query.filter(Product.is_new_arrival.is_(True)).order_by(desc(Product.created_at))
    elif product_type == "best_sellers":
        query = query.filter(Product.total_sold > 0).order_by(desc(Product.total_sold))
    elif product_type == "hot_deals":
        discount = (Product.base_price - Product.sale_price) / Product.base_price
        query = (
            query.filter(Product.sale_price.isnot(None))
            .filter(Product.sale_price < Product.base_price)
            .order_by(desc(discount))
        )
    elif product_type == "expiring_soon":
        query = (
            query.filter(Product.expiry_date.isnot(None))
            .filter(Product.expiry_date > today)
            .filter(Product.expiry_date <= today + timedelta(days=EXPIRING_WINDOW_DAYS))
            .order_by(Product.expiry_date)
        )

    products = query.limit(limit).all()

    if not products and product_type in FALLBACK_TYPES:
        products = _active_products(db).order_by(desc(Product.created_at)).limit(limit).all()

    return _to_summaries(products)


# ===== HOMEPAGE =====

def get_homepage_data(db: Session, section_limit: int = 10) -> Dict[str, Any]:
    """
    Aggregate everything the storefront homepage renders in one payload
    """
    return {
        "categories": get_category_tree(db),
        "featuredProducts": get_products_by_type(db, "featured", section_limit),
        "newArrivals": get_products_by_type(db, "new_arrivals", section_limit),
        "bestSellers": get_products_by_type(db, "best_sellers", section_limit),
        "hotDeals": get_products_by_type(db, "hot_deals", section_limit),
    }
