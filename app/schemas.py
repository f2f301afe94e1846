"""
Pydantic schemas for API request/response models
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date


# ===== CATALOG SCHEMAS =====

class CategoryRef(BaseModel):
    """Minimal category reference embedded in products"""
    id: int
    name: str
    slug: str

    class Config:
        from_attributes = True


class ProductSummary(BaseModel):
    """Product card as shown in listings and homepage sections"""
    id: int
    name: str
    slug: str
    base_price: float
    sale_price: Optional[float] = None
    stock: int
    is_featured: bool
    is_new_arrival: bool
    total_sold: int
    expiry_date: Optional[date] = None
    category: Optional[CategoryRef] = None

    class Config:
        from_attributes = True


class CategoryNode(BaseModel):
    """Category with its (recursive) children"""
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: bool
    has_children: bool = False
    children: List["CategoryNode"] = Field(default_factory=list)


# ===== CACHE ADMIN SCHEMAS =====

class InvalidationRequest(BaseModel):
    """Which cache entries to drop"""
    tags: List[str] = Field(default_factory=list)
    keys: List[str] = Field(default_factory=list)
    pattern: Optional[str] = None


class InvalidationResult(BaseModel):
    """Outcome of an invalidation request"""
    tags: List[str]
    tag_keys_removed: int
    keys_removed: int
    pattern_keys_removed: Optional[int] = None
    tagging_supported: bool


CategoryNode.model_rebuild()
