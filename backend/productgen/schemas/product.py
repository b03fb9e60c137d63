"""Product schemas for API validation."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProductBase(BaseModel):
    """Base product fields."""

    name: str = Field(..., min_length=1, max_length=500)
    sku: str | None = None
    product_type: str = "simple"
    status: str = "publish"
    price: float | None = None
    regular_price: float | None = None
    sale_price: float | None = None
    description: str | None = None
    short_description: str | None = None
    categories: list[str] = []
    tags: list[str] = []
    attributes: dict[str, list[str]] = {}
    meta: dict[str, Any] = {}
    average_rating: float | None = None
    review_count: int = 0


class ProductCreate(ProductBase):
    """Schema for creating a product."""


class ProductUpdate(BaseModel):
    """Schema for updating product fields; unset fields are left alone."""

    name: str | None = None
    sku: str | None = None
    status: str | None = None
    price: float | None = None
    description: str | None = None
    short_description: str | None = None
    categories: list[str] | None = None
    tags: list[str] | None = None
    attributes: dict[str, list[str]] | None = None
    meta: dict[str, Any] | None = None


class ProductResponse(ProductBase):
    """Schema for product response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    generations: dict[str, datetime] = {}
    created_at: datetime
    updated_at: datetime


class ProductListResponse(BaseModel):
    """Paginated list of products."""

    items: list[ProductResponse]
    total: int
    page: int
    per_page: int
    pages: int
