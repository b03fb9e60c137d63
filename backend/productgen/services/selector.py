"""Declarative product selector.

A queue stores its product query as a JSON object. It is validated into a
``ProductSelector`` and translated into a SQL query; it is never evaluated
as code.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from productgen.exceptions import InvalidSelector
from productgen.models import Product

logger = logging.getLogger(__name__)

ORDER_COLUMNS = {
    "id": Product.id,
    "name": Product.name,
    "created_at": Product.created_at,
    "price": Product.price,
}


class ProductSelector(BaseModel):
    """Filter over the catalog. All given conditions must match."""

    model_config = ConfigDict(extra="forbid")

    ids: list[int] | None = None
    exclude_ids: list[int] = []
    status: list[str] = ["publish"]  # ["any"] disables the status filter
    product_type: str | None = None
    sku: str | None = None
    search: str | None = None  # case-insensitive substring of the name
    categories: list[str] = []  # any of
    exclude_categories: list[str] = []
    tags: list[str] = []  # any of
    min_price: float | None = None
    max_price: float | None = None
    missing: list[Literal["description", "short_description"]] = []
    order_by: Literal["id", "name", "created_at", "price"] = "id"
    order: Literal["asc", "desc"] = "asc"
    limit: int | None = Field(default=None, ge=1)

    @field_validator("status", "categories", "exclude_categories", "tags", "missing", mode="before")
    @classmethod
    def single_to_list(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v


@dataclass(frozen=True)
class ProductRef:
    """Lightweight product handle used for planning."""
    id: int
    name: str


def parse_selector(raw: Any) -> ProductSelector:
    """
    Validate a stored selector.

    Accepts a mapping or its JSON text. Raises InvalidSelector otherwise.
    """
    if isinstance(raw, ProductSelector):
        return raw
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise InvalidSelector("Query arguments are empty.")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidSelector(f"Invalid query arguments: {e.msg}") from e
    if not isinstance(raw, dict):
        raise InvalidSelector("Invalid query arguments. Must be an object of filters.")
    try:
        return ProductSelector.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'query'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidSelector(f"Invalid query arguments: {problems}") from e


def _matches_any(values: list[str] | None, wanted: set[str]) -> bool:
    return any(v.lower() in wanted for v in values or [])


async def resolve_products(db: AsyncSession, selector: ProductSelector) -> list[ProductRef]:
    """Evaluate a selector to an ordered list of products."""
    query = select(Product.id, Product.name, Product.categories, Product.tags)

    if selector.ids is not None:
        query = query.where(Product.id.in_(selector.ids))
    if selector.exclude_ids:
        query = query.where(Product.id.not_in(selector.exclude_ids))
    if selector.status and "any" not in selector.status:
        query = query.where(Product.status.in_(selector.status))
    if selector.product_type:
        query = query.where(Product.product_type == selector.product_type)
    if selector.sku:
        query = query.where(Product.sku == selector.sku)
    if selector.search:
        query = query.where(func.lower(Product.name).contains(selector.search.lower()))
    if selector.min_price is not None:
        query = query.where(Product.price >= selector.min_price)
    if selector.max_price is not None:
        query = query.where(Product.price <= selector.max_price)
    for field in selector.missing:
        column = getattr(Product, field)
        query = query.where((column.is_(None)) | (column == ""))

    column = ORDER_COLUMNS[selector.order_by]
    ordering = column.desc() if selector.order == "desc" else column.asc()
    # id as tiebreaker keeps the order stable between preview and start
    query = query.order_by(ordering, Product.id.asc())

    rows = (await db.execute(query)).all()

    # JSON list columns are filtered here rather than in SQL
    categories = {c.lower() for c in selector.categories}
    excluded = {c.lower() for c in selector.exclude_categories}
    tags = {t.lower() for t in selector.tags}

    products = []
    for row in rows:
        if categories and not _matches_any(row.categories, categories):
            continue
        if excluded and _matches_any(row.categories, excluded):
            continue
        if tags and not _matches_any(row.tags, tags):
            continue
        products.append(ProductRef(id=row.id, name=row.name))
        if selector.limit and len(products) >= selector.limit:
            break

    logger.debug(f"Selector matched {len(products)} products")
    return products
