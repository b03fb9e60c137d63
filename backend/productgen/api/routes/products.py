"""Product catalog endpoints."""

from fastapi import APIRouter, HTTPException, Query
from sqlalchemy import func, select

from productgen.api.deps import DbSession, Pagination
from productgen.models import Product
from productgen.schemas.product import (
    ProductCreate,
    ProductListResponse,
    ProductResponse,
    ProductUpdate,
)
from productgen.services.generation_records import get_generations

router = APIRouter()


def product_to_response(product: Product, generations: dict | None = None) -> ProductResponse:
    response = ProductResponse.model_validate(product)
    response.generations = generations or {}
    return response


async def get_product_or_404(db, product_id: int) -> Product:
    product = await db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.get("")
async def list_products(
    db: DbSession,
    pagination: Pagination,
    search: str | None = Query(None, description="Substring of the product name"),
    status: str | None = Query(None),
    category: str | None = Query(None),
) -> ProductListResponse:
    """List products with optional filters."""
    query = select(Product)
    if search:
        query = query.where(func.lower(Product.name).contains(search.lower()))
    if status:
        query = query.where(Product.status == status)

    result = await db.execute(query.order_by(Product.id))
    products = list(result.scalars().all())
    if category:
        wanted = category.lower()
        products = [p for p in products if wanted in [c.lower() for c in p.categories or []]]

    total = len(products)
    page_items = products[pagination.offset:pagination.offset + pagination.per_page]
    generations = await get_generations(db, [p.id for p in page_items])

    return ProductListResponse(
        items=[product_to_response(p, generations.get(p.id)) for p in page_items],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
        pages=(total + pagination.per_page - 1) // pagination.per_page if total > 0 else 0,
    )


@router.post("", status_code=201)
async def create_product(db: DbSession, data: ProductCreate) -> ProductResponse:
    product = Product(**data.model_dump())
    db.add(product)
    await db.commit()
    await db.refresh(product)
    return product_to_response(product)


@router.get("/{product_id}")
async def get_product(db: DbSession, product_id: int) -> ProductResponse:
    product = await get_product_or_404(db, product_id)
    generations = await get_generations(db, [product.id])
    return product_to_response(product, generations.get(product.id))


@router.patch("/{product_id}")
async def update_product(db: DbSession, product_id: int, data: ProductUpdate) -> ProductResponse:
    product = await get_product_or_404(db, product_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(product, field, value)
    await db.commit()
    await db.refresh(product)
    generations = await get_generations(db, [product.id])
    return product_to_response(product, generations.get(product.id))
