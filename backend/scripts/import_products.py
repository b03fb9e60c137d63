"""Import a WooCommerce REST product export (JSON list) into the catalog.

Products are matched on SKU; unmatched products are created.

Usage:
    python backend/scripts/import_products.py products.json
"""
import asyncio
import json
import sys
from pathlib import Path

from sqlalchemy import select

from productgen.database import get_db_session, init_db
from productgen.models import Product


def to_float(value):
    try:
        return float(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def convert(item: dict) -> dict:
    """Map a WooCommerce product object onto Product columns."""
    return {
        "name": item.get("name", "").strip(),
        "sku": item.get("sku") or None,
        "product_type": item.get("type", "simple"),
        "status": item.get("status", "publish"),
        "price": to_float(item.get("price")),
        "regular_price": to_float(item.get("regular_price")),
        "sale_price": to_float(item.get("sale_price")),
        "description": item.get("description") or None,
        "short_description": item.get("short_description") or None,
        "categories": [c["name"] for c in item.get("categories", []) if c.get("name")],
        "tags": [t["name"] for t in item.get("tags", []) if t.get("name")],
        "attributes": {
            a["name"]: list(a.get("options", []))
            for a in item.get("attributes", [])
            if a.get("name")
        },
        "meta": {
            m["key"]: m["value"]
            for m in item.get("meta_data", [])
            if m.get("key") and not str(m["key"]).startswith("_")
        },
        "average_rating": to_float(item.get("average_rating")),
        "review_count": int(item.get("rating_count") or 0),
    }


async def main(path: Path):
    with open(path, "r", encoding="utf-8") as f:
        items = json.load(f)

    await init_db()
    created = 0
    updated = 0
    async with get_db_session() as db:
        for item in items:
            values = convert(item)
            if not values["name"]:
                continue
            product = None
            if values["sku"]:
                result = await db.execute(select(Product).where(Product.sku == values["sku"]))
                product = result.scalar_one_or_none()
            if product:
                for key, value in values.items():
                    setattr(product, key, value)
                updated += 1
            else:
                db.add(Product(**values))
                created += 1
        await db.commit()

    print(f"Created: {created}, Updated: {updated}")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(1)
    asyncio.run(main(Path(sys.argv[1])))
