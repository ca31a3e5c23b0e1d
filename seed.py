"""Demo catalog for a fresh installation (idempotent)."""

from typing import Dict

from sqlalchemy import func, insert, select

from catalog import slugify
from database import Database, categories, products
from logging_config import get_logger

logger = get_logger(__name__)


def _seed_payload():
    category_rows = [
        {"name": "Plantas de Interior", "slug": "plantas-de-interior"},
        {"name": "Suculentas", "slug": "suculentas"},
        {"name": "Macetas", "slug": "macetas"},
        {"name": "Sustratos", "slug": "sustratos"},
    ]

    product_rows = [
        {
            "name": "Monstera Deliciosa",
            "description": "Large split leaves, happy in bright indirect light.",
            "price": 65000,
            "stock": 12,
            "category": "plantas-de-interior",
        },
        {
            "name": "Pothos Dorado",
            "description": "Trailing vine that tolerates low light.",
            "price": 28000,
            "stock": 25,
            "category": "plantas-de-interior",
        },
        {
            "name": "Echeveria Elegans",
            "description": "Compact rosette succulent, water sparingly.",
            "price": 12000,
            "stock": 40,
            "category": "suculentas",
        },
        {
            "name": "Haworthia Zebra",
            "description": "Striped succulent for sunny windowsills.",
            "price": 15000,
            "stock": 30,
            "category": "suculentas",
        },
        {
            "name": "Maceta de Barro 15cm",
            "description": "Terracotta pot with drainage hole.",
            "price": 9000,
            "stock": 60,
            "category": "macetas",
        },
        {
            "name": "Sustrato Universal 5kg",
            "description": "Peat-based mix for indoor plants.",
            "price": 18000,
            "stock": 50,
            "category": "sustratos",
        },
    ]
    return category_rows, product_rows


async def ensure_seeded(db: Database) -> Dict[str, int]:
    """Seed categories and products, each only when its table is empty."""
    created = {"categories": 0, "products": 0}
    category_rows, product_rows = _seed_payload()

    async with db.transaction() as conn:
        if await conn.scalar(select(func.count()).select_from(categories)) == 0:
            await conn.execute(insert(categories), category_rows)
            created["categories"] = len(category_rows)

        if await conn.scalar(select(func.count()).select_from(products)) == 0:
            result = await conn.execute(select(categories.c.id, categories.c.slug))
            by_slug = {r.slug: r.id for r in result}
            rows = []
            for item in product_rows:
                rows.append(
                    {
                        "name": item["name"],
                        "slug": slugify(item["name"]),
                        "description": item["description"],
                        "price": item["price"],
                        "stock": item["stock"],
                        "category_id": by_slug.get(item["category"]),
                    }
                )
            await conn.execute(insert(products), rows)
            created["products"] = len(rows)

    if any(created.values()):
        logger.info("demo_data_seeded", **created)
    return created
