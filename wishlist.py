"""Per-user wishlist of favourite products."""

from typing import Any, Dict

from sqlalchemy import and_, delete, insert, select
from sqlalchemy.exc import IntegrityError

from catalog import images_for
from database import Database, products, wishlist
from errors import NotFoundError
from logging_config import get_logger

logger = get_logger(__name__)


async def list_wishlist(db: Database, user_id: int) -> Dict[str, Any]:
    rows = await db.fetch_all(
        select(
            products.c.id,
            products.c.name,
            products.c.slug,
            products.c.description,
            products.c.price,
            products.c.stock,
        )
        .select_from(wishlist.join(products, products.c.id == wishlist.c.product_id))
        .where(wishlist.c.user_id == user_id)
        .order_by(products.c.name.asc(), products.c.id.asc())
    )
    images = await images_for(db, [r["id"] for r in rows])
    for row in rows:
        row["images"] = images.get(row["id"], [])
    return {"items": rows}


async def add_to_wishlist(db: Database, user_id: int, product_id: int) -> Dict[str, Any]:
    """Idempotent add: a pair that is already present is reported, not an error."""
    if await db.scalar(select(products.c.id).where(products.c.id == product_id)) is None:
        raise NotFoundError("Product does not exist")

    pair = and_(wishlist.c.user_id == user_id, wishlist.c.product_id == product_id)
    if await db.scalar(select(wishlist.c.id).where(pair)) is not None:
        return {"added": False, "exists": True}

    try:
        await db.insert(insert(wishlist).values(user_id=user_id, product_id=product_id))
    except IntegrityError:
        # a concurrent request inserted the same pair first
        return {"added": False, "exists": True}
    logger.info("wishlist_added", user_id=user_id, product_id=product_id)
    return {"added": True}


async def remove_from_wishlist(db: Database, user_id: int, product_id: int) -> Dict[str, Any]:
    removed = await db.execute(
        delete(wishlist).where(wishlist.c.user_id == user_id, wishlist.c.product_id == product_id)
    )
    return {"removed": removed > 0}
