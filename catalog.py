"""
Catalog: categories, products and their images.

Listing queries are assembled from SQLAlchemy expressions only. Free text is
matched with LIKE patterns whose wildcards are escaped, and ORDER BY comes
from the SORTS whitelist.
"""

import re
import unicodedata
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError

from database import MAX_SQL_INT, Database, categories, product_images, products, users, wishlist
from errors import ConflictError, NotFoundError, ValidationError
from logging_config import get_logger

logger = get_logger(__name__)

PUBLIC_PAGE_SIZE = 12
PUBLIC_MAX_PAGE_SIZE = 48
ADMIN_PAGE_SIZE = 20
ADMIN_MAX_PAGE_SIZE = 100

LIKE_ESCAPE = "/"

SORTS = {
    "price-asc": (products.c.price.asc(), products.c.id.asc()),
    "price-desc": (products.c.price.desc(), products.c.id.desc()),
    "name-asc": (products.c.name.asc(), products.c.id.asc()),
    "name-desc": (products.c.name.desc(), products.c.id.desc()),
    "recent": (products.c.created_at.desc(), products.c.id.desc()),
}
DEFAULT_SORT = "recent"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


# -----------------
# Helpers
# -----------------

def slugify(text: Optional[str]) -> str:
    """'Plantas de Interior' -> 'plantas-de-interior'."""
    decomposed = unicodedata.normalize("NFD", text or "")
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("-", ascii_only.lower().strip()).strip("-")


def to_int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    """Lenient integer parsing, clamped to what an INTEGER column can hold."""
    if value is None or isinstance(value, bool):
        return default
    text = str(value).strip()
    try:
        number = int(text)
    except ValueError:
        try:
            number = int(float(text))
        except (TypeError, ValueError, OverflowError):
            return default
    return max(-MAX_SQL_INT, min(MAX_SQL_INT, number))


def clamp_page(page: Any, size: Any, default_size: int, max_size: int):
    size_num = max(1, min(max_size, to_int(size, default_size)))
    # keep the OFFSET within range as well
    page_num = max(1, min(MAX_SQL_INT // size_num, to_int(page, 1)))
    return page_num, size_num, (page_num - 1) * size_num


def like_pattern(text: str) -> str:
    escaped = (
        text.lower()
        .replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )
    return f"%{escaped}%"


def parse_ids(raw: Optional[str]) -> List[int]:
    ids = []
    for part in (raw or "").split(","):
        value = to_int(part, None)
        if value is not None and value not in ids:
            ids.append(value)
    return ids


def _text_filter(q: str):
    pattern = like_pattern(q)
    return or_(
        func.lower(products.c.name).like(pattern, escape=LIKE_ESCAPE),
        func.lower(func.coalesce(products.c.description, "")).like(pattern, escape=LIKE_ESCAPE),
    )


_FROM_PRODUCTS = products.outerjoin(categories, categories.c.id == products.c.category_id)

_PRODUCT_COLUMNS = (
    products.c.id,
    products.c.name,
    products.c.slug,
    products.c.description,
    products.c.price,
    products.c.stock,
    products.c.category_id,
    categories.c.name.label("category_name"),
    categories.c.slug.label("category_slug"),
)


async def images_for(db: Database, product_ids: Iterable[int]) -> Dict[int, List[str]]:
    """Image URLs per product, oldest first (the first one is the display image)."""
    ids = list(product_ids)
    if not ids:
        return {}
    rows = await db.fetch_all(
        select(product_images.c.product_id, product_images.c.url)
        .where(product_images.c.product_id.in_(ids))
        .order_by(product_images.c.product_id, product_images.c.id)
    )
    out: Dict[int, List[str]] = {pid: [] for pid in ids}
    for row in rows:
        out[row["product_id"]].append(row["url"])
    return out


async def _with_images(db: Database, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    images = await images_for(db, [r["id"] for r in rows])
    for row in rows:
        row["images"] = images.get(row["id"], [])
        row["image_url"] = row["images"][0] if row["images"] else None
    return rows


# -----------------
# Categories
# -----------------

async def list_categories(db: Database) -> List[Dict[str, Any]]:
    return await db.fetch_all(
        select(categories.c.id, categories.c.name, categories.c.slug).order_by(categories.c.name, categories.c.id)
    )


async def admin_list_categories(db: Database) -> List[Dict[str, Any]]:
    return await db.fetch_all(
        select(categories.c.id, categories.c.name, categories.c.slug).order_by(categories.c.id.desc())
    )


async def create_category(db: Database, name: str, slug: Optional[str] = None) -> int:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    safe_slug = slugify(slug or name)
    if not safe_slug:
        raise ValidationError("Category slug is empty")
    try:
        category_id = await db.insert(insert(categories).values(name=name, slug=safe_slug))
    except IntegrityError as exc:
        raise ConflictError("Category slug already exists") from exc
    logger.info("category_created", category_id=category_id, slug=safe_slug)
    return category_id


async def update_category(db: Database, category_id: int, name: Optional[str] = None, slug: Optional[str] = None) -> int:
    values: Dict[str, Any] = {}
    if name is not None:
        if not name.strip():
            raise ValidationError("Category name is required")
        values["name"] = name.strip()
    if slug is not None:
        safe_slug = slugify(slug)
        if not safe_slug:
            raise ValidationError("Category slug is empty")
        values["slug"] = safe_slug
    if not values:
        return 0
    try:
        return await db.execute(update(categories).where(categories.c.id == category_id).values(**values))
    except IntegrityError as exc:
        raise ConflictError("Category slug already exists") from exc


async def delete_category(db: Database, category_id: int) -> int:
    count = await db.execute(delete(categories).where(categories.c.id == category_id))
    if count:
        logger.info("category_deleted", category_id=category_id)
    return count


# -----------------
# Products (public)
# -----------------

async def list_products(
    db: Database,
    q: Optional[str] = None,
    category: Optional[str] = None,
    ids: Optional[str] = None,
    min_price: Optional[str] = None,
    max_price: Optional[str] = None,
    sort: Optional[str] = None,
    page: Any = 1,
    page_size: Any = PUBLIC_PAGE_SIZE,
) -> Dict[str, Any]:
    # ?ids=1,2,3 hydrates cards for a known set, without pagination
    if ids is not None and ids.strip():
        id_list = parse_ids(ids)
        if not id_list:
            return {"total": 0, "items": []}
        rows = await db.fetch_all(
            select(*_PRODUCT_COLUMNS)
            .select_from(_FROM_PRODUCTS)
            .where(products.c.id.in_(id_list))
            .order_by(products.c.id.desc())
        )
        return {"total": len(rows), "items": await _with_images(db, rows)}

    conds = []
    q = (q or "").strip()
    if q:
        conds.append(_text_filter(q))
    category = (category or "").strip()
    if category:
        conds.append(categories.c.slug == category)
    low = to_int(min_price, None)
    if low is not None:
        conds.append(products.c.price >= low)
    high = to_int(max_price, None)
    if high is not None:
        conds.append(products.c.price <= high)

    page_num, size_num, offset = clamp_page(page, page_size, PUBLIC_PAGE_SIZE, PUBLIC_MAX_PAGE_SIZE)
    order_by = SORTS.get((sort or "").strip(), SORTS[DEFAULT_SORT])

    total = await db.scalar(select(func.count()).select_from(_FROM_PRODUCTS).where(*conds))
    rows = await db.fetch_all(
        select(*_PRODUCT_COLUMNS)
        .select_from(_FROM_PRODUCTS)
        .where(*conds)
        .order_by(*order_by)
        .limit(size_num)
        .offset(offset)
    )
    return {
        "total": int(total or 0),
        "page": page_num,
        "pageSize": size_num,
        "items": await _with_images(db, rows),
    }


async def get_product(db: Database, product_id: int) -> Dict[str, Any]:
    row = await db.fetch_one(select(*_PRODUCT_COLUMNS).select_from(_FROM_PRODUCTS).where(products.c.id == product_id))
    if row is None:
        raise NotFoundError("Product not found")
    (product,) = await _with_images(db, [row])
    return product


# -----------------
# Products (admin)
# -----------------

async def admin_list_products(
    db: Database, q: Optional[str] = None, category: Optional[str] = None, page: Any = 1, size: Any = ADMIN_PAGE_SIZE
) -> Dict[str, Any]:
    conds = []
    q = (q or "").strip()
    if q:
        conds.append(_text_filter(q))
    category = (category or "").strip()
    if category:
        conds.append(categories.c.slug == category)

    page_num, size_num, offset = clamp_page(page, size, ADMIN_PAGE_SIZE, ADMIN_MAX_PAGE_SIZE)
    total = await db.scalar(select(func.count()).select_from(_FROM_PRODUCTS).where(*conds))
    rows = await db.fetch_all(
        select(*_PRODUCT_COLUMNS)
        .select_from(_FROM_PRODUCTS)
        .where(*conds)
        .order_by(products.c.id.desc())
        .limit(size_num)
        .offset(offset)
    )
    items = await _with_images(db, rows)
    for item in items:
        item.pop("images")
    return {"items": items, "total": int(total or 0), "page": page_num, "size": size_num}


def product_values(fields: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Turn raw form fields into column values.

    Numbers are parsed leniently and clamped at zero. On create (partial is
    False) a name is required and the slug falls back to the name.
    """
    values: Dict[str, Any] = {}
    if "name" in fields or not partial:
        name = str(fields.get("name") or "").strip()
        if not name:
            raise ValidationError("Product name is required")
        values["name"] = name
    if fields.get("slug"):
        values["slug"] = slugify(fields["slug"]) or None
    elif not partial:
        values["slug"] = slugify(values["name"]) or None
    if "description" in fields:
        values["description"] = str(fields["description"] or "").strip() or None
    if "price" in fields:
        values["price"] = max(0, to_int(fields["price"], 0))
    if "stock" in fields:
        values["stock"] = max(0, to_int(fields["stock"], 0))
    if "category_id" in fields:
        category_id = to_int(fields["category_id"], 0)
        values["category_id"] = category_id if category_id > 0 else None
    return values


async def _check_category(conn, category_id: Optional[int]) -> None:
    if category_id is None:
        return
    found = await conn.scalar(select(categories.c.id).where(categories.c.id == category_id))
    if found is None:
        raise ValidationError("Category not found")


async def create_product(db: Database, fields: Dict[str, Any], image_url: Optional[str] = None) -> int:
    values = product_values(fields)
    async with db.transaction() as conn:
        await _check_category(conn, values.get("category_id"))
        result = await conn.execute(insert(products).values(**values))
        product_id = result.inserted_primary_key[0]
        if image_url:
            await conn.execute(insert(product_images).values(product_id=product_id, url=image_url))
    logger.info("product_created", product_id=product_id, with_image=bool(image_url))
    return product_id


async def update_product(
    db: Database, product_id: int, fields: Dict[str, Any], image_url: Optional[str] = None
) -> Optional[List[str]]:
    """Apply the supplied fields and, with a new image, replace the old ones.

    Returns the URLs of the replaced images so the caller can remove the
    files, or None when the product does not exist (nothing was changed).
    """
    values = product_values(fields, partial=True)
    async with db.transaction() as conn:
        exists = await conn.scalar(select(products.c.id).where(products.c.id == product_id))
        if exists is None:
            return None
        if "category_id" in values:
            await _check_category(conn, values["category_id"])
        if values:
            await conn.execute(update(products).where(products.c.id == product_id).values(**values))

        replaced: List[str] = []
        if image_url:
            result = await conn.execute(select(product_images.c.url).where(product_images.c.product_id == product_id))
            replaced = [r.url for r in result]
            await conn.execute(delete(product_images).where(product_images.c.product_id == product_id))
            await conn.execute(insert(product_images).values(product_id=product_id, url=image_url))
    logger.info("product_updated", product_id=product_id, fields=sorted(values), replaced_images=len(replaced))
    return replaced


async def delete_product(db: Database, product_id: int) -> List[str]:
    """Delete a product with its wishlist entries and image rows.

    Returns the image URLs that belonged to it.
    """
    async with db.transaction() as conn:
        result = await conn.execute(select(product_images.c.url).where(product_images.c.product_id == product_id))
        urls = [r.url for r in result]
        await conn.execute(delete(wishlist).where(wishlist.c.product_id == product_id))
        await conn.execute(delete(product_images).where(product_images.c.product_id == product_id))
        deleted = await conn.execute(delete(products).where(products.c.id == product_id))
        if deleted.rowcount:
            logger.info("product_deleted", product_id=product_id, images=len(urls))
    return urls


async def summary(db: Database) -> Dict[str, int]:
    return {
        "users": int(await db.scalar(select(func.count()).select_from(users)) or 0),
        "products": int(await db.scalar(select(func.count()).select_from(products)) or 0),
        "categories": int(await db.scalar(select(func.count()).select_from(categories)) or 0),
    }
