"""
Order creation with stock reservation, plus the admin order views.

create_order is the only place that touches product stock. Everything it
does runs in one transaction: each catalog-linked line locks its product
row, checks and decrements stock and snapshots name/price into the order
line. Any failing line rolls back the whole order, so stock can never go
negative and no partial order is ever visible.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import extract, func, insert, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection

from catalog import LIKE_ESCAPE, like_pattern
from database import MAX_SQL_INT, Database, order_items, orders, products
from errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from logging_config import get_logger
from schemas import CreateOrder, OrderItemIn

logger = get_logger(__name__)

_ORDER_REF = re.compile(r"^#?\s*(\d+)$")


@dataclass
class OrderLine:
    product_id: Optional[int]
    name: Optional[str]
    qty: int
    unit_price: int

    @property
    def subtotal(self) -> int:
        return self.qty * self.unit_price


def normalize_items(items: List[OrderItemIn]) -> List[OrderLine]:
    """Check the request-level preconditions before any database work."""
    if not items:
        raise ValidationError("items is required")
    lines = []
    for position, item in enumerate(items, start=1):
        if item.product_id is None and not item.name:
            raise ValidationError(f"Item {position} has no product and needs a 'name'")
        lines.append(
            OrderLine(
                product_id=item.product_id,
                name=item.name,
                qty=max(1, item.qty),
                unit_price=max(0, item.unit_price),
            )
        )
    return lines


async def reserve(conn: AsyncConnection, line: OrderLine) -> OrderLine:
    """Lock the product row, check stock, decrement it and snapshot the line.

    FOR UPDATE makes a concurrent reservation of the same product wait until
    this transaction commits or rolls back before it reads the stock.
    """
    result = await conn.execute(
        select(products.c.id, products.c.name, products.c.price, products.c.stock)
        .where(products.c.id == line.product_id)
        .with_for_update()
    )
    product = result.first()
    if product is None:
        raise NotFoundError(f"Product {line.product_id} does not exist")
    if product.stock < line.qty:
        raise InsufficientStockError(product.name, product.stock, line.qty)

    await conn.execute(
        update(products).where(products.c.id == product.id).values(stock=products.c.stock - line.qty)
    )
    return OrderLine(
        product_id=product.id,
        name=line.name or product.name,
        qty=line.qty,
        unit_price=line.unit_price or max(0, product.price or 0),
    )


async def create_order(db: Database, payload: CreateOrder) -> Dict[str, Any]:
    lines = normalize_items(payload.items)
    order_date = payload.date or datetime.now(timezone.utc)
    customer = payload.customer
    customer_name = (customer.full_name or "").strip() or None
    customer_phone = (customer.phone or "").strip() or None

    try:
        order_id, total = await _persist_order(db, lines, order_date, customer_name, customer_phone)
    except DBAPIError as exc:
        logger.error("order_transaction_failed", error=str(exc.orig or exc))
        raise ConflictError("Could not create the order") from exc

    logger.info("order_created", order_id=order_id, items=len(lines), total=total)
    return {"id": order_id, "total": total}


async def _persist_order(db, lines, order_date, customer_name, customer_phone):
    async with db.transaction() as conn:
        result = await conn.execute(
            insert(orders).values(date=order_date, customer_name=customer_name, customer_phone=customer_phone, total=0)
        )
        order_id = result.inserted_primary_key[0]

        total = 0
        for line in lines:
            if line.product_id is not None:
                line = await reserve(conn, line)
            total += line.subtotal
            if total > MAX_SQL_INT:
                raise ValidationError("Order total is too large")
            await conn.execute(
                insert(order_items).values(
                    order_id=order_id,
                    product_id=line.product_id,
                    name=line.name,
                    qty=line.qty,
                    unit_price=line.unit_price,
                )
            )

        await conn.execute(update(orders).where(orders.c.id == order_id).values(total=total))
    return order_id, total


# ---------------
# Admin views
# ---------------

async def list_orders(
    db: Database, month: Optional[int] = None, year: Optional[int] = None, q: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Orders of one month, optionally narrowed by "#id"/"id" or customer name."""
    now = datetime.now(timezone.utc)
    month = month or now.month
    year = year or now.year

    items_count = func.coalesce(func.sum(order_items.c.qty), 0).label("items_count")
    stmt = (
        select(orders.c.id, orders.c.date, orders.c.customer_name, items_count, orders.c.total)
        .select_from(orders.outerjoin(order_items, order_items.c.order_id == orders.c.id))
        .where(extract("month", orders.c.date) == month, extract("year", orders.c.date) == year)
        .group_by(orders.c.id, orders.c.date, orders.c.customer_name, orders.c.total)
        .order_by(orders.c.date.asc(), orders.c.id.asc())
    )

    term = (q or "").strip()
    if term:
        ref = _ORDER_REF.match(term)
        if ref:
            stmt = stmt.where(orders.c.id == int(ref.group(1)))
        else:
            stmt = stmt.where(
                func.lower(func.coalesce(orders.c.customer_name, "")).like(like_pattern(term), escape=LIKE_ESCAPE)
            )

    rows = await db.fetch_all(stmt)
    for row in rows:
        row["items_count"] = int(row["items_count"] or 0)
    return rows


async def get_order(db: Database, order_id: int) -> Dict[str, Any]:
    order = await db.fetch_one(select(orders).where(orders.c.id == order_id))
    if order is None:
        raise NotFoundError("Order not found")
    order["items"] = await db.fetch_all(
        select(
            order_items.c.id,
            order_items.c.product_id,
            order_items.c.name,
            order_items.c.qty,
            order_items.c.unit_price,
        )
        .where(order_items.c.order_id == order_id)
        .order_by(order_items.c.id)
    )
    return order
