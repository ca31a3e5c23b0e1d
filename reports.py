"""Sales reports for the admin dashboard charts."""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from sqlalchemy import extract, func, select

from database import Database, order_items, orders

TOP_PRODUCTS_LIMIT = 10
UNNAMED_ITEM = "(Unnamed)"

Chart = Dict[str, List[Union[str, int]]]


async def daily_sales(db: Database, month: Optional[int] = None, year: Optional[int] = None) -> Chart:
    """Order totals per day of the month.

    Only days with orders appear, so labels are not necessarily 01..N.
    """
    now = datetime.now(timezone.utc)
    month = month or now.month
    year = year or now.year

    day = extract("day", orders.c.date).label("day")
    total = func.coalesce(func.sum(orders.c.total), 0).label("total")
    rows = await db.fetch_all(
        select(day, total)
        .where(extract("month", orders.c.date) == month, extract("year", orders.c.date) == year)
        .group_by(day)
        .order_by(day)
    )
    return {
        "labels": [f"{int(r['day']):02d}" for r in rows],
        "values": [int(r["total"]) for r in rows],
    }


async def top_products(db: Database, month: Optional[int] = None, year: Optional[int] = None) -> Chart:
    """Best sellers by quantity, grouped by the snapshot name on the order lines.

    Grouping by name keeps renamed or deleted products counted under the
    name they were sold as. Month only applies together with a year.
    """
    name = func.coalesce(order_items.c.name, UNNAMED_ITEM).label("name")
    qty = func.coalesce(func.sum(order_items.c.qty), 0).label("qty")
    stmt = select(name, qty).select_from(order_items.join(orders, orders.c.id == order_items.c.order_id))
    if year:
        stmt = stmt.where(extract("year", orders.c.date) == year)
        if month:
            stmt = stmt.where(extract("month", orders.c.date) == month)
    rows = await db.fetch_all(stmt.group_by(name).order_by(qty.desc(), name.asc()).limit(TOP_PRODUCTS_LIMIT))
    return {
        "labels": [r["name"] for r in rows],
        "values": [int(r["qty"]) for r in rows],
    }
