"""
Relational storage for the Plant Shop.

Tables are declared with SQLAlchemy Core and every query in the project is
a SQLAlchemy expression, so values always travel as bound parameters.

Database is the single gateway to the store. One instance (one engine, one
connection pool) lives for the whole application lifetime; it is created in
the FastAPI lifespan and handed to the services as an argument.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    event,
    select,
)
from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from logging_config import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Largest value an amount or quantity column can hold (signed 64-bit)
MAX_SQL_INT = 2**63 - 1


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


metadata = MetaData()

# -----------------
# Core Tables
# -----------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("email", String(254), nullable=False, unique=True),
    Column("username", String(120), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("role", String(20), nullable=False, default="USER"),
    Column("is_admin", Boolean, nullable=False, default=False),
    Column("full_name", String(120)),
    Column("phone", String(120)),
    Column("address_line1", String(120)),
    Column("address_line2", String(120)),
    Column("city", String(120)),
    Column("state", String(120)),
    Column("postal_code", String(120)),
    Column("country", String(120)),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
)

categories = Table(
    "categories",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(120), nullable=False),
    Column("slug", String(160), nullable=False, unique=True),
)

# price is an opaque integer amount: stored and returned exactly as supplied
products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(200), nullable=False),
    Column("slug", String(220)),
    Column("description", Text),
    Column("price", BigInteger, nullable=False, default=0),
    Column("stock", BigInteger, nullable=False, default=0),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="SET NULL")),
    Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow),
    CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
)

# First image by id is the display image
product_images = Table(
    "product_images",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("product_id", Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("url", String(500), nullable=False),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("date", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("customer_name", String(200)),
    Column("customer_phone", String(60)),
    Column("total", BigInteger, nullable=False, default=0),
)

# name and unit_price are snapshots taken when the order was created
order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_id", Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("product_id", Integer, ForeignKey("products.id", ondelete="SET NULL")),
    Column("name", String(200)),
    Column("qty", BigInteger, nullable=False),
    Column("unit_price", BigInteger, nullable=False, default=0),
    CheckConstraint("qty >= 1", name="ck_order_items_qty_positive"),
)

wishlist = Table(
    "wishlist",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("product_id", Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
    UniqueConstraint("user_id", "product_id", name="uq_wishlist_user_product"),
)


# -----------------
# Helpers
# -----------------

def row_to_dict(row) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    return dict(row._mapping)


def _configure_sqlite(engine) -> None:
    # SQLite has no row locks: open every transaction with BEGIN IMMEDIATE so
    # writers queue on the database lock instead of deadlocking on upgrade.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        # the built-in lower() only folds ASCII letters
        dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Async gateway over one SQLAlchemy engine."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        kwargs: Dict[str, Any] = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"timeout": 30}
        self.engine = create_async_engine(url, echo=echo, **kwargs)
        if self.engine.dialect.name == "sqlite":
            _configure_sqlite(self.engine)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    async def connect(self) -> None:
        """Create missing tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info("database_ready", dialect=self.dialect)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def ping(self) -> bool:
        return await self.scalar(select(1)) == 1

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """All-or-nothing unit of work.

        Commits when the block exits normally. Any exception, cancellation
        included, rolls back every statement issued on the connection.
        """
        async with self.engine.begin() as conn:
            yield conn

    async def fetch_all(self, stmt) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.execute(stmt)
            return [dict(r._mapping) for r in result]

    async def fetch_one(self, stmt) -> Optional[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.execute(stmt)
            return row_to_dict(result.first())

    async def scalar(self, stmt) -> Any:
        async with self.engine.connect() as conn:
            return await conn.scalar(stmt)

    async def execute(self, stmt) -> int:
        """Run one write statement in its own transaction; returns rowcount."""
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            return result.rowcount

    async def insert(self, stmt) -> int:
        """Run one INSERT in its own transaction; returns the new primary key."""
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            return result.inserted_primary_key[0]
