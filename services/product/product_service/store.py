"""
Product Service - product record store

The products table is the only shared mutable resource of the service.
Every change to stock_quantity goes through increment_stock /
decrement_stock, each a single UPDATE ... RETURNING statement, so no
read-then-write sequence can lose an update on one row. There is no
multi-row transaction here: every mutation commits on its own.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Row
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from .schemas import ProductRecord

CATEGORY_SEP = "\x1f"

metadata = MetaData()

products = Table(
    "products",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("description", Text, nullable=False),
    Column("price", Numeric(12, 2, asdecimal=False), nullable=False),
    Column("stock_quantity", Integer, nullable=False, default=0),
    Column("categories", JSON, nullable=False, default=list),
    # lowercased labels, each wrapped in CATEGORY_SEP, for per-label matching
    Column("category_keys", Text, nullable=False, default=CATEGORY_SEP),
    Column("created_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
    CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
)


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


def category_key(label: str) -> str:
    return label.lower().replace(CATEGORY_SEP, " ")


def category_keys(categories: list[str]) -> str:
    return CATEGORY_SEP + "".join(category_key(c) + CATEGORY_SEP for c in categories)


def to_record(row: Row) -> ProductRecord:
    return ProductRecord.model_validate(dict(row._mapping))


async def find_by_id(session: AsyncSession, product_id: str) -> ProductRecord | None:
    result = await session.execute(select(products).where(products.c.id == product_id))
    row = result.first()
    return to_record(row) if row else None


async def decrement_stock(
    session: AsyncSession, product_id: str, amount: int
) -> ProductRecord | None:
    """
    Atomically take `amount` units from one product.

    The row only matches while it still holds at least `amount` units, so
    stock never goes negative even when a concurrent writer drained it
    after the caller last read it. Returns None when the product is gone
    or the guard did not hold; callers tell the two apart with find_by_id.
    """
    result = await session.execute(
        update(products)
        .where(products.c.id == product_id, products.c.stock_quantity >= amount)
        .values(stock_quantity=products.c.stock_quantity - amount)
        .returning(*products.c)
    )
    row = result.first()
    await session.commit()
    return to_record(row) if row else None


async def increment_stock(
    session: AsyncSession, product_id: str, amount: int
) -> ProductRecord | None:
    """Atomically add `amount` units. Used for restocking and for compensation."""
    result = await session.execute(
        update(products)
        .where(products.c.id == product_id)
        .values(stock_quantity=products.c.stock_quantity + amount)
        .returning(*products.c)
    )
    row = result.first()
    await session.commit()
    return to_record(row) if row else None


async def insert_product(
    session: AsyncSession,
    *,
    name: str,
    description: str,
    price: float,
    stock_quantity: int,
    categories: list[str],
) -> ProductRecord:
    result = await session.execute(
        insert(products)
        .values(
            id=str(uuid4()),
            name=name,
            description=description,
            price=price,
            stock_quantity=stock_quantity,
            categories=categories,
            category_keys=category_keys(categories),
            created_at=datetime.now(timezone.utc),
        )
        .returning(*products.c)
    )
    row = result.one()
    await session.commit()
    return to_record(row)


async def replace_product(
    session: AsyncSession,
    product_id: str,
    *,
    name: str,
    description: str,
    price: float,
    stock_quantity: int,
    categories: list[str],
) -> ProductRecord | None:
    # id and created_at are immutable
    result = await session.execute(
        update(products)
        .where(products.c.id == product_id)
        .values(
            name=name,
            description=description,
            price=price,
            stock_quantity=stock_quantity,
            categories=categories,
            category_keys=category_keys(categories),
        )
        .returning(*products.c)
    )
    row = result.first()
    await session.commit()
    return to_record(row) if row else None


async def delete_product(session: AsyncSession, product_id: str) -> bool:
    result = await session.execute(delete(products).where(products.c.id == product_id))
    await session.commit()
    return result.rowcount > 0
