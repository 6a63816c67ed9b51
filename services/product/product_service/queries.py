"""
Product Service - catalog queries (read side)

Listing, search and the admin dashboard reads. Nothing here mutates.
"""

import math

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .store import CATEGORY_SEP, category_key, products, to_record

SEARCH_PAGE_SIZE = 8
TOP_PRODUCTS_LIMIT = 5
LOW_STOCK_THRESHOLD = 100
LOW_STOCK_LIMIT = 10


def _filters(
    name_term: str | None,
    category: str | None,
    min_price: float | None,
    max_price: float | None,
    *,
    exact_category: bool,
) -> list:
    conditions = []
    if name_term:
        conditions.append(products.c.name.icontains(name_term, autoescape=True))
    if category:
        key = category_key(category)
        if exact_category:
            key = f"{CATEGORY_SEP}{key}{CATEGORY_SEP}"
        # a key without the separator cannot span two labels
        conditions.append(products.c.category_keys.contains(key, autoescape=True))
    if min_price is not None:
        conditions.append(products.c.price >= min_price)
    if max_price is not None:
        conditions.append(products.c.price <= max_price)
    return conditions


async def _page(session: AsyncSession, conditions: list, page: int, page_size: int) -> dict:
    total = await session.scalar(
        select(func.count()).select_from(products).where(*conditions)
    )
    result = await session.execute(
        select(products)
        .where(*conditions)
        .order_by(products.c.created_at.desc(), products.c.id)
        .limit(page_size)
        .offset(page_size * (page - 1))
    )
    return {
        "products": [to_record(row).to_json() for row in result.fetchall()],
        "page": page,
        "pages": math.ceil(total / page_size),
        "total": total,
    }


async def list_products(
    session: AsyncSession,
    *,
    keyword: str | None = None,
    category: str | None = None,
    min_price: float | None = None,
    max_price: float | None = None,
    page: int = 1,
    page_size: int = 10,
) -> dict:
    """Newest first. category is a case-insensitive substring match."""
    conditions = _filters(keyword, category, min_price, max_price, exact_category=False)
    return await _page(session, conditions, page, page_size)


async def search_products(
    session: AsyncSession,
    *,
    term: str | None = None,
    category: str | None = None,
    min_price: float | None = None,
    max_price: float | None = None,
    page: int = 1,
) -> dict:
    """Like list_products, but category must equal one label (ignoring case)."""
    conditions = _filters(term, category, min_price, max_price, exact_category=True)
    return await _page(session, conditions, page, SEARCH_PAGE_SIZE)


async def top_products(session: AsyncSession) -> list[dict]:
    result = await session.execute(
        select(products).order_by(products.c.created_at.desc()).limit(TOP_PRODUCTS_LIMIT)
    )
    return [to_record(row).to_json() for row in result.fetchall()]


async def product_stats(session: AsyncSession) -> dict:
    total = await session.scalar(select(func.count()).select_from(products))
    result = await session.execute(
        select(products.c.id, products.c.name, products.c.stock_quantity, products.c.price)
        .where(products.c.stock_quantity < LOW_STOCK_THRESHOLD)
        .order_by(products.c.stock_quantity.asc())
        .limit(LOW_STOCK_LIMIT)
    )
    return {
        "totalProducts": total,
        "lowStockProducts": [
            {
                "id": row.id,
                "name": row.name,
                "stockQuantity": row.stock_quantity,
                "price": row.price,
            }
            for row in result.fetchall()
        ],
    }
