"""
Product Service - command handlers (write side)

Catalog create / replace / delete and single-product stock adjustment.
Batch reservation lives in reservation.py.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from . import store
from .errors import ConflictError, InvalidRequestError, NotFoundError
from .events import PRODUCT_STOCK_UPDATED, ProductStockUpdated
from .publisher import EventPublisher, publish_after_commit
from .schemas import MAX_STOCK_QUANTITY, ProductRecord

logger = logging.getLogger(__name__)


async def create_product(
    session: AsyncSession,
    *,
    name: str,
    description: str,
    price: float,
    stock_quantity: int,
    categories: list[str],
) -> ProductRecord:
    product = await store.insert_product(
        session,
        name=name,
        description=description,
        price=price,
        stock_quantity=stock_quantity,
        categories=categories,
    )
    logger.info("Product created: %s", product.id)
    return product


async def update_product(
    session: AsyncSession,
    product_id: str,
    *,
    name: str,
    description: str,
    price: float,
    stock_quantity: int,
    categories: list[str],
) -> ProductRecord:
    product = await store.replace_product(
        session,
        product_id,
        name=name,
        description=description,
        price=price,
        stock_quantity=stock_quantity,
        categories=categories,
    )
    if product is None:
        raise NotFoundError("Product not found")
    logger.info("Product updated: %s", product_id)
    return product


async def delete_product(session: AsyncSession, product_id: str) -> None:
    if not await store.delete_product(session, product_id):
        raise NotFoundError("Product not found")
    logger.info("Product deleted: %s", product_id)


async def adjust_stock(
    session: AsyncSession,
    publisher: EventPublisher,
    product_id: str,
    delta: int,
) -> ProductRecord:
    """
    Apply a signed stock change (positive restocks, negative sells).

    The write is an atomic increment/decrement rather than storing the
    computed quantity, so a concurrent change between the read and the
    write is never overwritten.
    """
    product = await store.find_by_id(session, product_id)
    if product is None:
        raise NotFoundError("Product not found")

    new_quantity = product.stock_quantity + delta
    if new_quantity < 0:
        raise InvalidRequestError("Insufficient stock")
    if new_quantity > MAX_STOCK_QUANTITY:
        raise InvalidRequestError("Stock quantity out of range")

    if delta >= 0:
        updated = await store.increment_stock(session, product_id, delta)
    else:
        updated = await store.decrement_stock(session, product_id, -delta)

    if updated is None:
        raise ConflictError(
            f"Stock of product {product_id} changed or the product was removed "
            "while updating"
        )

    await publish_after_commit(
        publisher,
        PRODUCT_STOCK_UPDATED,
        ProductStockUpdated(product_id=product_id, new_quantity=updated.stock_quantity),
    )
    logger.info("Stock updated for product %s: %d", product_id, updated.stock_quantity)
    return updated
