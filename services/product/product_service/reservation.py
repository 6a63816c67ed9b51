"""
Product Service - stock reservation saga

Takes stock for a whole batch of (product, quantity) demands, as called
by the order service before it places an order. The store only offers
single-row atomicity, so the batch is made all-or-nothing in software:

  1. Validate every demand against the current stock (no writes).
     Any rejection rejects the whole batch, listing every failing item.
  2. Apply the decrements one by one in input order, each an atomic,
     guarded single-row UPDATE.
  3. If a decrement fails, increment back every decrement already applied
     (in application order) and re-raise the original error.
  4. On success, publish one aggregate ProductStockUpdated event.

Compensation is best effort. Each step is recorded in a saga log that is
attached to the failure and published as StockReservationCompensated so
a supervisor can find rollbacks that did not complete.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from . import store
from .errors import (
    ConflictError,
    InsufficientStockError,
    InvalidRequestError,
    ReservationFailedError,
)
from .events import (
    PRODUCT_STOCK_UPDATED,
    STOCK_RESERVATION_COMPENSATED,
    ProductStockBatchUpdated,
    StockReservationCompensated,
)
from .publisher import EventPublisher, publish_after_commit
from .schemas import AppliedUpdate, Rejection, StockDemand

logger = logging.getLogger(__name__)


@dataclass
class AcceptedDemand:
    product_id: str
    name: str
    quantity: int
    current_stock: int


class StockReservationSaga:
    def __init__(
        self,
        session: AsyncSession,
        publisher: EventPublisher,
        session_factory=None,
    ):
        self.session = session
        self.publisher = publisher
        # used for compensation when `session` can no longer be rolled back
        self.session_factory = session_factory
        self.saga_log: list[dict] = []

    async def execute(self, demands: Sequence[StockDemand]) -> list[AppliedUpdate]:
        if not demands:
            raise InvalidRequestError("Invalid items data")

        accepted = await self.validate(demands)

        applied: list[AcceptedDemand] = []
        updates: list[AppliedUpdate] = []
        try:
            for demand in accepted:
                updates.append(await self._decrement(demand))
                applied.append(demand)
        except Exception as e:
            logger.error(
                "Stock update failed after %d of %d items, attempting rollback: %s",
                len(applied),
                len(accepted),
                e,
            )
            fully_compensated = await self._compensate(applied)
            await publish_after_commit(
                self.publisher,
                STOCK_RESERVATION_COMPENSATED,
                StockReservationCompensated(
                    error=str(e),
                    fully_compensated=fully_compensated,
                    saga_log=self.saga_log,
                ),
            )
            raise ReservationFailedError(e, self.saga_log) from e

        await publish_after_commit(
            self.publisher,
            PRODUCT_STOCK_UPDATED,
            ProductStockBatchUpdated(
                product_ids=[u.product_id for u in updates],
                new_quantities=[u.new_stock_quantity for u in updates],
            ),
        )
        logger.info("Reserved stock for %d products", len(updates))
        return updates

    async def validate(self, demands: Sequence[StockDemand]) -> list[AcceptedDemand]:
        """
        Read-only admission check, in input order.

        Raises InsufficientStockError listing every rejected demand. A
        product named more than once is checked against what the earlier
        demands of the same batch already claimed.
        """
        rejections: list[Rejection] = []
        accepted: list[AcceptedDemand] = []
        claimed: dict[str, int] = {}

        for demand in demands:
            product = await store.find_by_id(self.session, demand.product_id)
            if product is None:
                rejections.append(
                    Rejection(product_id=demand.product_id, reason="Product not found")
                )
                continue

            available = product.stock_quantity - claimed.get(product.id, 0)
            if available < demand.quantity:
                rejections.append(
                    Rejection(
                        product_id=demand.product_id,
                        name=product.name,
                        requested=demand.quantity,
                        available=available,
                        reason="Insufficient stock",
                    )
                )
                continue

            claimed[product.id] = claimed.get(product.id, 0) + demand.quantity
            accepted.append(
                AcceptedDemand(
                    product_id=product.id,
                    name=product.name,
                    quantity=demand.quantity,
                    current_stock=product.stock_quantity,
                )
            )

        if rejections:
            logger.info(
                "Stock check rejected %d of %d items", len(rejections), len(demands)
            )
            raise InsufficientStockError([r.to_json() for r in rejections])
        return accepted

    async def _decrement(self, demand: AcceptedDemand) -> AppliedUpdate:
        entry = self._log_step("DecrementStock", demand)
        try:
            record = await store.decrement_stock(
                self.session, demand.product_id, demand.quantity
            )
            if record is None:
                raise await self._conflict(demand)
        except Exception as e:
            entry["status"] = "FAILED"
            entry["error"] = str(e)
            raise
        entry["status"] = "COMPLETED"
        return AppliedUpdate(
            product_id=record.id,
            name=record.name,
            new_stock_quantity=record.stock_quantity,
        )

    async def _conflict(self, demand: AcceptedDemand) -> ConflictError:
        current = await store.find_by_id(self.session, demand.product_id)
        if current is None:
            return ConflictError(
                f"Failed to update product {demand.product_id}: product no longer exists"
            )
        return ConflictError(
            f"Failed to update product {demand.product_id}: stock changed concurrently "
            f"(requested {demand.quantity}, validated {demand.current_stock}, "
            f"now {current.stock_quantity})"
        )

    async def _compensate(self, applied: list[AcceptedDemand]) -> bool:
        """Give back every applied decrement. Returns False if any increment failed."""
        fresh_sessions: list[AsyncSession] = []
        session = await self._usable_session(self.session, fresh_sessions)

        fully_compensated = True
        try:
            for demand in applied:
                entry = self._log_step("IncrementStock (COMPENSATING)", demand)
                try:
                    record = await store.increment_stock(
                        session, demand.product_id, demand.quantity
                    )
                    if record is None:
                        raise ConflictError(f"product {demand.product_id} no longer exists")
                except Exception as e:
                    entry["status"] = "FAILED"
                    entry["error"] = str(e)
                    fully_compensated = False
                    logger.error(
                        "Failed to rollback stock for product %s: %s", demand.product_id, e
                    )
                    session = await self._usable_session(session, fresh_sessions)
                    continue
                entry["status"] = "COMPLETED"
                logger.info("Rolled back stock change for product %s", demand.product_id)
        finally:
            for fresh in fresh_sessions:
                await fresh.close()

        return fully_compensated

    async def _usable_session(
        self, session: AsyncSession, fresh_sessions: list[AsyncSession]
    ) -> AsyncSession:
        """
        Roll back the failed transaction of `session` so it can run more
        statements. If that fails too (typically the connection is gone),
        continue on a new session when a factory is available.
        """
        try:
            await session.rollback()
            return session
        except Exception:
            logger.exception("Rollback of the failed stock update did not complete")
        if self.session_factory is None:
            return session
        fresh = self.session_factory()
        fresh_sessions.append(fresh)
        return fresh

    def _log_step(self, action: str, demand: AcceptedDemand) -> dict:
        entry = {
            "step": len(self.saga_log) + 1,
            "action": action,
            "productId": demand.product_id,
            "quantity": demand.quantity,
            "status": "EXECUTING",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        self.saga_log.append(entry)
        return entry
