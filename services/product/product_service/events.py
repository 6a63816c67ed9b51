"""
Product Service - event definitions

Events published to the rest of the mesh. Single adjustments and batch
reservations share the ProductStockUpdated topic but carry different
payload shapes.
"""

from .schemas import CamelModel

PRODUCT_STOCK_UPDATED = "ProductStockUpdated"
STOCK_RESERVATION_COMPENSATED = "StockReservationCompensated"


class ProductStockUpdated(CamelModel):
    """Stock of one product was adjusted."""
    product_id: str
    new_quantity: int


class ProductStockBatchUpdated(CamelModel):
    """A reservation batch was applied. Lists are index-aligned."""
    product_ids: list[str]
    new_quantities: list[int]


class StockReservationCompensated(CamelModel):
    """A batch failed mid-way and its applied decrements were rolled back (best effort)."""
    error: str
    fully_compensated: bool
    saga_log: list[dict]
