"""
Product Service - data models

ProductRecord is the persisted catalog item. StockDemand, Rejection and
AppliedUpdate are the ephemeral values flowing through the stock
reservation workflow. JSON uses camelCase to match the rest of the mesh.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# upper bound of the INTEGER stock column
MAX_STOCK_QUANTITY = 2**31 - 1


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ProductRecord(CamelModel):
    id: str
    name: str
    description: str
    price: float = Field(ge=0)
    stock_quantity: int = Field(ge=0)
    categories: list[str] = []
    created_at: datetime


class StockDemand(CamelModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(gt=0, le=MAX_STOCK_QUANTITY)


class Rejection(CamelModel):
    """One failed admission check. name/requested/available only for stock shortfalls."""

    product_id: str
    reason: str
    name: str | None = None
    requested: int | None = None
    available: int | None = None


class AppliedUpdate(CamelModel):
    product_id: str
    name: str
    new_stock_quantity: int
