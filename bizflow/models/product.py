"""Product data model"""

from typing import Optional

from pydantic import Field

from bizflow.constants import DEFAULT_MINIMUM_STOCK
from .entity import Entity, Money


class Product(Entity):
    """Stocked product"""

    name: str = Field(..., description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    price: Money = Field(..., description="Sale price")
    cost: Optional[Money] = Field(None, description="Unit cost")
    stock: int = Field(0, description="Units in stock")
    category: str = Field(..., description="Product category")
    minimum_stock: Optional[int] = Field(None, description="Low-stock threshold")
    supplier: Optional[str] = Field(None, description="Supplier reference")
    barcode: Optional[str] = Field(None, description="Barcode / SKU")
    created_at: Optional[str] = Field(None, description="Registration timestamp")

    @property
    def effective_minimum_stock(self) -> int:
        # Unset and zero thresholds both fall back to the default
        return self.minimum_stock or DEFAULT_MINIMUM_STOCK

    @property
    def is_low_stock(self) -> bool:
        return self.stock < self.effective_minimum_stock
