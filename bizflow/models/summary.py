"""Dashboard summary data model"""

from decimal import Decimal

from pydantic import BaseModel, Field

from .entity import Money


class DashboardSummary(BaseModel):
    """Derived view over the in-memory collections, never persisted"""

    total_income: Money = Field(Decimal("0"), description="Sum of income amounts")
    total_expenses: Money = Field(Decimal("0"), description="Sum of expense amounts")
    balance: Money = Field(Decimal("0"), description="Income minus expenses")
    customers_count: int = Field(0, description="Number of customers")
    products_count: int = Field(0, description="Number of products")
    low_stock_count: int = Field(0, description="Products below their minimum stock")

    model_config = {
        "json_schema_extra": {
            "example": {
                "total_income": 100.0,
                "total_expenses": 40.0,
                "balance": 60.0,
                "customers_count": 2,
                "products_count": 2,
                "low_stock_count": 1
            }
        }
    }
