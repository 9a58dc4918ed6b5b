"""Customer data model"""

from decimal import Decimal
from typing import Optional

from pydantic import Field

from bizflow.constants import CustomerCategory, CustomerStatus
from .entity import Entity, Money


class Customer(Entity):
    """Customer record"""

    name: str = Field(..., description="Customer name")
    email: str = Field(..., description="Contact email")
    phone: str = Field(..., description="Contact phone")
    address: Optional[str] = Field(None, description="Postal address")
    document: Optional[str] = Field(None, description="Tax document (CPF/CNPJ)")
    join_date: str = Field(..., description="Date the customer joined (ISO format)")
    total_purchases: Money = Field(Decimal("0"), description="Accumulated purchases")
    last_purchase: Optional[str] = Field(None, description="Date of last purchase")
    status: CustomerStatus = Field(CustomerStatus.ACTIVE, description="active or inactive")
    category: Optional[CustomerCategory] = Field(None, description="regular, vip, enterprise or new")
    notes: Optional[str] = Field(None, description="Free-text notes")
