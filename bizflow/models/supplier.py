"""Supplier data model"""

from typing import List, Optional

from pydantic import Field

from .entity import Entity


class Supplier(Entity):
    """Supplier record"""

    name: str = Field(..., description="Supplier name")
    contact_name: Optional[str] = Field(None, description="Contact person")
    email: Optional[str] = Field(None, description="Contact email")
    phone: str = Field(..., description="Contact phone")
    address: Optional[str] = Field(None, description="Postal address")
    products: List[str] = Field(default_factory=list, description="Associated product references")
    document: Optional[str] = Field(None, description="Tax document (CNPJ)")
    category: Optional[str] = Field(None, description="Supplier category")
