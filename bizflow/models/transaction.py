"""Financial transaction data model"""

from typing import List, Optional

from pydantic import Field

from bizflow.constants import TransactionStatus, TransactionType
from .entity import Entity, Money


class Transaction(Entity):
    """Income, expense or refund entry"""

    date: str = Field(..., description="Transaction date (ISO format)")
    description: str = Field(..., description="Free-text description")
    amount: Money = Field(..., description="Transaction amount")
    type: TransactionType = Field(..., description="income, expense or refund")
    category: str = Field(..., description="Bookkeeping category")
    payment_method: Optional[str] = Field(None, description="Cash, card, transfer...")
    customer_id: Optional[str] = Field(None, description="Referenced customer id")
    customer_name: Optional[str] = Field(
        None, alias="customer", description="Customer name snapshot taken at write time"
    )
    product_ids: List[str] = Field(default_factory=list, description="Referenced product ids")
    product_names: List[str] = Field(
        default_factory=list, alias="products", description="Product name snapshots taken at write time"
    )
    status: TransactionStatus = Field(TransactionStatus.COMPLETED, description="Settlement status")
    notes: Optional[str] = Field(None, description="Free-text notes")
    is_refundable: Optional[bool] = Field(None, description="Whether a refund may be issued")
    related_transaction_id: Optional[str] = Field(
        None, description="Original transaction when type is refund"
    )
