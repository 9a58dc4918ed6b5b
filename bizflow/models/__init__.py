"""Data models for the data core"""

from bizflow.constants import EntityKind
from .entity import Entity, Money, new_entity_id
from .transaction import Transaction
from .customer import Customer
from .product import Product
from .supplier import Supplier
from .summary import DashboardSummary
from .sync_log import SyncLogEntry
from .session import Session

ENTITY_MODELS = {
    EntityKind.TRANSACTIONS: Transaction,
    EntityKind.CUSTOMERS: Customer,
    EntityKind.PRODUCTS: Product,
    EntityKind.SUPPLIERS: Supplier,
}

__all__ = [
    "Entity",
    "Money",
    "new_entity_id",
    "Transaction",
    "Customer",
    "Product",
    "Supplier",
    "DashboardSummary",
    "SyncLogEntry",
    "Session",
    "ENTITY_MODELS",
]
