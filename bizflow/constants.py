"""Constants and enums for the data core"""

from enum import Enum


class EntityKind(str, Enum):
    """Entity collections held locally and in the hosted backend"""
    TRANSACTIONS = "transactions"
    CUSTOMERS = "customers"
    PRODUCTS = "products"
    SUPPLIERS = "suppliers"


class EntityGroup(str, Enum):
    """Spreadsheet endpoint partitioning"""
    TRANSACTIONS = "transactions"
    CUSTOMERS = "customers"
    OPERATIONS = "operations"  # products + suppliers


class TransportName(str, Enum):
    """Spreadsheet transport strategies"""
    DIRECT = "direct"
    PROXY = "proxy"
    NO_CORS = "no-cors"
    NO_CACHE = "no-cache"
    JSONP = "jsonp"
    IFRAME = "iframe"
    XHR = "xhr"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELED = "canceled"


class CustomerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class CustomerCategory(str, Enum):
    REGULAR = "regular"
    VIP = "vip"
    ENTERPRISE = "enterprise"
    NEW = "new"


class SyncStatus(str, Enum):
    """Outcome recorded in the sync log"""
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


# Entity kinds carried by each spreadsheet endpoint
GROUP_KINDS = {
    EntityGroup.TRANSACTIONS: (EntityKind.TRANSACTIONS,),
    EntityGroup.CUSTOMERS: (EntityKind.CUSTOMERS,),
    EntityGroup.OPERATIONS: (EntityKind.PRODUCTS, EntityKind.SUPPLIERS),
}

# Order used by full refresh and full push
KIND_ORDER = (
    EntityKind.TRANSACTIONS,
    EntityKind.CUSTOMERS,
    EntityKind.PRODUCTS,
    EntityKind.SUPPLIERS,
)

DEFAULT_MINIMUM_STOCK = 10

# Sync log
SYNC_LOG_CAPACITY = 100

# Hanging transports (jsonp, iframe) give up after this
TRANSPORT_TIMEOUT_SECONDS = 30.0

DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0

DEFAULT_PROXY_URL = "https://cors-anywhere.herokuapp.com/"

# Local cache keys
CACHE_KEY_PREFIX = "bizflow-"
PREFERENCE_KEY_PREFIX = "bizflow-pref-"
