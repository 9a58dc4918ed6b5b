"""Utility modules"""

from .config_loader import load_config, save_config
from .errors import (
    BizFlowError,
    ConfigurationError,
    LocalCacheError,
    RemoteStoreError,
    RemoteAuthorizationError,
    TransportError,
    SheetSyncError,
    RetryExhaustedError,
    SessionRequiredError
)

__all__ = [
    "load_config",
    "save_config",
    "BizFlowError",
    "ConfigurationError",
    "LocalCacheError",
    "RemoteStoreError",
    "RemoteAuthorizationError",
    "TransportError",
    "SheetSyncError",
    "RetryExhaustedError",
    "SessionRequiredError"
]
