"""Custom exceptions for the BizFlow data core"""


class BizFlowError(Exception):
    """Base exception for BizFlow errors"""
    pass


class ConfigurationError(BizFlowError):
    """Configuration loading errors"""
    pass


class LocalCacheError(BizFlowError):
    """Local cache write errors (reads never raise)"""
    pass


class RemoteStoreError(BizFlowError):
    """Hosted backend call failed (network, HTTP status, bad payload)"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteAuthorizationError(RemoteStoreError):
    """Hosted backend rejected the session credentials (401/403)"""
    pass


class TransportError(BizFlowError):
    """A spreadsheet transport strategy could not complete the request"""
    pass


class SheetSyncError(BizFlowError):
    """A spreadsheet export/import/sync operation failed"""

    def __init__(self, message: str, action: str = None):
        super().__init__(message)
        self.action = action


class RetryExhaustedError(BizFlowError):
    """All retry attempts failed"""
    pass


class SessionRequiredError(BizFlowError):
    """Operation needs an authenticated remote session"""
    pass
