"""
Errors Module - Exception taxonomy for the engine.
==================================================

- BackendError: transient network/backend failure (retryable)
- StorageError: cache write failure (reads never raise)
- RefreshCancelledError: a cancel token was observed mid-refresh
- EmbeddingDimensionError: vectors of different length were compared
"""

from typing import Optional


class CampusfyError(Exception):
    """Base class for all engine errors."""


class UnknownTenantError(CampusfyError):
    """Raised when a tenant id has no configuration."""

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Unknown tenant: {tenant_id}")


class BackendError(CampusfyError):
    """Transient failure talking to the course backend."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class BackendTimeoutError(BackendError):
    """The backend did not answer within the configured timeout."""


class StorageError(CampusfyError):
    """The local cache could not be written."""


class RefreshCancelledError(CampusfyError):
    """A refresh observed its cancel token and stopped."""

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(reason)


class EmbeddingDimensionError(CampusfyError, ValueError):
    """Two vectors with different dimensions were compared."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f"Vector dimension mismatch: {left} != {right}")
