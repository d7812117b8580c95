from typing import Optional


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass


class PlatformServiceError(BaseServiceError):
    """Base exception for marketplace provider errors."""

    def __init__(self, message: str, platform: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.platform = platform
        self.status_code = status_code


class AuthExpiredError(PlatformServiceError):
    """Raised when a credential is expired, revoked or rejected by the platform."""
    pass


class ListingNotFoundError(PlatformServiceError):
    """Raised when a platform listing is confirmed gone (404/deleted)."""
    pass


class TransientPlatformError(PlatformServiceError):
    """Raised for network errors, timeouts, rate limits and 5xx responses."""
    pass


class PlatformAPIError(PlatformServiceError):
    """Raised when the platform rejects a request for a non-retryable reason."""
    pass


class ProviderNotRegisteredError(PlatformServiceError):
    """Raised when no provider is registered for a platform."""
    pass


class MappingDefectError(BaseServiceError):
    """Raised when a provider payload cannot be mapped to the canonical model."""

    def __init__(self, message: str, record_ref: Optional[str] = None):
        super().__init__(message)
        self.record_ref = record_ref


class SyncError(BaseServiceError):
    """Base exception for orchestration errors."""
    pass


class SyncInProgressError(SyncError):
    """Raised when a sweep for the seller is already running."""
    pass


class InvalidListingTransitionError(SyncError):
    """Raised when an action is not allowed from the listing's current status."""
    pass


class RecordNotFoundError(BaseServiceError):
    """Raised when a local record (listing, product, credential) does not exist."""
    pass


class CredentialEncryptionError(BaseServiceError):
    """Raised when credential secrets cannot be encrypted or decrypted."""
    pass


class RepositoryError(BaseServiceError):
    """Exception raised for storage errors."""
    pass
