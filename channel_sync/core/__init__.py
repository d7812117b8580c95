"""
Core module exports.
"""
from .enums import (
    PlatformName,
    OrderStatus,
    ListingSyncStatus,
    ListingEvent,
    RunOutcome,
    SyncTrigger,
    AlertType,
)

from .exceptions import (
    BaseServiceError,
    PlatformServiceError,
    AuthExpiredError,
    ListingNotFoundError,
    TransientPlatformError,
    PlatformAPIError,
    MappingDefectError,
    SyncError,
    SyncInProgressError,
    InvalidListingTransitionError,
    RecordNotFoundError,
)
