"""Translation of domain errors into HTTP responses."""

import logging

from fastapi import HTTPException, status

from channel_sync.core.exceptions import (
    AuthExpiredError,
    BaseServiceError,
    InvalidListingTransitionError,
    ListingNotFoundError,
    PlatformAPIError,
    ProviderNotRegisteredError,
    RecordNotFoundError,
    SyncInProgressError,
    TransientPlatformError,
)

logger = logging.getLogger(__name__)


def to_http_exception(exc: BaseServiceError) -> HTTPException:
    if isinstance(exc, RecordNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidListingTransitionError, SyncInProgressError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, AuthExpiredError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "requires_reconnect": True},
        )
    if isinstance(exc, ProviderNotRegisteredError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, TransientPlatformError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    if isinstance(exc, (PlatformAPIError, ListingNotFoundError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))

    logger.error(f"Unhandled service error: {exc}", exc_info=exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")
