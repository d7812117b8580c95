# channel_sync/routes/sync.py
"""
Sync endpoints used by the seller UI: trigger a sweep, act on a single listing,
and read listing / credential status.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from channel_sync.core.exceptions import BaseServiceError
from channel_sync.dependencies import get_orchestrator
from channel_sync.routes.errors import to_http_exception
from channel_sync.schemas.credentials import CredentialStatus
from channel_sync.schemas.listings import ListingSnapshot
from channel_sync.schemas.sync import RunReport, RunSyncRequest
from channel_sync.services.sync_services import SyncOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.post("/run", response_model=RunReport)
async def run_sync(
    request: RunSyncRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Run a sweep for one seller. With wait=false a busy seller answers 409 instead of queueing."""
    platform = request.platform.value if request.platform else None
    try:
        return await orchestrator.run_sync(request.seller_id, platform, wait=request.wait)
    except BaseServiceError as e:
        raise to_http_exception(e)


@router.post("/listings/{listing_id}/republish", response_model=ListingSnapshot)
async def republish_listing(listing_id: int, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    try:
        return await orchestrator.republish(listing_id)
    except BaseServiceError as e:
        raise to_http_exception(e)


@router.post("/listings/{listing_id}/resync", response_model=ListingSnapshot)
async def resync_listing(listing_id: int, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Push central stock to the marketplace and re-check the listing."""
    try:
        return await orchestrator.resync_listing(listing_id)
    except BaseServiceError as e:
        raise to_http_exception(e)


@router.get("/products/{product_id}/listings", response_model=List[ListingSnapshot])
async def product_listings(product_id: int, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    try:
        return await orchestrator.listings_for_product(product_id)
    except BaseServiceError as e:
        raise to_http_exception(e)


@router.get("/sellers/{seller_id}/credentials", response_model=List[CredentialStatus])
async def seller_credentials(seller_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    try:
        return await orchestrator.credentials_for_seller(seller_id)
    except BaseServiceError as e:
        raise to_http_exception(e)
