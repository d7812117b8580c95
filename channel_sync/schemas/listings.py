from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from channel_sync.core.enums import ListingSyncStatus
from channel_sync.schemas.base import BaseSchema


class ListingObservation(BaseModel):
    """Canonical view of a remote listing, as produced by the mapper."""
    platform_product_id: str
    remote_stock: Optional[int] = None
    remote_status: Optional[str] = None
    platform_url: Optional[str] = None


class ListingDraft(BaseModel):
    """What a provider needs to (re)create a listing from the central product."""
    sku: str
    title: str
    description: Optional[str] = None
    price: Optional[Decimal] = None
    stock_quantity: int = 0
    attributes: Dict[str, Any] = Field(default_factory=dict)


class ListingSnapshot(BaseSchema):
    """Read model consumed by product-detail screens."""
    id: int
    product_id: int
    platform: str
    integration_id: int
    platform_product_id: Optional[str] = None
    platform_url: Optional[str] = None
    sync_status: ListingSyncStatus
    sync_error: Optional[str] = None
    remote_stock: Optional[int] = None
    remote_status: Optional[str] = None
    last_checked_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    republished_at: Optional[datetime] = None
