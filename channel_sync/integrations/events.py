"""
Purpose: Defines the structured alerts the sync engine emits.

SyncAlertEvent (Pydantic Model): a user-actionable change detected during a sync
(listing disconnected, divergence detected/resolved, credential expired...). The
engine never formats user-facing text; a notification component renders these.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from channel_sync.core.enums import AlertType
from channel_sync.core.utils import utcnow
from channel_sync.models.sync_event import SyncEvent


class SyncAlertEvent(BaseModel):
    alert_type: AlertType
    seller_id: str
    platform: str
    credential_id: Optional[int] = None
    listing_id: Optional[int] = None
    product_id: Optional[int] = None
    external_id: Optional[str] = None
    sync_run_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    detected_at: datetime = Field(default_factory=utcnow)

    def to_record(self) -> SyncEvent:
        """Row persisted in sync_events alongside the state change that raised the alert."""
        return SyncEvent(
            sync_run_id=self.sync_run_id,
            seller_id=self.seller_id,
            platform_name=self.platform,
            credential_id=self.credential_id,
            listing_id=self.listing_id,
            product_id=self.product_id,
            external_id=self.external_id,
            change_type=self.alert_type.value,
            change_data=self.model_dump(mode="json", include={"details"})["details"],
            status="pending",
            detected_at=self.detected_at,
        )
