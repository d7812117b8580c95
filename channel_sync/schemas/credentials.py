from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from channel_sync.core.enums import PlatformName
from channel_sync.schemas.base import BaseSchema


class CredentialCreate(BaseModel):
    """Handed over by the OAuth/handshake collaborator once authorization succeeds."""
    seller_id: str
    platform: PlatformName
    external_account_id: str
    account_name: Optional[str] = None
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    platform_metadata: Dict[str, Any] = Field(default_factory=dict)


class CredentialStatus(BaseSchema):
    """Read model for the integrations screen. Never carries secrets."""
    id: int
    seller_id: str
    platform: str
    external_account_id: str
    account_name: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_refreshed_at: Optional[datetime] = None
    revoked: bool
    revoked_reason: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None
