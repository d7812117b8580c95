# channel_sync/models/credential.py
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from channel_sync.core.utils import ensure_utc
from channel_sync.database import Base


class Credential(Base):
    """
    Stored access material for one seller + platform + external account.

    Secrets are Fernet-encrypted (see channel_sync.core.security). Rows are never
    hard-deleted: disconnecting or a remote rejection marks the row revoked so
    orders keep their credential reference.
    """
    __tablename__ = "marketplace_credentials"

    id = Column(Integer, primary_key=True)

    # --- Identity ---
    seller_id = Column(String, nullable=False, index=True)
    platform = Column(String, nullable=False, index=True)
    external_account_id = Column(String, nullable=False)
    account_name = Column(String, nullable=True)

    # --- Secret material ---
    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)  # Shopify tokens never expire
    last_refreshed_at = Column(DateTime(timezone=True), nullable=True)

    # --- Lifecycle ---
    revoked = Column(Boolean, nullable=False, default=False, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    revoked_reason = Column(String, nullable=True)

    # shop_domain, marketplace_id, shop_id, location_id...
    platform_metadata = Column(JSON, nullable=False, default=dict)

    # --- Sync bookkeeping ---
    order_watermark = Column(DateTime(timezone=True), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_status = Column(String, nullable=True)
    last_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    listings = relationship("ProductListing", back_populates="credential")

    __table_args__ = (
        # At most one active credential per (seller, platform, account)
        Index(
            "uq_active_credential",
            "seller_id", "platform", "external_account_id",
            unique=True,
            postgresql_where=text("NOT revoked"),
            sqlite_where=text("revoked = 0"),
        ),
    )

    def is_expired(self, now: datetime) -> bool:
        expires_at: Optional[datetime] = ensure_utc(self.expires_at)
        return expires_at is not None and expires_at <= now

    def __repr__(self):
        return (f"<Credential(id={self.id}, seller='{self.seller_id}', platform='{self.platform}', "
                f"account='{self.external_account_id}', revoked={self.revoked})>")
