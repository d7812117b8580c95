# channel_sync/models/sync_event.py
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.sql import func

from channel_sync.database import Base


class SyncEvent(Base):
    """
    A structured alert raised by the sync engine (listing disconnected,
    divergence detected, credential expired...). This table is both the audit
    log and the queue the notification component reads from.
    """
    __tablename__ = "sync_events"

    id = Column(Integer, primary_key=True, index=True)

    # Groups all events from a single sweep; null for interactive actions
    sync_run_id = Column(String, index=True, nullable=True)

    # --- Source of the Event ---
    seller_id = Column(String, nullable=False, index=True)
    platform_name = Column(String, nullable=False, index=True)

    # --- Links to Local Data ---
    credential_id = Column(Integer, ForeignKey("marketplace_credentials.id"), nullable=True, index=True)
    listing_id = Column(Integer, ForeignKey("product_listings.id"), nullable=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True, index=True)
    external_id = Column(String, index=True, nullable=True)

    # --- Change Details ---
    change_type = Column(String, nullable=False, index=True)  # an AlertType value
    change_data = Column(JSON, nullable=False)

    # --- Processing Status ---
    status = Column(String, default="pending", nullable=False, index=True)  # pending, notified, ignored

    # --- Timestamps ---
    detected_at = Column(DateTime(timezone=True), server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    notes = Column(Text, nullable=True)

    def __repr__(self):
        return (f"<SyncEvent(id={self.id}, run_id={self.sync_run_id}, platform='{self.platform_name}', "
                f"listing_id={self.listing_id}, change='{self.change_type}', status='{self.status}')>")
