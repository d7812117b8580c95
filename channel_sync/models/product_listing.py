# channel_sync/models/product_listing.py
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from channel_sync.core.enums import ListingSyncStatus
from channel_sync.database import Base


class ProductListing(Base):
    """
    A product published to one specific marketplace account.

    ``sync_status`` is owned by the reconciliation state machine
    (channel_sync.services.reconciliation_service); nothing else writes it.
    """
    __tablename__ = "product_listings"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    platform = Column(String, nullable=False)
    integration_id = Column(Integer, ForeignKey("marketplace_credentials.id"), nullable=False, index=True)

    # External references; null until the first successful publish
    platform_product_id = Column(String, nullable=True, index=True)
    platform_variant_id = Column(String, nullable=True)
    platform_url = Column(String, nullable=True)

    sync_status = Column(String, nullable=False, default=ListingSyncStatus.NOT_PUBLISHED.value, index=True)
    sync_error = Column(Text, nullable=True)
    remote_stock = Column(Integer, nullable=True)
    remote_status = Column(String, nullable=True)

    # category_id, product_type, listing_type_id... used when (re)publishing
    platform_metadata = Column(JSON, nullable=False, default=dict)

    last_checked_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)  # last confirmed observation
    republished_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    product = relationship("Product", back_populates="listings")
    credential = relationship("Credential", back_populates="listings")

    __table_args__ = (
        UniqueConstraint("product_id", "platform", "integration_id", name="uq_listing_per_account"),
    )

    def __repr__(self):
        return (f"<ProductListing(id={self.id}, product_id={self.product_id}, platform='{self.platform}', "
                f"external_id='{self.platform_product_id}', status='{self.sync_status}')>")
