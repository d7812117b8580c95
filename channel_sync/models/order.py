from sqlalchemy import Column, Integer, String, Text, Numeric, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.sql import func

from channel_sync.database import Base


class Order(Base):
    """
    Canonical order imported from a marketplace.

    Provider-owned columns are refreshed on every upsert; ``notes`` and ``tags``
    belong to the seller and are never written by the sync engine.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(String, nullable=False, index=True)
    credential_id = Column(Integer, ForeignKey("marketplace_credentials.id"), nullable=True, index=True)

    # Identity
    platform = Column(String, nullable=False)
    external_order_id = Column(String, nullable=False)

    # Status
    status = Column(String, nullable=False, index=True)
    raw_status = Column(String, nullable=True)  # platform-native value, kept for audit

    # Customer (some platforms withhold PII)
    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    shipping_address = Column(JSON, nullable=True)

    # Financial
    total_value = Column(Numeric(12, 2), nullable=True)
    currency = Column(String, nullable=True)

    items = Column(JSON, nullable=False, default=list)
    ordered_at = Column(DateTime(timezone=True), nullable=False, index=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)

    # Local annotations
    notes = Column(Text, nullable=True)
    tags = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("platform", "external_order_id", name="uq_order_platform_external_id"),
    )

    def __repr__(self):
        return f"<Order(id={self.id}, platform='{self.platform}', external_id='{self.external_order_id}', status='{self.status}')>"
