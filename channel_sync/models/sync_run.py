# channel_sync/models/sync_run.py
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey

from channel_sync.database import Base


class SyncRun(Base):
    """
    Outcome of one credential's step within a sweep.
    All rows written by the same sweep share ``sync_run_id``.
    """
    __tablename__ = "sync_runs"

    id = Column(Integer, primary_key=True)
    sync_run_id = Column(String, nullable=False, index=True)
    seller_id = Column(String, nullable=False, index=True)
    credential_id = Column(Integer, ForeignKey("marketplace_credentials.id"), nullable=True, index=True)
    platform = Column(String, nullable=False)
    trigger = Column(String, nullable=False)
    outcome = Column(String, nullable=False)

    orders_fetched = Column(Integer, nullable=False, default=0)
    orders_new = Column(Integer, nullable=False, default=0)
    orders_updated = Column(Integer, nullable=False, default=0)
    orders_failed = Column(Integer, nullable=False, default=0)
    listings_checked = Column(Integer, nullable=False, default=0)
    listings_failed = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return (f"<SyncRun(run_id={self.sync_run_id}, credential_id={self.credential_id}, "
                f"platform='{self.platform}', outcome='{self.outcome}')>")
