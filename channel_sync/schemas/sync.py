"""
Run reports returned by the orchestrator to the UI and the scheduler.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from channel_sync.core.enums import PlatformName, RunOutcome, SyncTrigger


class CredentialRunResult(BaseModel):
    credential_id: int
    platform: str
    account: Optional[str] = None
    outcome: RunOutcome
    orders_fetched: int = 0
    orders_new: int = 0
    orders_updated: int = 0
    orders_failed: int = 0
    listings_checked: int = 0
    listings_failed: int = 0
    requires_reconnect: bool = False
    errors: List[str] = Field(default_factory=list)

    @property
    def orders_synced(self) -> int:
        return self.orders_new + self.orders_updated


class PlatformRunSummary(BaseModel):
    synced: int = 0
    new: int = 0
    failed: int = 0
    credentials: int = 0
    auth_expired: int = 0
    errors: int = 0


class RunReport(BaseModel):
    sync_run_id: str
    seller_id: str
    trigger: SyncTrigger
    started_at: datetime
    finished_at: Optional[datetime] = None
    synced: int = 0
    new: int = 0
    failed: int = 0
    per_platform: Dict[str, PlatformRunSummary] = Field(default_factory=dict)
    credentials: List[CredentialRunResult] = Field(default_factory=list)

    @classmethod
    def from_results(cls, *, sync_run_id, seller_id, trigger, started_at, finished_at, results):
        report = cls(
            sync_run_id=sync_run_id,
            seller_id=seller_id,
            trigger=trigger,
            started_at=started_at,
            finished_at=finished_at,
            credentials=list(results),
        )
        for result in results:
            summary = report.per_platform.setdefault(result.platform, PlatformRunSummary())
            summary.credentials += 1
            summary.synced += result.orders_synced
            summary.new += result.orders_new
            summary.failed += result.orders_failed
            if result.outcome == RunOutcome.AUTH_EXPIRED:
                summary.auth_expired += 1
            elif result.outcome == RunOutcome.FAILED:
                summary.errors += 1
            report.synced += result.orders_synced
            report.new += result.orders_new
            report.failed += result.orders_failed
        return report

    def result_for(self, credential_id: int) -> Optional[CredentialRunResult]:
        return next((r for r in self.credentials if r.credential_id == credential_id), None)


class RunSyncRequest(BaseModel):
    seller_id: str
    platform: Optional[PlatformName] = None
    wait: bool = True
