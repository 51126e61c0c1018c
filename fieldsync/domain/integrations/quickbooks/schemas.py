"""QuickBooks sync schemas - Pydantic models for sync results and status"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class QuickBooksTokens(BaseModel):
    """OAuth tokens returned by the Intuit token endpoint"""

    access_token: str
    refresh_token: str
    realm_id: Optional[str] = None
    expires_at: datetime


class SyncResult(BaseModel):
    """Aggregate outcome of one sync pass"""

    success: bool = False
    created: int = 0
    updated: int = 0
    errors: int = 0
    error_details: list[str] = Field(default_factory=list)

    def record_error(self, message: str) -> None:
        self.errors += 1
        self.error_details.append(message)

    def finish(self) -> "SyncResult":
        self.success = self.errors == 0
        return self

    @classmethod
    def failed(cls, message: str) -> "SyncResult":
        """Result for a pass that could not start (e.g. no connection)"""
        result = cls()
        result.record_error(message)
        return result


class BidirectionalSyncResult(SyncResult):
    """Outbound then inbound customer passes, with combined counts"""

    to_qb: SyncResult
    from_qb: SyncResult

    @classmethod
    def combine(cls, to_qb: SyncResult, from_qb: SyncResult) -> "BidirectionalSyncResult":
        return cls(
            success=to_qb.success and from_qb.success,
            created=to_qb.created + from_qb.created,
            updated=to_qb.updated + from_qb.updated,
            errors=to_qb.errors + from_qb.errors,
            error_details=[*to_qb.error_details, *from_qb.error_details],
            to_qb=to_qb,
            from_qb=from_qb,
        )


class CustomerSyncResults(BaseModel):
    to_qb: SyncResult
    from_qb: SyncResult


class ItemSyncResults(BaseModel):
    from_qb: SyncResult


class SyncSummary(BaseModel):
    total_created: int
    total_updated: int
    total_errors: int
    has_errors: bool


class FullSyncResult(BaseModel):
    """Combined result of a full orchestrated run"""

    customers: CustomerSyncResults
    items: ItemSyncResults

    def _passes(self) -> list[SyncResult]:
        return [self.customers.to_qb, self.customers.from_qb, self.items.from_qb]

    @property
    def success(self) -> bool:
        return all(p.errors == 0 for p in self._passes())

    def summary(self) -> SyncSummary:
        passes = self._passes()
        total_errors = sum(p.errors for p in passes)
        return SyncSummary(
            total_created=sum(p.created for p in passes),
            total_updated=sum(p.updated for p in passes),
            total_errors=total_errors,
            has_errors=total_errors > 0,
        )

    @property
    def error_details(self) -> list[str]:
        return [detail for p in self._passes() for detail in p.error_details]


# Status / overview


class CustomerSyncStats(BaseModel):
    total: int
    mapped: int
    synced: int
    errors: int
    pending: int
    sync_percentage: int


class ItemSyncStats(BaseModel):
    total: int
    active: int


class RecentSyncError(BaseModel):
    entity_type: str
    operation_type: str
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class SyncActivity(BaseModel):
    recent_successful_syncs: int
    recent_error_syncs: int
    last_connection_sync: Optional[datetime] = None
    last_entity_sync: Optional[datetime] = None


class SyncOverview(BaseModel):
    customers: CustomerSyncStats
    items: ItemSyncStats
    activity: SyncActivity
    recent_errors: list[RecentSyncError]


class ConnectionHealth(BaseModel):
    connected: bool
    connection_id: Optional[int] = None
    realm_id: Optional[str] = None
    health_status: Optional[str] = None  # HEALTHY, TOKEN_EXPIRED, TOKEN_EXPIRING, SYNC_STALE
    token_expires_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
