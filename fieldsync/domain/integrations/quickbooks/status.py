"""QuickBooks sync status - overview counters and connection health"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ....models import Customer
from ....models_quickbooks import (
    LOCAL_ENTITY_CUSTOMER,
    LOG_STATUS_ERROR,
    LOG_STATUS_SUCCESS,
    SYNC_STATUS_ERROR,
    SYNC_STATUS_PENDING,
    SYNC_STATUS_SYNCED,
    QuickBooksConnection,
    QuickBooksItem,
    QuickBooksMapping,
    QuickBooksSyncLog,
)
from .schemas import (
    ConnectionHealth,
    CustomerSyncStats,
    ItemSyncStats,
    RecentSyncError,
    SyncActivity,
    SyncOverview,
)

ACTIVITY_WINDOW = timedelta(hours=24)
TOKEN_EXPIRING_WINDOW = timedelta(hours=24)
SYNC_STALE_AFTER = timedelta(hours=24)


def _count_customer_mappings(db: Session, status: Optional[str] = None) -> int:
    query = db.query(func.count(QuickBooksMapping.id)).filter(
        QuickBooksMapping.local_entity_type == LOCAL_ENTITY_CUSTOMER
    )
    if status:
        query = query.filter(QuickBooksMapping.sync_status == status)
    return query.scalar() or 0


def _count_logs_since(db: Session, status: str, since: datetime) -> int:
    return (
        db.query(func.count(QuickBooksSyncLog.id))
        .filter(QuickBooksSyncLog.status == status, QuickBooksSyncLog.completed_at > since)
        .scalar()
        or 0
    )


def get_sync_overview(db: Session, now: Optional[datetime] = None) -> SyncOverview:
    """Customer/item sync counters and the last 24h of sync activity"""
    now = now or datetime.utcnow()
    since = now - ACTIVITY_WINDOW

    total_customers = db.query(func.count(Customer.id)).scalar() or 0
    synced = _count_customer_mappings(db, SYNC_STATUS_SYNCED)

    recent_errors = (
        db.query(QuickBooksSyncLog)
        .filter(QuickBooksSyncLog.status == LOG_STATUS_ERROR, QuickBooksSyncLog.completed_at > since)
        .order_by(QuickBooksSyncLog.completed_at.desc(), QuickBooksSyncLog.id.desc())
        .limit(5)
        .all()
    )

    return SyncOverview(
        customers=CustomerSyncStats(
            total=total_customers,
            mapped=_count_customer_mappings(db),
            synced=synced,
            errors=_count_customer_mappings(db, SYNC_STATUS_ERROR),
            pending=_count_customer_mappings(db, SYNC_STATUS_PENDING),
            sync_percentage=round(synced / total_customers * 100) if total_customers else 0,
        ),
        items=ItemSyncStats(
            total=db.query(func.count(QuickBooksItem.id)).scalar() or 0,
            active=(
                db.query(func.count(QuickBooksItem.id))
                .filter(QuickBooksItem.active.is_(True))
                .scalar()
                or 0
            ),
        ),
        activity=SyncActivity(
            recent_successful_syncs=_count_logs_since(db, LOG_STATUS_SUCCESS, since),
            recent_error_syncs=_count_logs_since(db, LOG_STATUS_ERROR, since),
            last_connection_sync=db.query(func.max(QuickBooksConnection.last_sync_at)).scalar(),
            last_entity_sync=db.query(func.max(QuickBooksMapping.last_sync_at)).scalar(),
        ),
        recent_errors=[
            RecentSyncError(
                entity_type=log.entity_type,
                operation_type=log.operation_type,
                error_message=log.error_message,
                created_at=log.completed_at,
            )
            for log in recent_errors
        ],
    )


def connection_health_status(connection: QuickBooksConnection, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    if connection.token_expires_at <= now:
        return "TOKEN_EXPIRED"
    if connection.token_expires_at <= now + TOKEN_EXPIRING_WINDOW:
        return "TOKEN_EXPIRING"
    if connection.last_sync_at and connection.last_sync_at < now - SYNC_STALE_AFTER:
        return "SYNC_STALE"
    return "HEALTHY"


def get_connection_health(
    connection: Optional[QuickBooksConnection], now: Optional[datetime] = None
) -> ConnectionHealth:
    if connection is None:
        return ConnectionHealth(connected=False)

    return ConnectionHealth(
        connected=True,
        connection_id=connection.id,
        realm_id=connection.realm_id,
        health_status=connection_health_status(connection, now),
        token_expires_at=connection.token_expires_at,
        last_sync_at=connection.last_sync_at,
    )
