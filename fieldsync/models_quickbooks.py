"""
QuickBooks Integration Models
Database models for the QuickBooks connection, entity mappings, sync audit log
and the mirrored product/service catalog
"""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from .database import Base

# Mapping sync statuses
SYNC_STATUS_PENDING = "PENDING"
SYNC_STATUS_SYNCED = "SYNCED"
SYNC_STATUS_ERROR = "ERROR"

# Sync log vocabulary
OPERATION_CREATE = "CREATE"
OPERATION_UPDATE = "UPDATE"
OPERATION_SYNC = "SYNC"
DIRECTION_TO_QB = "TO_QB"
DIRECTION_FROM_QB = "FROM_QB"
LOG_STATUS_SUCCESS = "SUCCESS"
LOG_STATUS_ERROR = "ERROR"

# Entity types
LOCAL_ENTITY_CUSTOMER = "CUSTOMER"
QB_ENTITY_CUSTOMER = "Customer"


class QuickBooksConnection(Base):
    """Store QuickBooks OAuth tokens for a connected company (realm)"""
    __tablename__ = "quickbooks_connections"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(String(255), nullable=False, unique=True)
    realm_id = Column(String(255), nullable=False)  # QuickBooks company ID

    # OAuth tokens (encrypted)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    token_expires_at = Column(DateTime, nullable=False)

    base_url = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    last_sync_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class QuickBooksMapping(Base):
    """Reconciliation ledger between one local entity and one QuickBooks entity"""
    __tablename__ = "quickbooks_mappings"
    __table_args__ = (
        UniqueConstraint("local_entity_type", "local_entity_id", name="uq_qb_mapping_local_entity"),
        Index("ix_qb_mapping_remote", "quickbooks_id", "quickbooks_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    local_entity_type = Column(String(50), nullable=False)  # CUSTOMER
    local_entity_id = Column(Integer, nullable=False)

    # Null until the first successful push for rows that failed before creation
    quickbooks_id = Column(String(255), nullable=True)
    quickbooks_type = Column(String(50), nullable=False)  # Customer

    sync_version = Column(String(50), nullable=True)  # QuickBooks SyncToken
    sync_status = Column(String(20), nullable=False, default=SYNC_STATUS_PENDING)
    sync_errors = Column(JSON, nullable=False, default=list)  # [{"timestamp": ..., "error": ...}]
    last_sync_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class QuickBooksSyncLog(Base):
    """Append-only audit trail of QuickBooks sync attempts"""
    __tablename__ = "quickbooks_sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    operation_type = Column(String(20), nullable=False)  # CREATE, UPDATE, SYNC
    entity_type = Column(String(50), nullable=False)  # CUSTOMER, ITEM
    local_entity_id = Column(Integer, nullable=True)
    quickbooks_id = Column(String(255), nullable=True)

    direction = Column(String(20), nullable=False)  # TO_QB, FROM_QB
    status = Column(String(20), nullable=False)  # SUCCESS, ERROR

    request_data = Column(JSON, nullable=True)
    response_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    completed_at = Column(DateTime, nullable=True)


class QuickBooksItem(Base):
    """Local read cache of the QuickBooks product/service catalog"""
    __tablename__ = "quickbooks_items"

    id = Column(Integer, primary_key=True, index=True)
    quickbooks_id = Column(String(255), nullable=False, unique=True)

    name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    type = Column(String(50), nullable=True)  # Service, Inventory, NonInventory, ...
    unit_price = Column(Float, nullable=True)
    qty_on_hand = Column(Float, nullable=True)
    taxable = Column(Boolean, default=False)
    active = Column(Boolean, default=True)
    sku = Column(String(100), nullable=True)

    sync_version = Column(String(50), nullable=True)
    last_sync_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
