"""QuickBooks repository - Database operations for the sync ledger"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ....models import Customer
from ....models_quickbooks import (
    LOCAL_ENTITY_CUSTOMER,
    SYNC_STATUS_ERROR,
    SYNC_STATUS_PENDING,
    SYNC_STATUS_SYNCED,
    QuickBooksConnection,
    QuickBooksItem,
    QuickBooksMapping,
    QuickBooksSyncLog,
)
from .exceptions import StaleMappingError


def _dialect_insert(db: Session):
    """INSERT construct supporting ON CONFLICT for the bound dialect"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Item upsert not supported on {dialect}")
    return insert


class QuickBooksRepository:
    """Repository for QuickBooks mapping, sync log, item and connection rows"""

    # Customers

    @staticmethod
    def get_outbound_customer_candidates(
        db: Session, limit: int
    ) -> list[tuple[Customer, Optional[QuickBooksMapping]]]:
        """Customers never pushed, or whose mapping is PENDING / ERROR, oldest first"""
        return (
            db.query(Customer, QuickBooksMapping)
            .outerjoin(
                QuickBooksMapping,
                and_(
                    QuickBooksMapping.local_entity_id == Customer.id,
                    QuickBooksMapping.local_entity_type == LOCAL_ENTITY_CUSTOMER,
                ),
            )
            .filter(
                or_(
                    QuickBooksMapping.id.is_(None),
                    QuickBooksMapping.sync_status.in_([SYNC_STATUS_PENDING, SYNC_STATUS_ERROR]),
                )
            )
            .order_by(Customer.created_at, Customer.id)
            .limit(limit)
            .all()
        )

    @staticmethod
    def create_customer(db: Session, **customer_data) -> Customer:
        """Insert a customer and flush so its id is available"""
        customer = Customer(**customer_data)
        db.add(customer)
        db.flush()
        return customer

    @staticmethod
    def update_customer(db: Session, customer_id: int, **updates) -> Customer:
        """Overwrite mirrored fields on a customer, None values included"""
        customer = db.query(Customer).filter(Customer.id == customer_id).first()
        if not customer:
            raise LookupError(f"Local customer {customer_id} not found")
        for key, value in updates.items():
            setattr(customer, key, value)
        customer.updated_at = datetime.utcnow()
        return customer

    # Mappings

    @staticmethod
    def get_mapping(
        db: Session, local_entity_type: str, local_entity_id: int
    ) -> Optional[QuickBooksMapping]:
        return (
            db.query(QuickBooksMapping)
            .filter(
                QuickBooksMapping.local_entity_type == local_entity_type,
                QuickBooksMapping.local_entity_id == local_entity_id,
            )
            .first()
        )

    @staticmethod
    def get_mapping_by_remote(
        db: Session, quickbooks_id: str, quickbooks_type: str
    ) -> Optional[QuickBooksMapping]:
        return (
            db.query(QuickBooksMapping)
            .filter(
                QuickBooksMapping.quickbooks_id == quickbooks_id,
                QuickBooksMapping.quickbooks_type == quickbooks_type,
            )
            .first()
        )

    @staticmethod
    def save_synced_mapping(
        db: Session,
        mapping: Optional[QuickBooksMapping],
        local_entity_type: str,
        local_entity_id: int,
        quickbooks_id: str,
        quickbooks_type: str,
        sync_version: Optional[str],
        expected_version: Optional[str] = None,
    ) -> None:
        """
        Record a successful sync.

        A new mapping is inserted (the unique key rejects a concurrent duplicate).
        An existing one is updated only if its sync_version still equals
        expected_version, the value read before calling QuickBooks.
        """
        now = datetime.utcnow()

        if mapping is None:
            db.add(
                QuickBooksMapping(
                    local_entity_type=local_entity_type,
                    local_entity_id=local_entity_id,
                    quickbooks_id=quickbooks_id,
                    quickbooks_type=quickbooks_type,
                    sync_version=sync_version,
                    sync_status=SYNC_STATUS_SYNCED,
                    sync_errors=[],
                    last_sync_at=now,
                )
            )
            return

        version_matches = (
            QuickBooksMapping.sync_version.is_(None)
            if expected_version is None
            else QuickBooksMapping.sync_version == expected_version
        )
        updated = (
            db.query(QuickBooksMapping)
            .filter(QuickBooksMapping.id == mapping.id, version_matches)
            .update(
                {
                    QuickBooksMapping.quickbooks_id: quickbooks_id,
                    QuickBooksMapping.sync_version: sync_version,
                    QuickBooksMapping.sync_status: SYNC_STATUS_SYNCED,
                    QuickBooksMapping.sync_errors: [],
                    QuickBooksMapping.last_sync_at: now,
                    QuickBooksMapping.updated_at: now,
                },
                synchronize_session="fetch",
            )
        )
        if updated == 0:
            raise StaleMappingError(local_entity_type, local_entity_id, expected_version)

    @staticmethod
    def mark_mapping_error(
        db: Session,
        local_entity_type: str,
        local_entity_id: int,
        quickbooks_type: str,
        error_message: str,
        max_errors: int,
    ) -> QuickBooksMapping:
        """
        Flag a mapping as ERROR and keep the last max_errors messages.
        Entities that never reached QuickBooks get a mapping with no remote id.
        """
        now = datetime.utcnow()
        mapping = QuickBooksRepository.get_mapping(db, local_entity_type, local_entity_id)
        if mapping is None:
            mapping = QuickBooksMapping(
                local_entity_type=local_entity_type,
                local_entity_id=local_entity_id,
                quickbooks_type=quickbooks_type,
                sync_errors=[],
            )
            db.add(mapping)

        entry = {"timestamp": now.isoformat(), "error": error_message}
        keep = max(1, max_errors)
        # Reassign so the JSON column change is tracked
        mapping.sync_errors = [*(mapping.sync_errors or []), entry][-keep:]
        mapping.sync_status = SYNC_STATUS_ERROR
        mapping.updated_at = now
        return mapping

    @staticmethod
    def mark_mapping_pending(db: Session, local_entity_type: str, local_entity_id: int) -> bool:
        """Queue a locally modified entity for the next outbound pass"""
        updated = (
            db.query(QuickBooksMapping)
            .filter(
                QuickBooksMapping.local_entity_type == local_entity_type,
                QuickBooksMapping.local_entity_id == local_entity_id,
                QuickBooksMapping.sync_status == SYNC_STATUS_SYNCED,
            )
            .update(
                {
                    QuickBooksMapping.sync_status: SYNC_STATUS_PENDING,
                    QuickBooksMapping.updated_at: datetime.utcnow(),
                },
                synchronize_session="fetch",
            )
        )
        return updated > 0

    # Sync log

    @staticmethod
    def add_sync_log(
        db: Session,
        operation_type: str,
        entity_type: str,
        direction: str,
        status: str,
        local_entity_id: Optional[int] = None,
        quickbooks_id: Optional[str] = None,
        request_data: Optional[Any] = None,
        response_data: Optional[Any] = None,
        error_message: Optional[str] = None,
    ) -> QuickBooksSyncLog:
        log = QuickBooksSyncLog(
            operation_type=operation_type,
            entity_type=entity_type,
            local_entity_id=local_entity_id,
            quickbooks_id=quickbooks_id,
            direction=direction,
            status=status,
            request_data=request_data,
            response_data=response_data,
            error_message=error_message,
            completed_at=datetime.utcnow(),
        )
        db.add(log)
        return log

    # Items

    @staticmethod
    def upsert_item(db: Session, quickbooks_id: str, **item_fields) -> bool:
        """
        Insert or overwrite a cached item in one ON CONFLICT statement.
        Returns True when the row did not exist before.
        """
        existed = (
            db.query(QuickBooksItem.id).filter(QuickBooksItem.quickbooks_id == quickbooks_id).first()
            is not None
        )

        now = datetime.utcnow()
        insert = _dialect_insert(db)
        stmt = insert(QuickBooksItem).values(
            quickbooks_id=quickbooks_id, last_sync_at=now, updated_at=now, **item_fields
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[QuickBooksItem.quickbooks_id],
            set_={
                **{key: stmt.excluded[key] for key in item_fields},
                "last_sync_at": now,
                "updated_at": now,
            },
        )
        db.execute(stmt)
        return not existed

    # Connection

    @staticmethod
    def stamp_connection_sync(db: Session, connection: QuickBooksConnection) -> None:
        now = datetime.utcnow()
        connection.last_sync_at = now
        connection.updated_at = now
