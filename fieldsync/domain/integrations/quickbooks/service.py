"""QuickBooks sync service - Customer and item synchronization with QuickBooks Online"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ....config import QUICKBOOKS_MAX_SYNC_ERRORS, QUICKBOOKS_OUTBOUND_BATCH_SIZE
from ....models import Customer
from ....models_quickbooks import (
    DIRECTION_FROM_QB,
    DIRECTION_TO_QB,
    LOCAL_ENTITY_CUSTOMER,
    LOG_STATUS_ERROR,
    LOG_STATUS_SUCCESS,
    OPERATION_CREATE,
    OPERATION_SYNC,
    OPERATION_UPDATE,
    QB_ENTITY_CUSTOMER,
    QuickBooksConnection,
    QuickBooksMapping,
)
from .client import QuickBooksClient, quickbooks_client
from .exceptions import NoActiveConnectionError, QuickBooksError
from .mapping import (
    build_customer_payload,
    customer_fields_from_quickbooks,
    extract_entity,
    item_fields_from_quickbooks,
    remote_display_name,
)
from .repository import QuickBooksRepository
from .schemas import (
    BidirectionalSyncResult,
    CustomerSyncResults,
    FullSyncResult,
    ItemSyncResults,
    SyncResult,
)

logger = logging.getLogger(__name__)

SYNC_DIRECTIONS = ("to_qb", "from_qb", "bidirectional")

# One in-flight run per connection within this process
_sync_locks: dict[int, asyncio.Lock] = {}


def get_sync_lock(connection_id: int) -> asyncio.Lock:
    lock = _sync_locks.get(connection_id)
    if lock is None:
        lock = _sync_locks[connection_id] = asyncio.Lock()
    return lock


class QuickBooksSyncService:
    """Service layer for QuickBooks synchronization"""

    def __init__(
        self,
        db: Session,
        client: Optional[QuickBooksClient] = None,
        batch_size: int = QUICKBOOKS_OUTBOUND_BATCH_SIZE,
        max_sync_errors: int = QUICKBOOKS_MAX_SYNC_ERRORS,
    ):
        self.db = db
        self.client = client or quickbooks_client
        self.repo = QuickBooksRepository()
        self.batch_size = batch_size
        self.max_sync_errors = max_sync_errors

    def get_connection(self) -> QuickBooksConnection:
        connection = self.client.get_active_connection(self.db)
        if not connection:
            raise NoActiveConnectionError()
        return connection

    def _resolve_connection(
        self, connection: Optional[QuickBooksConnection], result: SyncResult
    ) -> Optional[QuickBooksConnection]:
        if connection is not None:
            return connection
        try:
            return self.get_connection()
        except (NoActiveConnectionError, SQLAlchemyError) as e:
            logger.warning(f"⚠️ QuickBooks sync skipped: {e}")
            result.record_error(str(e))
            return None

    # ------------------------------------------------------------------
    # Outbound customers
    # ------------------------------------------------------------------

    async def sync_customers_to_quickbooks(
        self, connection: Optional[QuickBooksConnection] = None
    ) -> SyncResult:
        """Push new, pending and failed customers to QuickBooks, one at a time"""
        result = SyncResult()
        connection = self._resolve_connection(connection, result)
        if connection is None:
            return result

        try:
            candidates = self.repo.get_outbound_customer_candidates(self.db, self.batch_size)
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to load customers for QuickBooks sync: {e}")
            self.db.rollback()
            result.record_error(str(e))
            return result

        logger.info(f"🔄 Pushing {len(candidates)} customer(s) to QuickBooks")

        for customer, mapping in candidates:
            customer_id = customer.id
            display_name = customer.display_name
            try:
                created = await self._push_customer(connection, customer, mapping)
                if created:
                    result.created += 1
                else:
                    result.updated += 1
            except Exception as e:
                self.db.rollback()
                logger.error(f"❌ Customer {customer_id} sync to QuickBooks failed: {e}")
                result.record_error(f"Customer {display_name}: {e}")
                self._record_outbound_error(customer_id, str(e))

        logger.info(
            f"✅ Customers to QuickBooks: created={result.created} "
            f"updated={result.updated} errors={result.errors}"
        )
        return result.finish()

    async def _push_customer(
        self,
        connection: QuickBooksConnection,
        customer: Customer,
        mapping: Optional[QuickBooksMapping],
    ) -> bool:
        """Create or update one customer remotely; returns True for a create"""
        quickbooks_id = mapping.quickbooks_id if mapping else None
        expected_version = mapping.sync_version if mapping else None
        payload = build_customer_payload(customer, quickbooks_id, expected_version)

        if quickbooks_id:
            response = await self.client.update_customer(connection, payload)
        else:
            response = await self.client.create_customer(connection, payload)

        qb_customer = extract_entity(response, QB_ENTITY_CUSTOMER)
        if not qb_customer or not qb_customer.get("Id"):
            raise QuickBooksError("QuickBooks response did not include a Customer")

        self.repo.save_synced_mapping(
            self.db,
            mapping,
            LOCAL_ENTITY_CUSTOMER,
            customer.id,
            qb_customer["Id"],
            QB_ENTITY_CUSTOMER,
            qb_customer.get("SyncToken"),
            expected_version=expected_version,
        )
        customer.quickbooks_id = qb_customer["Id"]
        self.repo.add_sync_log(
            self.db,
            operation_type=OPERATION_UPDATE if quickbooks_id else OPERATION_CREATE,
            entity_type=LOCAL_ENTITY_CUSTOMER,
            direction=DIRECTION_TO_QB,
            status=LOG_STATUS_SUCCESS,
            local_entity_id=customer.id,
            quickbooks_id=qb_customer["Id"],
            request_data=payload,
            response_data=qb_customer,
        )
        self.db.commit()
        return not quickbooks_id

    def _record_outbound_error(self, customer_id: int, error_message: str) -> None:
        """Write the ERROR log row and flag the mapping; never raises"""
        try:
            self.repo.add_sync_log(
                self.db,
                operation_type=OPERATION_SYNC,
                entity_type=LOCAL_ENTITY_CUSTOMER,
                direction=DIRECTION_TO_QB,
                status=LOG_STATUS_ERROR,
                local_entity_id=customer_id,
                error_message=error_message,
            )
            self.repo.mark_mapping_error(
                self.db,
                LOCAL_ENTITY_CUSTOMER,
                customer_id,
                QB_ENTITY_CUSTOMER,
                error_message,
                self.max_sync_errors,
            )
            self.db.commit()
        except SQLAlchemyError as log_error:
            self.db.rollback()
            logger.error(f"❌ Failed to log sync error for customer {customer_id}: {log_error}")

    # ------------------------------------------------------------------
    # Inbound customers
    # ------------------------------------------------------------------

    async def sync_customers_from_quickbooks(
        self, connection: Optional[QuickBooksConnection] = None
    ) -> SyncResult:
        """Pull every QuickBooks customer and reconcile through the mapping store"""
        result = SyncResult()
        connection = self._resolve_connection(connection, result)
        if connection is None:
            return result

        try:
            async for qb_customer in self.client.iter_customers(connection):
                name = remote_display_name(qb_customer)
                try:
                    outcome = self._pull_customer(qb_customer)
                    if outcome == OPERATION_CREATE:
                        result.created += 1
                    elif outcome == OPERATION_UPDATE:
                        result.updated += 1
                except Exception as e:
                    self.db.rollback()
                    logger.error(f"❌ QuickBooks customer {qb_customer.get('Id')} import failed: {e}")
                    result.record_error(f"QuickBooks Customer {name}: {e}")
        except (QuickBooksError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error(f"❌ Failed to fetch customers from QuickBooks: {e}")
            result.record_error(f"Failed to fetch QuickBooks customers: {e}")

        logger.info(
            f"✅ Customers from QuickBooks: created={result.created} "
            f"updated={result.updated} errors={result.errors}"
        )
        return result.finish()

    def _pull_customer(self, qb_customer: dict) -> Optional[str]:
        """Apply one remote customer; returns CREATE, UPDATE or None when already current"""
        quickbooks_id = str(qb_customer["Id"])
        sync_token = qb_customer.get("SyncToken")
        fields = customer_fields_from_quickbooks(qb_customer)

        mapping = self.repo.get_mapping_by_remote(self.db, quickbooks_id, QB_ENTITY_CUSTOMER)

        if mapping is None:
            customer = self.repo.create_customer(self.db, quickbooks_id=quickbooks_id, **fields)
            self.repo.save_synced_mapping(
                self.db,
                None,
                LOCAL_ENTITY_CUSTOMER,
                customer.id,
                quickbooks_id,
                QB_ENTITY_CUSTOMER,
                sync_token,
            )
            self.repo.add_sync_log(
                self.db,
                operation_type=OPERATION_CREATE,
                entity_type=LOCAL_ENTITY_CUSTOMER,
                direction=DIRECTION_FROM_QB,
                status=LOG_STATUS_SUCCESS,
                local_entity_id=customer.id,
                quickbooks_id=quickbooks_id,
                response_data=qb_customer,
            )
            self.db.commit()
            return OPERATION_CREATE

        if mapping.sync_version == sync_token:
            return None

        expected_version = mapping.sync_version
        local_entity_id = mapping.local_entity_id
        self.repo.update_customer(self.db, local_entity_id, quickbooks_id=quickbooks_id, **fields)
        self.repo.save_synced_mapping(
            self.db,
            mapping,
            LOCAL_ENTITY_CUSTOMER,
            local_entity_id,
            quickbooks_id,
            QB_ENTITY_CUSTOMER,
            sync_token,
            expected_version=expected_version,
        )
        self.repo.add_sync_log(
            self.db,
            operation_type=OPERATION_UPDATE,
            entity_type=LOCAL_ENTITY_CUSTOMER,
            direction=DIRECTION_FROM_QB,
            status=LOG_STATUS_SUCCESS,
            local_entity_id=local_entity_id,
            quickbooks_id=quickbooks_id,
            response_data=qb_customer,
        )
        self.db.commit()
        return OPERATION_UPDATE

    # ------------------------------------------------------------------
    # Inbound items
    # ------------------------------------------------------------------

    async def sync_items_from_quickbooks(
        self, connection: Optional[QuickBooksConnection] = None
    ) -> SyncResult:
        """Mirror the QuickBooks product/service catalog into the local item cache"""
        result = SyncResult()
        connection = self._resolve_connection(connection, result)
        if connection is None:
            return result

        try:
            async for qb_item in self.client.iter_items(connection):
                try:
                    created = self.repo.upsert_item(
                        self.db, str(qb_item["Id"]), **item_fields_from_quickbooks(qb_item)
                    )
                    self.db.commit()
                    if created:
                        result.created += 1
                    else:
                        result.updated += 1
                except Exception as e:
                    self.db.rollback()
                    logger.error(f"❌ QuickBooks item {qb_item.get('Id')} import failed: {e}")
                    result.record_error(f"Item {qb_item.get('Name')}: {e}")
        except (QuickBooksError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error(f"❌ Failed to fetch items from QuickBooks: {e}")
            result.record_error(f"Failed to fetch QuickBooks items: {e}")

        logger.info(
            f"✅ Items from QuickBooks: created={result.created} "
            f"updated={result.updated} errors={result.errors}"
        )
        return result.finish()

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def sync_customers(self, direction: str = "to_qb") -> SyncResult:
        """Run one customer pass, or both in order for "bidirectional" """
        if direction not in SYNC_DIRECTIONS:
            raise ValueError(f"Invalid direction {direction!r}. Use one of: {', '.join(SYNC_DIRECTIONS)}")

        result = SyncResult()
        connection = self._resolve_connection(None, result)
        if connection is None:
            if direction == "bidirectional":
                return BidirectionalSyncResult.combine(result, SyncResult.failed(result.error_details[0]))
            return result

        async with get_sync_lock(connection.id):
            if direction == "to_qb":
                return await self.sync_customers_to_quickbooks(connection)
            if direction == "from_qb":
                return await self.sync_customers_from_quickbooks(connection)
            to_qb = await self.sync_customers_to_quickbooks(connection)
            from_qb = await self.sync_customers_from_quickbooks(connection)
            return BidirectionalSyncResult.combine(to_qb, from_qb)

    async def run_full_sync(self) -> FullSyncResult:
        """
        Outbound customers, inbound customers, then inbound items.

        Failures inside one pass never stop the next. Without an active
        connection nothing runs and every pass reports that single error.
        """
        try:
            connection = self.get_connection()
        except (NoActiveConnectionError, SQLAlchemyError) as e:
            logger.warning(f"⚠️ QuickBooks full sync skipped: {e}")
            return FullSyncResult(
                customers=CustomerSyncResults(
                    to_qb=SyncResult.failed(str(e)), from_qb=SyncResult.failed(str(e))
                ),
                items=ItemSyncResults(from_qb=SyncResult.failed(str(e))),
            )

        lock = get_sync_lock(connection.id)
        if lock.locked():
            logger.info(f"⏳ QuickBooks sync already running for connection {connection.id}, waiting")

        async with lock:
            logger.info(f"🔄 Starting full QuickBooks sync for realm {connection.realm_id}")
            result = FullSyncResult(
                customers=CustomerSyncResults(
                    to_qb=await self.sync_customers_to_quickbooks(connection),
                    from_qb=await self.sync_customers_from_quickbooks(connection),
                ),
                items=ItemSyncResults(from_qb=await self.sync_items_from_quickbooks(connection)),
            )

            try:
                self.repo.stamp_connection_sync(self.db, connection)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"❌ Failed to stamp QuickBooks last sync time: {e}")

        summary = result.summary()
        logger.info(
            f"✅ Full QuickBooks sync complete: created={summary.total_created} "
            f"updated={summary.total_updated} errors={summary.total_errors}"
        )
        return result

    def mark_customer_modified(self, customer_id: int) -> bool:
        """Queue a locally edited customer for the next outbound pass"""
        queued = self.repo.mark_mapping_pending(self.db, LOCAL_ENTITY_CUSTOMER, customer_id)
        self.db.commit()
        return queued
