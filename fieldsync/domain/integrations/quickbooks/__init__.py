"""QuickBooks integration - Customer and item sync with QuickBooks Online"""

from .client import QuickBooksClient, quickbooks_client
from .exceptions import (
    NoActiveConnectionError,
    QuickBooksAPIError,
    QuickBooksAuthError,
    QuickBooksError,
    QuickBooksNotConfiguredError,
    StaleMappingError,
)
from .schemas import BidirectionalSyncResult, FullSyncResult, SyncResult
from .service import QuickBooksSyncService
from .status import get_connection_health, get_sync_overview

__all__ = [
    "BidirectionalSyncResult",
    "FullSyncResult",
    "NoActiveConnectionError",
    "QuickBooksAPIError",
    "QuickBooksAuthError",
    "QuickBooksClient",
    "QuickBooksError",
    "QuickBooksNotConfiguredError",
    "QuickBooksSyncService",
    "StaleMappingError",
    "SyncResult",
    "get_connection_health",
    "get_sync_overview",
    "quickbooks_client",
]
