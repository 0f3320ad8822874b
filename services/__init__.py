"""
Business logic services.

Each service handles one stage of the vendor pipeline.
"""

from services.db_retry import execute_with_retry
from services.staging_merge_service import StagingMergeService, get_staging_merge_service
from services.inbox_service import InboxService, get_inbox_service
from services.reconciliation_service import (
    ReconciliationService,
    SkuLockRegistry,
    get_reconciliation_service,
)
from services.decision_service import DecisionService, get_decision_service
from services.stock_status_service import (
    StockStatusService,
    get_stock_status_service,
    stock_status,
)
from services.vendor_sync_service import (
    VendorSyncService,
    SyncRunRegistry,
    get_vendor_sync_service,
    get_sync_registry,
)

__all__ = [
    "execute_with_retry",
    "StagingMergeService",
    "get_staging_merge_service",
    "InboxService",
    "get_inbox_service",
    "ReconciliationService",
    "SkuLockRegistry",
    "get_reconciliation_service",
    "DecisionService",
    "get_decision_service",
    "StockStatusService",
    "get_stock_status_service",
    "stock_status",
    "VendorSyncService",
    "SyncRunRegistry",
    "get_vendor_sync_service",
    "get_sync_registry",
]
