"""
Pydantic models for validation and serialization.
"""

from models.base import (
    BaseSchema,
    TimestampMixin,
    page_count,
)
from models.vendor import (
    StagedInventoryLevel,
    StagedVariant,
    StagedVendorProduct,
    RecordFailure,
    MergeStats,
)
from models.catalog import (
    StockStatus,
    OverrideReason,
    CanonicalVariant,
    Override,
    ReconcileResult,
    VariantStockStatus,
    StockStatusReport,
)
from models.decision import (
    DecisionState,
    ImportDecision,
    DecideRequest,
    DecisionResult,
    BulkDecisionItem,
    BulkDecideRequest,
    BulkDecisionOutcome,
    BulkDecisionResult,
)
from models.inbox import (
    InboxFilters,
    InboxListRequest,
    InboxItem,
    InboxPage,
    InboxListResponse,
    InboxCount,
    InboxCountResponse,
)
from models.sync import (
    SyncResource,
    SyncRunStatus,
    SyncRunSummary,
    SyncStartRequest,
    SyncStartResponse,
    InventoryHealth,
    SyncStatusResponse,
)

__all__ = [
    # Base
    "BaseSchema",
    "TimestampMixin",
    "page_count",

    # Staging
    "StagedInventoryLevel",
    "StagedVariant",
    "StagedVendorProduct",
    "RecordFailure",
    "MergeStats",

    # Catalog
    "StockStatus",
    "OverrideReason",
    "CanonicalVariant",
    "Override",
    "ReconcileResult",
    "VariantStockStatus",
    "StockStatusReport",

    # Decisions
    "DecisionState",
    "ImportDecision",
    "DecideRequest",
    "DecisionResult",
    "BulkDecisionItem",
    "BulkDecideRequest",
    "BulkDecisionOutcome",
    "BulkDecisionResult",

    # Inbox
    "InboxFilters",
    "InboxListRequest",
    "InboxItem",
    "InboxPage",
    "InboxListResponse",
    "InboxCount",
    "InboxCountResponse",

    # Sync
    "SyncResource",
    "SyncRunStatus",
    "SyncRunSummary",
    "SyncStartRequest",
    "SyncStartResponse",
    "InventoryHealth",
    "SyncStatusResponse",
]
