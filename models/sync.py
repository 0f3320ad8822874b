"""
Sync run models.

A run walks one upstream resource page by page and merges every page
into staging. Its summary is also written to the sync log.
"""

from typing import Optional, Literal
from datetime import datetime
from enum import Enum
from pydantic import Field

from models.base import BaseSchema
from models.vendor import RecordFailure


class SyncResource(str, Enum):
    """Upstream resource walked by a run."""
    INVENTORY_LEVELS = "inventory_levels"
    PRODUCTS = "products"


class SyncRunStatus(str, Enum):
    """Lifecycle of a sync run."""
    RUNNING = "running"
    COMPLETED = "completed"   # Every page fetched and merged
    PARTIAL = "partial"       # Some pages or records failed
    FAILED = "failed"         # No page could be fetched
    CANCELLED = "cancelled"   # Stopped between pages on request


class SyncRunSummary(BaseSchema):
    """Summary of one sync run."""

    run_id: str
    resource: SyncResource
    sync_type: str = "manual"
    triggered_by: Optional[str] = None
    status: SyncRunStatus = SyncRunStatus.RUNNING
    pages_fetched: int = 0
    records_merged: int = 0
    failed_records: list[RecordFailure] = Field(default_factory=list)
    failed_pages: int = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None


class SyncStartRequest(BaseSchema):
    """Body for starting a sync run."""

    triggered_by: Optional[str] = Field(None, max_length=200)
    sync_type: Literal["manual", "scheduled"] = "manual"


class SyncStartResponse(BaseSchema):
    run_ids: list[str]
    status: SyncRunStatus = SyncRunStatus.RUNNING


class InventoryHealth(BaseSchema):
    """Stock status counts over staged inventory levels."""

    total_items: int = 0
    in_stock: int = 0
    low_stock: int = 0
    out_of_stock: int = 0
    last_updated: Optional[datetime] = None


class SyncStatusResponse(BaseSchema):
    """Current and recent sync activity."""

    is_running: bool
    running: list[dict] = Field(default_factory=list)
    last_completed: Optional[dict] = None
    last_failed: Optional[dict] = None
    recent: list[dict] = Field(default_factory=list)
    inventory_health: InventoryHealth
