"""
Vendor sync service.

Walks an upstream resource page by page and merges each page into
staging. A walk is sequential because each page's cursor comes from the
previous response. Independent resources (inventory levels, products)
can be walked in parallel since they only share the staging store.

Failure policy:
- Fatal upstream error or retry exhaustion before the first page:
  run is failed and UpstreamAPIError is raised.
- Any later page failure: page counted as failed, run ends partial.
- Per-record validation failures: collected, run ends partial.
"""

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Optional
import structlog

from config import get_supabase_client
from integrations.shopify import ShopifyClient, UpstreamPage
from models.vendor import MergeStats
from models.sync import (
    SyncResource,
    SyncRunStatus,
    SyncRunSummary,
    SyncStatusResponse,
)
from exceptions import UpstreamAPIError, PersistenceError
from services.staging_merge_service import StagingMergeService
from services.stock_status_service import StockStatusService

logger = structlog.get_logger(__name__)

SYNC_LOG_TABLE = "inventory_sync_log"
RECENT_RUNS_LIMIT = 20


class SyncRunRegistry:
    """Cancel events for runs in progress, keyed by run id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: dict[str, threading.Event] = {}

    def register(self, run_id: str, event: Optional[threading.Event] = None) -> threading.Event:
        """Register a run; an id registered earlier keeps its event."""
        with self._lock:
            event = event or self._events.get(run_id) or threading.Event()
            self._events[run_id] = event
            return event

    def cancel(self, run_id: str) -> bool:
        """Request cancellation; the run stops before its next page."""
        with self._lock:
            event = self._events.get(run_id)
        if event is None:
            return False
        event.set()
        return True

    def unregister(self, run_id: str) -> None:
        with self._lock:
            self._events.pop(run_id, None)

    def running(self) -> list[str]:
        with self._lock:
            return list(self._events)


_registry = SyncRunRegistry()


def get_sync_registry() -> SyncRunRegistry:
    return _registry


def new_run_id() -> str:
    return str(uuid.uuid4())


class VendorSyncService:
    """
    Sync runner.

    Handles:
    - Inventory level and product walks
    - Cooperative cancellation between pages
    - Run summaries and the sync log
    """

    def __init__(
        self,
        db=None,
        client: Optional[ShopifyClient] = None,
        merger: Optional[StagingMergeService] = None,
        registry: Optional[SyncRunRegistry] = None,
        stock_status: Optional[StockStatusService] = None
    ):
        self.db = db or get_supabase_client()
        self.client = client or ShopifyClient()
        self.merger = merger or StagingMergeService(db=self.db)
        self.registry = registry or get_sync_registry()
        self.stock_status = stock_status or StockStatusService(db=self.db)

    # ===================
    # RUNS
    # ===================

    def run_inventory_sync(
        self,
        run_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        triggered_by: Optional[str] = None,
        sync_type: str = "manual",
        raise_on_fatal: bool = True
    ) -> SyncRunSummary:
        """
        Walk every inventory level page and merge it into staging.

        Raises:
            UpstreamAPIError: If no page could be fetched (raise_on_fatal)
        """
        return self._run(
            SyncResource.INVENTORY_LEVELS,
            self.client.fetch_inventory_page,
            self.merger.merge_inventory_levels,
            run_id=run_id,
            cancel_event=cancel_event,
            triggered_by=triggered_by,
            sync_type=sync_type,
            raise_on_fatal=raise_on_fatal,
            need_location=True
        )

    def run_product_sync(
        self,
        run_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        triggered_by: Optional[str] = None,
        sync_type: str = "manual",
        raise_on_fatal: bool = True
    ) -> SyncRunSummary:
        """
        Walk every product page and merge products, variants and
        initial decisions into staging.

        Raises:
            UpstreamAPIError: If no page could be fetched (raise_on_fatal)
        """
        return self._run(
            SyncResource.PRODUCTS,
            self.client.fetch_products_page,
            self.merger.merge_products,
            run_id=run_id,
            cancel_event=cancel_event,
            triggered_by=triggered_by,
            sync_type=sync_type,
            raise_on_fatal=raise_on_fatal,
            need_location=False
        )

    def run_full_sync(
        self,
        run_ids: Optional[tuple[str, str]] = None,
        triggered_by: Optional[str] = None,
        sync_type: str = "manual"
    ) -> list[SyncRunSummary]:
        """
        Walk products and inventory levels in parallel.

        A failed walk does not stop the other; both summaries are
        returned (products first).
        """
        product_run, inventory_run = run_ids or (new_run_id(), new_run_id())

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="vendor-sync") as pool:
            products = pool.submit(
                self.run_product_sync,
                run_id=product_run,
                triggered_by=triggered_by,
                sync_type=sync_type,
                raise_on_fatal=False
            )
            inventory = pool.submit(
                self.run_inventory_sync,
                run_id=inventory_run,
                triggered_by=triggered_by,
                sync_type=sync_type,
                raise_on_fatal=False
            )
            return [products.result(), inventory.result()]

    def _run(
        self,
        resource: SyncResource,
        fetch_page: Callable[[Optional[str]], UpstreamPage],
        merge_page: Callable[[list[dict]], MergeStats],
        run_id: Optional[str],
        cancel_event: Optional[threading.Event],
        triggered_by: Optional[str],
        sync_type: str,
        raise_on_fatal: bool,
        need_location: bool
    ) -> SyncRunSummary:
        run_id = run_id or new_run_id()
        cancel_event = self.registry.register(run_id, cancel_event)

        summary = SyncRunSummary(
            run_id=run_id,
            resource=resource,
            sync_type=sync_type,
            triggered_by=triggered_by,
            started_at=datetime.now(timezone.utc)
        )

        logger.info(
            "sync_run_started",
            run_id=run_id,
            resource=resource.value,
            sync_type=sync_type,
            triggered_by=triggered_by
        )
        self._log_start(summary)

        try:
            self.client.require_credentials(need_location=need_location)
            self._walk(summary, fetch_page, merge_page, cancel_event)
        except UpstreamAPIError as e:
            summary.status = SyncRunStatus.FAILED
            summary.error_message = e.message
            self._finish(summary)
            if raise_on_fatal:
                raise
            return summary
        except Exception as e:
            # The log row must not stay running
            logger.error(
                "sync_run_crashed",
                run_id=run_id,
                error=str(e),
                error_type=type(e).__name__
            )
            summary.status = SyncRunStatus.PARTIAL if summary.pages_fetched else SyncRunStatus.FAILED
            summary.error_message = str(e)
            self._finish(summary)
            raise
        finally:
            self.registry.unregister(run_id)

        self._finish(summary)
        return summary

    def _walk(
        self,
        summary: SyncRunSummary,
        fetch_page: Callable[[Optional[str]], UpstreamPage],
        merge_page: Callable[[list[dict]], MergeStats],
        cancel_event: threading.Event
    ) -> None:
        """
        Sequential page walk.

        Raises:
            UpstreamAPIError: Only when the first page cannot be fetched
        """
        cursor: Optional[str] = None
        seen: set[str] = set()

        while True:
            if cancel_event.is_set():
                logger.info(
                    "sync_run_cancelled",
                    run_id=summary.run_id,
                    pages_fetched=summary.pages_fetched
                )
                summary.status = SyncRunStatus.CANCELLED
                return

            try:
                page = fetch_page(cursor)
            except UpstreamAPIError as e:
                if summary.pages_fetched == 0:
                    raise
                logger.error(
                    "sync_page_fetch_failed",
                    run_id=summary.run_id,
                    page=summary.pages_fetched + 1,
                    retryable=e.retryable,
                    error=e.message
                )
                summary.failed_pages += 1
                summary.error_message = e.message
                return

            summary.pages_fetched += 1

            try:
                stats = merge_page(page.records)
            except PersistenceError as e:
                # Cursor is still known, so the walk continues
                logger.error(
                    "sync_page_merge_failed",
                    run_id=summary.run_id,
                    page=summary.pages_fetched,
                    error=e.message
                )
                summary.failed_pages += 1
                summary.error_message = e.message
            else:
                summary.records_merged += stats.merged
                summary.failed_records.extend(stats.failures)

            logger.debug(
                "sync_page_done",
                run_id=summary.run_id,
                page=summary.pages_fetched,
                records=len(page.records),
                has_next=page.next_cursor is not None
            )

            next_cursor = page.next_cursor
            if not next_cursor:
                return

            if next_cursor == cursor or next_cursor in seen:
                logger.warning(
                    "sync_cursor_repeated",
                    run_id=summary.run_id,
                    cursor=next_cursor,
                    page=summary.pages_fetched
                )
                summary.failed_pages += 1
                summary.error_message = "Upstream returned a cursor that was already walked"
                return

            seen.add(next_cursor)
            cursor = next_cursor

    # ===================
    # SYNC LOG
    # ===================

    def _finish(self, summary: SyncRunSummary) -> None:
        summary.completed_at = datetime.now(timezone.utc)
        if summary.status is SyncRunStatus.RUNNING:
            if summary.failed_pages or summary.failed_records:
                summary.status = SyncRunStatus.PARTIAL
            else:
                summary.status = SyncRunStatus.COMPLETED

        logger.info(
            "sync_run_finished",
            run_id=summary.run_id,
            resource=summary.resource.value,
            status=summary.status.value,
            pages_fetched=summary.pages_fetched,
            records_merged=summary.records_merged,
            failed_records=len(summary.failed_records),
            failed_pages=summary.failed_pages
        )
        self._log_finish(summary)

    def _log_start(self, summary: SyncRunSummary) -> None:
        """Best-effort: a sync log failure never changes the run outcome."""
        try:
            self.db.table(SYNC_LOG_TABLE).insert({
                "id": summary.run_id,
                "resource": summary.resource.value,
                "sync_type": summary.sync_type,
                "triggered_by": summary.triggered_by,
                "status": SyncRunStatus.RUNNING.value,
                "started_at": summary.started_at.isoformat(),
            }).execute()
        except Exception as e:
            logger.warning("sync_log_write_failed", run_id=summary.run_id, error=str(e))

    def _log_finish(self, summary: SyncRunSummary) -> None:
        try:
            self.db.table(SYNC_LOG_TABLE).update({
                "status": summary.status.value,
                "pages_fetched": summary.pages_fetched,
                "records_merged": summary.records_merged,
                "failed_records": len(summary.failed_records),
                "failed_pages": summary.failed_pages,
                "completed_at": summary.completed_at.isoformat() if summary.completed_at else None,
                "error_message": summary.error_message,
            }).eq("id", summary.run_id).execute()
        except Exception as e:
            logger.warning("sync_log_write_failed", run_id=summary.run_id, error=str(e))

    # ===================
    # STATUS
    # ===================

    def cancel(self, run_id: str) -> bool:
        cancelled = self.registry.cancel(run_id)
        logger.info("sync_run_cancel_requested", run_id=run_id, found=cancelled)
        return cancelled

    def get_sync_status(self) -> SyncStatusResponse:
        """Recent runs, runs in progress and staged inventory health."""
        result = (
            self.db.table(SYNC_LOG_TABLE)
            .select("*")
            .order("started_at", desc=True)
            .limit(RECENT_RUNS_LIMIT)
            .execute()
        )
        recent = result.data or []

        in_progress = set(self.registry.running())
        running = [
            row for row in recent
            if row.get("status") == SyncRunStatus.RUNNING.value or row.get("id") in in_progress
        ]

        return SyncStatusResponse(
            is_running=bool(running or in_progress),
            running=running,
            last_completed=next(
                (r for r in recent if r.get("status") == SyncRunStatus.COMPLETED.value), None
            ),
            last_failed=next(
                (r for r in recent if r.get("status") == SyncRunStatus.FAILED.value), None
            ),
            recent=recent,
            inventory_health=self.stock_status.staged_inventory_health()
        )


# Singleton instance
_vendor_sync_service: Optional[VendorSyncService] = None


def get_vendor_sync_service() -> VendorSyncService:
    """Get or create VendorSyncService instance."""
    global _vendor_sync_service
    if _vendor_sync_service is None:
        _vendor_sync_service = VendorSyncService()
    return _vendor_sync_service
