"""
Vendor sync API routes.

Runs are started as background tasks; the response carries the run ids
so a caller can poll /status or cancel a run between pages.
"""

from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Body
from fastapi.responses import JSONResponse
import structlog

from models.sync import SyncStartRequest, SyncStartResponse, SyncRunStatus
from services.vendor_sync_service import get_vendor_sync_service, new_run_id
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/vendor-sync", tags=["Vendor Sync"])


def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(status_code=e.status_code, content=e.to_dict())
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# START RUNS
# ===================

@router.post("/inventory", response_model=SyncStartResponse, status_code=202)
async def start_inventory_sync(
    background_tasks: BackgroundTasks,
    request: Optional[SyncStartRequest] = Body(None)
):
    """
    Start an inventory level sync.

    Raises:
        502: Upstream credentials missing
    """
    try:
        request = request or SyncStartRequest()
        service = get_vendor_sync_service()
        service.client.require_credentials(need_location=True)

        run_id = new_run_id()
        event = service.registry.register(run_id)
        background_tasks.add_task(
            service.run_inventory_sync,
            run_id=run_id,
            cancel_event=event,
            triggered_by=request.triggered_by,
            sync_type=request.sync_type,
            raise_on_fatal=False
        )
        logger.info("inventory_sync_scheduled", run_id=run_id)
        return SyncStartResponse(run_ids=[run_id], status=SyncRunStatus.RUNNING)

    except Exception as e:
        return handle_error(e)


@router.post("/products", response_model=SyncStartResponse, status_code=202)
async def start_product_sync(
    background_tasks: BackgroundTasks,
    request: Optional[SyncStartRequest] = Body(None)
):
    """Start a product sync (products, variants, initial decisions)."""
    try:
        request = request or SyncStartRequest()
        service = get_vendor_sync_service()
        service.client.require_credentials(need_location=False)

        run_id = new_run_id()
        event = service.registry.register(run_id)
        background_tasks.add_task(
            service.run_product_sync,
            run_id=run_id,
            cancel_event=event,
            triggered_by=request.triggered_by,
            sync_type=request.sync_type,
            raise_on_fatal=False
        )
        logger.info("product_sync_scheduled", run_id=run_id)
        return SyncStartResponse(run_ids=[run_id], status=SyncRunStatus.RUNNING)

    except Exception as e:
        return handle_error(e)


@router.post("/full", response_model=SyncStartResponse, status_code=202)
async def start_full_sync(
    background_tasks: BackgroundTasks,
    request: Optional[SyncStartRequest] = Body(None)
):
    """Start product and inventory syncs in parallel."""
    try:
        request = request or SyncStartRequest()
        service = get_vendor_sync_service()
        service.client.require_credentials(need_location=True)

        run_ids = (new_run_id(), new_run_id())
        for run_id in run_ids:
            service.registry.register(run_id)

        background_tasks.add_task(
            service.run_full_sync,
            run_ids=run_ids,
            triggered_by=request.triggered_by,
            sync_type=request.sync_type
        )
        logger.info("full_sync_scheduled", run_ids=list(run_ids))
        return SyncStartResponse(run_ids=list(run_ids), status=SyncRunStatus.RUNNING)

    except Exception as e:
        return handle_error(e)


# ===================
# CONTROL & STATUS
# ===================

@router.post("/runs/{run_id}/cancel")
async def cancel_sync_run(run_id: str):
    """Request cancellation; the run stops before fetching its next page."""
    try:
        cancelled = get_vendor_sync_service().cancel(run_id)
        return {"run_id": run_id, "cancelled": cancelled}
    except Exception as e:
        return handle_error(e)


@router.get("/status")
async def get_sync_status():
    """Recent runs, runs in progress and staged inventory health."""
    try:
        return get_vendor_sync_service().get_sync_status()
    except Exception as e:
        return handle_error(e)
