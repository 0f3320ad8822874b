"""
Vendor inbox API routes.

Listing and counting accept filters either as query parameters (GET) or
as a JSON body (POST); both produce the same result.
"""

from typing import Optional
from fastapi import APIRouter, Query, Body
from fastapi.responses import JSONResponse
import structlog

from models.inbox import (
    InboxFilters,
    InboxListRequest,
    InboxListResponse,
    InboxCount,
    InboxCountResponse,
)
from models.decision import DecideRequest, BulkDecideRequest
from services.inbox_service import get_inbox_service
from services.decision_service import get_decision_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/vendor-inbox", tags=["Vendor Inbox"])


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


def _list(request: InboxListRequest) -> InboxListResponse:
    page = get_inbox_service().list_inbox(
        search=request.search,
        status=request.status,
        decision=request.decision,
        page=request.page,
        page_size=request.limit
    )
    return InboxListResponse(data=page)


def _count(filters: InboxFilters) -> InboxCountResponse:
    count = get_inbox_service().count_inbox(
        search=filters.search,
        status=filters.status,
        decision=filters.decision
    )
    return InboxCountResponse(data=InboxCount(inbox_count=count))


# ===================
# LISTING
# ===================

@router.get("/items", response_model=InboxListResponse)
async def list_inbox_items(
    search: Optional[str] = Query(None, max_length=200, description="Title or SKU substring"),
    status: Optional[str] = Query(None, description="Upstream product status"),
    decision: Optional[str] = Query(None, description="pending, accepted or rejected"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, le=100, description="Items per page")
):
    """
    List staged products awaiting review.

    Returns {data: {items, total, totalPages, currentPage}}.
    """
    try:
        return _list(InboxListRequest(
            search=search, status=status, decision=decision, page=page, limit=limit
        ))
    except Exception as e:
        return handle_error(e)


@router.post("/items", response_model=InboxListResponse)
async def query_inbox_items(request: Optional[InboxListRequest] = Body(None)):
    """Same as GET /items with the filters in a JSON body."""
    try:
        return _list(request or InboxListRequest())
    except Exception as e:
        return handle_error(e)


@router.get("/count", response_model=InboxCountResponse)
async def count_inbox_items(
    search: Optional[str] = Query(None, max_length=200),
    status: Optional[str] = Query(None),
    decision: Optional[str] = Query(None)
):
    """Number of staged products matching the filters."""
    try:
        return _count(InboxFilters(search=search, status=status, decision=decision))
    except Exception as e:
        return handle_error(e)


@router.post("/count", response_model=InboxCountResponse)
async def query_inbox_count(filters: Optional[InboxFilters] = Body(None)):
    try:
        return _count(filters or InboxFilters())
    except Exception as e:
        return handle_error(e)


# ===================
# DECISIONS
# ===================

@router.post("/reconcile-pending")
async def reconcile_pending():
    """Reconcile accepted products whose reconciliation never completed."""
    try:
        results = get_decision_service().retry_unreconciled()
        return {
            "data": {
                "reconciled": len(results),
                "results": [r.model_dump(mode="json") for r in results]
            }
        }
    except Exception as e:
        return handle_error(e)


@router.post("/{shopify_product_id}/decision")
async def decide_product(shopify_product_id: int, request: DecideRequest):
    """
    Accept or reject a staged product.

    Raises:
        404: Product not staged
        409: Product already has the other decision
    """
    try:
        result = get_decision_service().decide(
            shopify_product_id,
            request.decision,
            request.actor
        )
        return {"data": result.model_dump(mode="json")}
    except Exception as e:
        return handle_error(e)


@router.post("/decisions")
async def decide_products(request: BulkDecideRequest):
    """
    Accept or reject several staged products at once.

    Each item gets its own outcome; a conflict or missing product is
    reported for that item and the others are still decided.
    """
    try:
        result = get_decision_service().decide_many(request.items, request.actor)
        return {"data": result.model_dump(mode="json")}
    except Exception as e:
        return handle_error(e)
