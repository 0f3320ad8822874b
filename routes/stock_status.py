"""
Stock status API routes.
"""

from typing import Optional
from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
import structlog

from models.catalog import StockStatus, StockStatusReport
from services.stock_status_service import get_stock_status_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/stock-status", tags=["Stock Status"])


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


@router.get("", response_model=StockStatusReport)
async def get_stock_status(
    status: Optional[StockStatus] = Query(None, description="Only return items with this status")
):
    """Per-SKU stock status with catalog-wide counts."""
    try:
        return get_stock_status_service().evaluate(status=status)
    except Exception as e:
        return handle_error(e)
