"""
API route modules.

Each module defines routes for one domain area.
"""

from routes.vendor_sync import router as vendor_sync_router
from routes.vendor_inbox import router as vendor_inbox_router
from routes.stock_status import router as stock_status_router

__all__ = [
    "vendor_sync_router",
    "vendor_inbox_router",
    "stock_status_router",
]
