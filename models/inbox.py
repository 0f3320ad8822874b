"""
Vendor inbox models.

Request and response shapes for the filtered, paginated review queue.
"""

from typing import Optional
from datetime import datetime
from pydantic import ConfigDict, Field

from models.base import BaseSchema, page_count


class InboxFilters(BaseSchema):
    """Filter conjunction shared by listing and counting."""

    search: Optional[str] = Field(None, max_length=200, description="Title or SKU substring")
    status: Optional[str] = Field(None, description="Upstream product status")
    decision: Optional[str] = Field(None, description="pending, accepted or rejected")


class InboxListRequest(InboxFilters):
    """Listing request (query string or JSON body)."""

    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


class InboxItem(BaseSchema):
    """One staged product as shown in the inbox."""

    shopify_product_id: int
    title: str
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    status: Optional[str] = None
    decision: str = "pending"
    skus: Optional[str] = None
    variant_count: int = 0
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class InboxPage(BaseSchema):
    """Page of inbox items with totals."""

    model_config = ConfigDict(populate_by_name=True)

    items: list[InboxItem]
    total: int
    total_pages: int = Field(alias="totalPages")
    current_page: int = Field(alias="currentPage")

    @classmethod
    def create(cls, items: list[InboxItem], total: int, page: int, page_size: int) -> "InboxPage":
        return cls(
            items=items,
            total=total,
            total_pages=page_count(total, page_size),
            current_page=page
        )


class InboxListResponse(BaseSchema):
    data: InboxPage


class InboxCount(BaseSchema):
    inbox_count: int


class InboxCountResponse(BaseSchema):
    data: InboxCount
