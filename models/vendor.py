"""
Staged vendor models.

Rows pulled from the upstream store and held in the staging tables
until an operator decides on them. Staged rows are refreshed by every
sync pass.
"""

from typing import Optional, Any
from datetime import datetime
from decimal import Decimal
from pydantic import Field

from models.base import BaseSchema, TimestampMixin


class StagedInventoryLevel(BaseSchema):
    """
    Available quantity of one inventory item at one location.

    (inventory_item_id, location_id) is the natural key.
    """

    inventory_item_id: int
    location_id: int
    available: int = Field(default=0, ge=0)
    updated_at: Optional[datetime] = Field(
        None,
        description="Last time a sync pass wrote this row"
    )

    @property
    def key(self) -> tuple[int, int]:
        return (self.inventory_item_id, self.location_id)


class StagedVariant(BaseSchema):
    """Variant of a staged vendor product."""

    shopify_variant_id: int
    shopify_product_id: int
    sku: Optional[str] = None
    barcode: Optional[str] = None
    price: Optional[Decimal] = None
    compare_at_price: Optional[Decimal] = None
    position: Optional[int] = None
    inventory_item_id: Optional[int] = None
    option1: Optional[str] = None
    option2: Optional[str] = None
    option3: Optional[str] = None


class StagedVendorProduct(BaseSchema, TimestampMixin):
    """
    Product snapshot from the vendor store.

    status is the upstream status (active/draft/archived). is_active is
    inbox visibility and is only cleared by a rejection.
    """

    shopify_product_id: int
    handle: Optional[str] = None
    title: str
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    status: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True
    raw_payload: dict[str, Any] = Field(default_factory=dict)
    variants: list[StagedVariant] = Field(default_factory=list)


class RecordFailure(BaseSchema):
    """Per-record validation failure collected during a merge."""

    key: str = Field(description="Best-effort identifier of the bad record")
    reason: str
    missing_fields: list[str] = Field(default_factory=list)


class MergeStats(BaseSchema):
    """Outcome of merging one page of upstream records."""

    merged: int = 0
    failures: list[RecordFailure] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)
