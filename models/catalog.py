"""
Canonical catalog models.

CanonicalVariant rows are shared between reconciliation and manual
catalog edits. Overrides record every place where the two disagreed.
"""

from typing import Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pydantic import Field

from models.base import BaseSchema


class StockStatus(str, Enum):
    """Stock status tag derived from quantity and threshold."""
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class OverrideReason(str, Enum):
    """Why reconciliation kept the canonical value."""
    PRICE_MISMATCH = "price_mismatch"
    ATTRIBUTE_MISMATCH = "attribute_mismatch"


class CanonicalVariant(BaseSchema):
    """Authoritative catalog variant, keyed by SKU."""

    sku: str = Field(..., min_length=1)
    stock_quantity: int = Field(default=0, ge=0)
    price: Optional[Decimal] = None
    compare_at_price: Optional[Decimal] = None
    barcode: Optional[str] = None
    option1: Optional[str] = None
    option2: Optional[str] = None
    option3: Optional[str] = None
    low_stock_threshold: int = Field(default=5, ge=0)
    vendor_inventory_item_id: Optional[int] = None
    vendor_product_id: Optional[int] = None
    updated_at: Optional[datetime] = None


class Override(BaseSchema):
    """A canonical field preserved against an incoming staged value."""

    id: Optional[str] = None
    sku: str
    field_name: str
    canonical_value: Optional[str] = None
    staged_value: Optional[str] = None
    reason: OverrideReason
    shopify_product_id: Optional[int] = None
    created_at: Optional[datetime] = None


class ReconcileResult(BaseSchema):
    """Outcome of reconciling one accepted product."""

    shopify_product_id: int
    applied: int = Field(0, description="Variants written to the canonical catalog")
    overrides_created: int = 0
    created_skus: list[str] = Field(default_factory=list)
    overrides: list[Override] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class VariantStockStatus(BaseSchema):
    """Stock status of one canonical variant."""

    sku: str
    stock_quantity: int
    low_stock_threshold: int
    status: StockStatus


class StockStatusReport(BaseSchema):
    """Stock status across the canonical catalog."""

    total: int
    in_stock_count: int = 0
    low_stock_count: int = 0
    out_of_stock_count: int = 0
    items: list[VariantStockStatus] = Field(default_factory=list)
