"""
Reconciliation service.

Applies an accepted staged product to the canonical catalog
(product_variants). Editorial fields are never overwritten: a mismatch
between the canonical value and the incoming staged value is recorded
as an override instead. Stock is sync-of-record data and is always
written from the latest staged inventory level.
"""

import threading
import weakref
from typing import Any, Optional
from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone
import structlog

from config import get_supabase_client, settings
from models.vendor import StagedVendorProduct, StagedVariant
from models.catalog import Override, OverrideReason, ReconcileResult
from exceptions import ReconciliationConflictError, StagedProductNotFoundError
from services.db_retry import execute_with_retry

logger = structlog.get_logger(__name__)

CANONICAL_TABLE = "product_variants"
OVERRIDES_TABLE = "product_overrides"
PRODUCTS_TABLE = "vendor_products"
VARIANTS_TABLE = "vendor_variants"
INVENTORY_TABLE = "vendor_inventory_levels"

# Fields compared against the canonical row, in check order
COMPARED_FIELDS: tuple[tuple[str, OverrideReason], ...] = (
    ("price", OverrideReason.PRICE_MISMATCH),
    ("compare_at_price", OverrideReason.ATTRIBUTE_MISMATCH),
    ("barcode", OverrideReason.ATTRIBUTE_MISMATCH),
    ("option1", OverrideReason.ATTRIBUTE_MISMATCH),
    ("option2", OverrideReason.ATTRIBUTE_MISMATCH),
    ("option3", OverrideReason.ATTRIBUTE_MISMATCH),
)

DECIMAL_FIELDS = {"price", "compare_at_price"}


class SkuLockRegistry:
    """
    One lock per SKU so reconciliations of the same SKU never interleave.

    Locks are held weakly; an entry disappears once no caller holds it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, sku: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(sku)
            if lock is None:
                lock = threading.Lock()
                self._locks[sku] = lock
            return lock


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _to_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return format(value.normalize(), "f") if value == value.to_integral() else str(value)
    return str(value)


def values_match(field_name: str, canonical: Any, staged: Any) -> bool:
    """Numeric fields compare by value (19.9 == 19.90), others as text."""
    if field_name in DECIMAL_FIELDS:
        return _to_decimal(canonical) == _to_decimal(staged)
    return _to_text(canonical) == _to_text(staged)


def check_field(sku: str, field_name: str, canonical: Any, staged: Any) -> None:
    """
    Raises:
        ReconciliationConflictError: If a staged value differs from canonical
    """
    if staged is None:
        return
    if not values_match(field_name, canonical, staged):
        raise ReconciliationConflictError(sku, field_name, canonical, staged)


class ReconciliationService:
    """
    Reconciliation engine.

    Triggered once per product transitioning to accepted. Writes to a
    given SKU are serialized through the SKU lock registry.
    """

    def __init__(
        self,
        db=None,
        locks: Optional[SkuLockRegistry] = None,
        default_threshold: Optional[int] = None,
        location_id: Optional[str] = None
    ):
        self.db = db or get_supabase_client()
        self.locks = locks if locks is not None else SkuLockRegistry()
        self.default_threshold = (
            default_threshold if default_threshold is not None
            else settings.default_low_stock_threshold
        )
        self.location_id = location_id if location_id is not None else settings.shopify_location_id

    # ===================
    # STAGED READS
    # ===================

    def load_staged_product(self, shopify_product_id: int) -> StagedVendorProduct:
        """
        Load a staged product with its variants.

        Raises:
            StagedProductNotFoundError: If the product is not staged
        """
        result = execute_with_retry(
            "select_vendor_product",
            lambda: self.db.table(PRODUCTS_TABLE).select("*").eq(
                "shopify_product_id", shopify_product_id
            ).execute()
        )
        if not result.data:
            raise StagedProductNotFoundError(str(shopify_product_id))

        variants = execute_with_retry(
            "select_vendor_variants",
            lambda: self.db.table(VARIANTS_TABLE).select("*").eq(
                "shopify_product_id", shopify_product_id
            ).order("position").execute()
        )

        return StagedVendorProduct(
            **result.data[0],
            variants=[StagedVariant(**row) for row in variants.data or []]
        )

    def _staged_quantities(self, item_ids: list[int]) -> dict[int, int]:
        """Available quantity per inventory item, summed over staged locations."""
        if not item_ids:
            return {}

        def query():
            q = self.db.table(INVENTORY_TABLE).select(
                "inventory_item_id,location_id,available"
            ).in_("inventory_item_id", item_ids)
            if self.location_id:
                q = q.eq("location_id", int(self.location_id))
            return q.execute()

        result = execute_with_retry("select_inventory_levels", query)

        totals: dict[int, int] = {}
        for row in result.data or []:
            item_id = row["inventory_item_id"]
            totals[item_id] = totals.get(item_id, 0) + int(row.get("available") or 0)
        return totals

    # ===================
    # RECONCILE
    # ===================

    def reconcile(self, product: StagedVendorProduct) -> ReconcileResult:
        """
        Apply a staged product to the canonical catalog.

        For each variant: create the canonical SKU if absent; otherwise
        keep canonical editorial fields and record an override for each
        mismatch. Stock is always written and never below zero.

        Args:
            product: Staged product with variants

        Returns:
            ReconcileResult with applied count, overrides and warnings

        Raises:
            PersistenceError: If a canonical write fails after retries
        """
        logger.info(
            "reconciling_product",
            shopify_product_id=product.shopify_product_id,
            variants=len(product.variants)
        )

        result = ReconcileResult(shopify_product_id=product.shopify_product_id)

        item_ids = sorted({
            v.inventory_item_id for v in product.variants
            if v.sku and v.inventory_item_id is not None
        })
        quantities = self._staged_quantities(item_ids)

        for variant in product.variants:
            if not variant.sku:
                result.warnings.append(
                    f"variant {variant.shopify_variant_id} has no SKU; skipped"
                )
                continue

            stock = self._stock_for(variant, quantities, result)

            with self.locks.lock_for(variant.sku):
                self._reconcile_variant(product, variant, stock, result)

        logger.info(
            "product_reconciled",
            shopify_product_id=product.shopify_product_id,
            applied=result.applied,
            created=len(result.created_skus),
            overrides_created=result.overrides_created,
            warnings=len(result.warnings)
        )

        return result

    def _stock_for(
        self,
        variant: StagedVariant,
        quantities: dict[int, int],
        result: ReconcileResult
    ) -> int:
        quantity = quantities.get(variant.inventory_item_id) if variant.inventory_item_id else None

        if quantity is None:
            result.warnings.append(f"{variant.sku}: no staged inventory level; stock set to 0")
            return 0
        if quantity < 0:
            logger.warning("negative_stock_clamped", sku=variant.sku, quantity=quantity)
            result.warnings.append(f"{variant.sku}: staged quantity {quantity} clamped to 0")
            return 0
        return quantity

    def _reconcile_variant(
        self,
        product: StagedVendorProduct,
        variant: StagedVariant,
        stock: int,
        result: ReconcileResult
    ) -> None:
        sku = variant.sku
        now = datetime.now(timezone.utc).isoformat()

        existing = execute_with_retry(
            "select_canonical_variant",
            lambda: self.db.table(CANONICAL_TABLE).select("*").eq("sku", sku).execute()
        )

        if not existing.data:
            row = {
                "sku": sku,
                "stock_quantity": stock,
                "price": _to_text(variant.price),
                "compare_at_price": _to_text(variant.compare_at_price),
                "barcode": variant.barcode,
                "option1": variant.option1,
                "option2": variant.option2,
                "option3": variant.option3,
                "low_stock_threshold": self.default_threshold,
                "vendor_inventory_item_id": variant.inventory_item_id,
                "vendor_product_id": product.shopify_product_id,
                "updated_at": now,
            }
            execute_with_retry(
                "insert_canonical_variant",
                lambda: self.db.table(CANONICAL_TABLE).insert(row).execute()
            )
            result.applied += 1
            result.created_skus.append(sku)
            logger.info("canonical_variant_created", sku=sku, stock_quantity=stock)
            return

        canonical = existing.data[0]
        overrides: list[Override] = []

        for field_name, reason in COMPARED_FIELDS:
            try:
                check_field(sku, field_name, canonical.get(field_name), getattr(variant, field_name))
            except ReconciliationConflictError as conflict:
                overrides.append(Override(
                    sku=sku,
                    field_name=field_name,
                    canonical_value=_to_text(conflict.canonical_value),
                    staged_value=_to_text(conflict.staged_value),
                    reason=reason,
                    shopify_product_id=product.shopify_product_id,
                ))

        if overrides:
            self._record_overrides(overrides, result)

        execute_with_retry(
            "update_canonical_stock",
            lambda: self.db.table(CANONICAL_TABLE).update({
                "stock_quantity": stock,
                "vendor_inventory_item_id": variant.inventory_item_id,
                "vendor_product_id": product.shopify_product_id,
                "updated_at": now,
            }).eq("sku", sku).execute()
        )
        result.applied += 1

        logger.info(
            "canonical_variant_reconciled",
            sku=sku,
            stock_quantity=stock,
            overrides=len(overrides)
        )

    def _record_overrides(self, overrides: list[Override], result: ReconcileResult) -> None:
        """
        Insert override rows, ignoring ones already recorded.

        (sku, field_name, staged_value) is unique, so reconciling the same
        staged value twice leaves a single audit row.
        """
        rows = [
            o.model_dump(mode="json", exclude={"id", "created_at"})
            for o in overrides
        ]
        inserted = execute_with_retry(
            "insert_overrides",
            lambda: self.db.table(OVERRIDES_TABLE).upsert(
                rows,
                on_conflict="sku,field_name,staged_value",
                ignore_duplicates=True
            ).execute()
        )

        created = len(inserted.data or [])
        result.overrides_created += created
        result.overrides.extend(overrides)

        for override in overrides:
            logger.info(
                "override_recorded",
                sku=override.sku,
                field=override.field_name,
                canonical_value=override.canonical_value,
                staged_value=override.staged_value,
                reason=override.reason.value
            )


# Singleton instance
_reconciliation_service: Optional[ReconciliationService] = None


def get_reconciliation_service() -> ReconciliationService:
    """Get or create ReconciliationService instance."""
    global _reconciliation_service
    if _reconciliation_service is None:
        _reconciliation_service = ReconciliationService()
    return _reconciliation_service
