"""
Staging merge service.

Upserts upstream pages into the staging tables. Every write is keyed on
the record's natural key with merge-on-conflict, so applying the same
page again only refreshes timestamps. A crashed walk is recovered by
simply walking again.
"""

from typing import Any, Optional
from datetime import datetime, timezone
import structlog

from config import get_supabase_client
from models.vendor import MergeStats, RecordFailure, StagedInventoryLevel
from models.decision import DecisionState
from exceptions import StagedRecordValidationError
from services.db_retry import execute_with_retry

logger = structlog.get_logger(__name__)

INVENTORY_TABLE = "vendor_inventory_levels"
PRODUCTS_TABLE = "vendor_products"
VARIANTS_TABLE = "vendor_variants"
DECISIONS_TABLE = "vendor_import_decisions"

INVENTORY_CONFLICT_KEY = "inventory_item_id,location_id"

INVENTORY_REQUIRED = ("inventory_item_id", "location_id")
PRODUCT_REQUIRED = ("shopify_product_id", "title")
VARIANT_REQUIRED = ("shopify_variant_id",)


def _missing_fields(record: dict, required: tuple[str, ...]) -> list[str]:
    return [
        name for name in required
        if record.get(name) is None or (isinstance(record.get(name), str) and not record.get(name).strip())
    ]


def _record_key(record: dict, fields: tuple[str, ...], index: int) -> str:
    parts = [str(record.get(f)) for f in fields if record.get(f) is not None]
    return ":".join(parts) if parts else f"#{index}"


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def clamp_quantity(value: Any) -> int:
    """Missing or negative quantities stage as 0."""
    quantity = _as_int(value)
    if quantity is None or quantity < 0:
        return 0
    return quantity


class StagingMergeService:
    """
    Idempotent merger for upstream pages.

    Handles:
    - Inventory levels keyed on (inventory_item_id, location_id)
    - Products, variants, and the initial pending decision per product
    """

    def __init__(self, db=None):
        self.db = db or get_supabase_client()

    def _failure(
        self,
        record: dict,
        fields: tuple[str, ...],
        index: int,
        missing: list[str],
        resource: str
    ) -> RecordFailure:
        error = StagedRecordValidationError(_record_key(record, fields, index), missing)
        logger.warning(
            "staged_record_skipped",
            resource=resource,
            record=error.record_key,
            missing_fields=missing
        )
        return RecordFailure(key=error.record_key, reason=error.message, missing_fields=missing)

    # ===================
    # INVENTORY LEVELS
    # ===================

    def merge_inventory_levels(self, records: list[dict]) -> MergeStats:
        """
        Upsert one page of inventory levels.

        Last write wins on (inventory_item_id, location_id); no prior
        staged state is read. Records missing a key field are reported
        in the stats and skipped.

        Args:
            records: Raw inventory_levels from the upstream page

        Returns:
            MergeStats with merged row count and per-record failures

        Raises:
            PersistenceError: If the upsert fails after retries
        """
        now = datetime.now(timezone.utc)
        rows_by_key: dict[tuple[int, int], dict] = {}
        failures: list[RecordFailure] = []

        for index, record in enumerate(records):
            missing = _missing_fields(record, INVENTORY_REQUIRED)
            item_id = _as_int(record.get("inventory_item_id"))
            location_id = _as_int(record.get("location_id"))
            if not missing:
                missing = [
                    name for name, value in (("inventory_item_id", item_id), ("location_id", location_id))
                    if value is None
                ]
            if missing:
                failures.append(
                    self._failure(record, INVENTORY_REQUIRED, index, missing, "inventory_levels")
                )
                continue

            # Later duplicates within a page win, same as across pages
            rows_by_key[(item_id, location_id)] = StagedInventoryLevel(
                inventory_item_id=item_id,
                location_id=location_id,
                available=clamp_quantity(record.get("available")),
                updated_at=now,
            ).model_dump(mode="json")

        if rows_by_key:
            rows = list(rows_by_key.values())
            execute_with_retry(
                "upsert_inventory_levels",
                lambda: self.db.table(INVENTORY_TABLE).upsert(
                    rows,
                    on_conflict=INVENTORY_CONFLICT_KEY
                ).execute()
            )

        logger.info(
            "inventory_levels_merged",
            merged=len(rows_by_key),
            failed=len(failures)
        )

        return MergeStats(merged=len(rows_by_key), failures=failures)

    # ===================
    # PRODUCTS
    # ===================

    def merge_products(self, records: list[dict]) -> MergeStats:
        """
        Upsert one page of products and their variants.

        Each newly seen product gets a pending decision. Existing
        decisions are left untouched (insert-or-ignore), so a re-sync
        never reopens a decided product.

        Args:
            records: Flattened product records from the upstream page

        Returns:
            MergeStats counting merged products

        Raises:
            PersistenceError: If a staging write fails after retries
        """
        now = datetime.now(timezone.utc).isoformat()
        products: dict[int, dict] = {}
        variants: dict[int, dict] = {}
        failures: list[RecordFailure] = []

        for index, record in enumerate(records):
            missing = _missing_fields(record, PRODUCT_REQUIRED)
            product_id = _as_int(record.get("shopify_product_id"))
            if not missing and product_id is None:
                missing = ["shopify_product_id"]
            if missing:
                failures.append(
                    self._failure(record, PRODUCT_REQUIRED, index, missing, "products")
                )
                continue

            products[product_id] = {
                "shopify_product_id": product_id,
                "handle": record.get("handle"),
                "title": record.get("title"),
                "vendor": record.get("vendor"),
                "product_type": record.get("product_type"),
                "status": record.get("status"),
                "tags": record.get("tags") or [],
                "raw_payload": record.get("raw_payload") or {},
                "updated_at": now,
            }

            for v_index, variant in enumerate(record.get("variants") or []):
                v_missing = _missing_fields(variant, VARIANT_REQUIRED)
                variant_id = _as_int(variant.get("shopify_variant_id"))
                if not v_missing and variant_id is None:
                    v_missing = ["shopify_variant_id"]
                if v_missing:
                    failures.append(
                        self._failure(variant, ("shopify_product_id", "sku"), v_index, v_missing, "variants")
                    )
                    continue

                variants[variant_id] = {
                    "shopify_variant_id": variant_id,
                    "shopify_product_id": product_id,
                    "sku": variant.get("sku"),
                    "barcode": variant.get("barcode"),
                    "price": variant.get("price"),
                    "compare_at_price": variant.get("compare_at_price"),
                    "position": variant.get("position") or v_index + 1,
                    "inventory_item_id": _as_int(variant.get("inventory_item_id")),
                    "option1": variant.get("option1"),
                    "option2": variant.get("option2"),
                    "option3": variant.get("option3"),
                }

        if products:
            product_rows = list(products.values())
            execute_with_retry(
                "upsert_vendor_products",
                lambda: self.db.table(PRODUCTS_TABLE).upsert(
                    product_rows,
                    on_conflict="shopify_product_id"
                ).execute()
            )

            if variants:
                variant_rows = list(variants.values())
                execute_with_retry(
                    "upsert_vendor_variants",
                    lambda: self.db.table(VARIANTS_TABLE).upsert(
                        variant_rows,
                        on_conflict="shopify_variant_id"
                    ).execute()
                )

            decision_rows = [
                {"shopify_product_id": pid, "decision": DecisionState.PENDING.value}
                for pid in products
            ]
            execute_with_retry(
                "seed_import_decisions",
                lambda: self.db.table(DECISIONS_TABLE).upsert(
                    decision_rows,
                    on_conflict="shopify_product_id",
                    ignore_duplicates=True
                ).execute()
            )

        logger.info(
            "vendor_products_merged",
            merged=len(products),
            variants=len(variants),
            failed=len(failures)
        )

        return MergeStats(merged=len(products), failures=failures)


# Singleton instance
_staging_merge_service: Optional[StagingMergeService] = None


def get_staging_merge_service() -> StagingMergeService:
    """Get or create StagingMergeService instance."""
    global _staging_merge_service
    if _staging_merge_service is None:
        _staging_merge_service = StagingMergeService()
    return _staging_merge_service
