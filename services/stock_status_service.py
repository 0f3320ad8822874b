"""
Stock status service.

Derives in_stock / low_stock / out_of_stock tags from quantities.
Read-only: nothing here writes to the database.
"""

from typing import Optional
from datetime import datetime
import structlog

from config import get_supabase_client, settings
from models.catalog import StockStatus, VariantStockStatus, StockStatusReport
from models.sync import InventoryHealth
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)

CANONICAL_TABLE = "product_variants"
INVENTORY_TABLE = "vendor_inventory_levels"

# Supabase caps a single select at 1000 rows
FETCH_BATCH = 1000


def stock_status(quantity: int, threshold: int) -> StockStatus:
    """
    Tag a quantity against its low-stock threshold.

    quantity == 0 is out of stock; 0 < quantity <= threshold is low;
    anything above the threshold is in stock. Negative quantities are
    treated as out of stock.
    """
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


class StockStatusService:
    """Low-stock evaluation over canonical and staged quantities."""

    def __init__(self, db=None):
        self.db = db or get_supabase_client()

    def _fetch_all(self, table: str, columns: str, order: str) -> list[dict]:
        rows: list[dict] = []
        offset = 0
        while True:
            result = (
                self.db.table(table)
                .select(columns)
                .order(order)
                .range(offset, offset + FETCH_BATCH - 1)
                .execute()
            )
            batch = result.data or []
            rows.extend(batch)
            if len(batch) < FETCH_BATCH:
                return rows
            offset += FETCH_BATCH

    def evaluate(self, status: Optional[StockStatus] = None) -> StockStatusReport:
        """
        Stock status for every canonical variant.

        Args:
            status: Only include items with this status (counts still
                cover the whole catalog)

        Returns:
            StockStatusReport
        """
        try:
            rows = self._fetch_all(
                CANONICAL_TABLE,
                "sku,stock_quantity,low_stock_threshold",
                "sku"
            )
        except Exception as e:
            logger.error("stock_status_query_failed", error=str(e))
            raise DatabaseError("select", str(e))

        report = StockStatusReport(total=len(rows))
        for row in rows:
            quantity = int(row.get("stock_quantity") or 0)
            threshold = row.get("low_stock_threshold")
            if threshold is None:
                threshold = settings.default_low_stock_threshold

            item = VariantStockStatus(
                sku=row["sku"],
                stock_quantity=quantity,
                low_stock_threshold=threshold,
                status=stock_status(quantity, threshold)
            )

            if item.status is StockStatus.IN_STOCK:
                report.in_stock_count += 1
            elif item.status is StockStatus.LOW_STOCK:
                report.low_stock_count += 1
            else:
                report.out_of_stock_count += 1

            if status is None or item.status is status:
                report.items.append(item)

        logger.info(
            "stock_status_evaluated",
            total=report.total,
            low_stock=report.low_stock_count,
            out_of_stock=report.out_of_stock_count
        )

        return report

    def staged_inventory_health(self, threshold: Optional[int] = None) -> InventoryHealth:
        """Stock status counts over staged inventory levels."""
        limit = settings.default_low_stock_threshold if threshold is None else threshold

        try:
            rows = self._fetch_all(
                INVENTORY_TABLE,
                "inventory_item_id,location_id,available,updated_at",
                "inventory_item_id"
            )
        except Exception as e:
            logger.error("inventory_health_query_failed", error=str(e))
            raise DatabaseError("select", str(e))

        health = InventoryHealth(total_items=len(rows))
        latest: Optional[datetime] = None

        for row in rows:
            tag = stock_status(int(row.get("available") or 0), limit)
            if tag is StockStatus.IN_STOCK:
                health.in_stock += 1
            elif tag is StockStatus.LOW_STOCK:
                health.low_stock += 1
            else:
                health.out_of_stock += 1

            updated = row.get("updated_at")
            if updated:
                stamp = datetime.fromisoformat(str(updated).replace("Z", "+00:00"))
                if latest is None or stamp > latest:
                    latest = stamp

        health.last_updated = latest
        return health


# Singleton instance
_stock_status_service: Optional[StockStatusService] = None


def get_stock_status_service() -> StockStatusService:
    """Get or create StockStatusService instance."""
    global _stock_status_service
    if _stock_status_service is None:
        _stock_status_service = StockStatusService()
    return _stock_status_service
