"""
Vendor inbox service.

Filtered, paginated and counted views over staged products awaiting
(or carrying) an import decision. Reads the v_vendor_inbox view, which
joins vendor_products with vendor_import_decisions and exposes the
product's SKUs as one searchable text column.
"""

import re
from typing import Optional
import structlog

from config import get_supabase_client
from models.inbox import InboxItem, InboxPage
from models.decision import DecisionState
from exceptions import ValidationError, DatabaseError

logger = structlog.get_logger(__name__)

INBOX_VIEW = "v_vendor_inbox"

# Characters that delimit PostgREST filter expressions or act as wildcards
_FILTER_RESERVED = re.compile(r"[,()*%\"\\]")


def normalize_search(term: Optional[str]) -> str:
    """Strip filter syntax characters and collapse whitespace."""
    if not term:
        return ""
    cleaned = _FILTER_RESERVED.sub(" ", term)
    return " ".join(cleaned.split())


def ilike_operand(term: str) -> str:
    """
    Quoted substring pattern for an or_ ilike clause.

    `_` is a single-character wildcard in ILIKE, so it is escaped to
    match itself. Inside PostgREST double quotes a backslash is written
    twice.
    """
    return '"*' + term.replace("_", "\\\\_") + '*"'


class InboxService:
    """
    Decision inbox queries.

    Items and their total come back from a single request with an exact
    count, so both are taken from one statement snapshot. count_inbox is
    a separate request and is point-in-time relative to any listing.
    """

    def __init__(self, db=None):
        self.db = db or get_supabase_client()

    def _apply_filters(
        self,
        query,
        search: Optional[str],
        status: Optional[str],
        decision: Optional[str]
    ):
        """
        Conjunction of search, status and decision.

        Without a decision filter only active rows are listed; an
        explicit decision filter also reaches rejected (hidden) products.
        """
        if not decision or not decision.strip():
            query = query.eq("is_active", True)

        term = normalize_search(search)
        if term:
            operand = ilike_operand(term)
            query = query.or_(f"title.ilike.{operand},skus.ilike.{operand}")

        if status:
            query = query.eq("status", status.strip().lower())

        if decision and decision.strip():
            value = decision.strip().lower()
            valid = [d.value for d in DecisionState]
            if value not in valid:
                raise ValidationError(
                    f"Unknown decision filter: {decision}",
                    code="INVALID_DECISION_FILTER",
                    details={"provided": decision, "valid": valid}
                )
            query = query.eq("decision", value)

        return query

    def list_inbox(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        decision: Optional[str] = None,
        page: int = 1,
        page_size: int = 20
    ) -> InboxPage:
        """
        List staged products matching the filters.

        Args:
            search: Case-insensitive substring of title or any SKU
            status: Upstream product status
            decision: pending, accepted or rejected
            page: Page number (1-indexed)
            page_size: Items per page

        Returns:
            InboxPage with items, total, total_pages, current_page
        """
        if page < 1 or page_size < 1:
            raise ValidationError(
                "page and page_size must be positive",
                details={"page": page, "page_size": page_size}
            )

        logger.debug(
            "listing_inbox",
            search=search,
            status=status,
            decision=decision,
            page=page,
            page_size=page_size
        )

        query = self.db.table(INBOX_VIEW).select("*", count="exact")
        query = self._apply_filters(query, search, status, decision)

        offset = (page - 1) * page_size
        query = (
            query.order("updated_at", desc=True)
            .order("shopify_product_id")
            .range(offset, offset + page_size - 1)
        )

        try:
            result = query.execute()
        except Exception as e:
            logger.error("list_inbox_failed", error=str(e))
            raise DatabaseError("select", str(e))

        items = [InboxItem(**row) for row in result.data or []]
        total = result.count or 0

        logger.info(
            "inbox_listed",
            count=len(items),
            total=total,
            page=page
        )

        return InboxPage.create(items=items, total=total, page=page, page_size=page_size)

    def count_inbox(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        decision: Optional[str] = None
    ) -> int:
        """
        Count staged products matching the filters.

        Returns:
            Number of matching rows
        """
        query = self.db.table(INBOX_VIEW).select("shopify_product_id", count="exact", head=True)
        query = self._apply_filters(query, search, status, decision)

        try:
            result = query.execute()
        except Exception as e:
            logger.error("count_inbox_failed", error=str(e))
            raise DatabaseError("select", str(e))

        count = result.count or 0
        logger.debug("inbox_counted", count=count)
        return count


# Singleton instance
_inbox_service: Optional[InboxService] = None


def get_inbox_service() -> InboxService:
    """Get or create InboxService instance."""
    global _inbox_service
    if _inbox_service is None:
        _inbox_service = InboxService()
    return _inbox_service
