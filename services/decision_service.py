"""
Import decision service.

Records operator accept/reject decisions on staged products. The
pending -> terminal transition is a conditional update that only
matches rows still pending, so two operators racing on the same
product cannot both win.
"""

from typing import Optional
from datetime import datetime, timezone
import structlog

from config import get_supabase_client
from models.decision import (
    DecisionState,
    ImportDecision,
    DecisionResult,
    BulkDecisionItem,
    BulkDecisionOutcome,
    BulkDecisionResult,
)
from models.catalog import ReconcileResult
from exceptions import (
    AppError,
    DecisionConflictError,
    StagedProductNotFoundError,
    ValidationError,
    PersistenceError,
)
from services.db_retry import execute_with_retry
from services.reconciliation_service import ReconciliationService, get_reconciliation_service

logger = structlog.get_logger(__name__)

DECISIONS_TABLE = "vendor_import_decisions"
PRODUCTS_TABLE = "vendor_products"


class DecisionService:
    """
    Decision state machine.

    pending -> accepted (terminal, triggers reconciliation once)
    pending -> rejected (terminal, hides the staged product)
    """

    def __init__(self, db=None, reconciliation_service: Optional[ReconciliationService] = None):
        self.db = db or get_supabase_client()
        self.reconciliation = reconciliation_service or get_reconciliation_service()

    # ===================
    # READ OPERATIONS
    # ===================

    def get_decision(self, shopify_product_id: int) -> ImportDecision:
        """
        Get the decision row for a staged product.

        Raises:
            StagedProductNotFoundError: If no decision row exists
        """
        result = execute_with_retry(
            "select_decision",
            lambda: self.db.table(DECISIONS_TABLE).select("*").eq(
                "shopify_product_id", shopify_product_id
            ).execute()
        )
        if not result.data:
            raise StagedProductNotFoundError(str(shopify_product_id))
        return ImportDecision(**result.data[0])

    # ===================
    # TRANSITIONS
    # ===================

    def decide(self, shopify_product_id: int, decision: str, actor: str) -> DecisionResult:
        """
        Record an operator decision.

        Re-submitting the current terminal decision is a no-op;
        requesting the other terminal state fails.

        Args:
            shopify_product_id: Staged product
            decision: "accepted" or "rejected"
            actor: Operator identity

        Returns:
            DecisionResult (changed=False for a no-op)

        Raises:
            ValidationError: Unknown decision, pending requested, or no actor
            StagedProductNotFoundError: No such staged product
            DecisionConflictError: Product already has the other decision
        """
        try:
            requested = DecisionState(decision)
        except ValueError:
            raise ValidationError(
                f"Unknown decision: {decision}",
                code="INVALID_DECISION",
                details={"provided": decision, "valid": ["accepted", "rejected"]}
            )
        if not requested.is_terminal:
            raise ValidationError(
                "Decision must be accepted or rejected",
                code="INVALID_DECISION",
                details={"provided": decision, "valid": ["accepted", "rejected"]}
            )
        if not actor or not actor.strip():
            raise ValidationError("actor is required", code="ACTOR_REQUIRED")

        logger.info(
            "deciding_product",
            shopify_product_id=shopify_product_id,
            decision=requested.value,
            actor=actor
        )

        decided_at = datetime.now(timezone.utc)

        # Compare-and-swap: only a pending row is updated
        swapped = execute_with_retry(
            "update_decision",
            lambda: self.db.table(DECISIONS_TABLE).update({
                "decision": requested.value,
                "decided_by": actor,
                "decided_at": decided_at.isoformat(),
            }).eq(
                "shopify_product_id", shopify_product_id
            ).eq(
                "decision", DecisionState.PENDING.value
            ).execute()
        )

        if not swapped.data:
            return self._resolve_lost_swap(shopify_product_id, requested)

        logger.info(
            "decision_recorded",
            shopify_product_id=shopify_product_id,
            decision=requested.value,
            actor=actor
        )

        result = DecisionResult(
            shopify_product_id=shopify_product_id,
            decision=requested,
            changed=True,
            decided_by=actor,
            decided_at=decided_at
        )

        if requested is DecisionState.ACCEPTED:
            try:
                result.reconciliation = self._reconcile(shopify_product_id)
            except AppError as e:
                # Decision is committed; retry_unreconciled picks this up later
                logger.error(
                    "reconciliation_after_accept_failed",
                    shopify_product_id=shopify_product_id,
                    error=e.message,
                    code=e.code
                )
                result.reconciliation_error = e.message
        else:
            self._deactivate(shopify_product_id)

        return result

    def decide_many(self, items: list[BulkDecisionItem], actor: str) -> BulkDecisionResult:
        """
        Record several decisions for one operator.

        Each product is decided independently; a conflict, missing
        product or write failure is reported in its outcome and the
        remaining products are still decided.

        Raises:
            ValidationError: If actor is missing
        """
        if not actor or not actor.strip():
            raise ValidationError("actor is required", code="ACTOR_REQUIRED")

        outcomes = []
        for item in items:
            try:
                result = self.decide(item.shopify_product_id, item.decision, actor)
            except AppError as e:
                logger.warning(
                    "bulk_decision_item_failed",
                    shopify_product_id=item.shopify_product_id,
                    code=e.code,
                    error=e.message
                )
                outcomes.append(BulkDecisionOutcome(
                    shopify_product_id=item.shopify_product_id,
                    error=e.to_dict()["error"]
                ))
            else:
                outcomes.append(BulkDecisionOutcome(
                    shopify_product_id=item.shopify_product_id,
                    result=result
                ))

        failed = sum(1 for o in outcomes if o.error is not None)
        logger.info(
            "bulk_decisions_recorded",
            actor=actor,
            requested=len(outcomes),
            failed=failed
        )
        return BulkDecisionResult(
            outcomes=outcomes,
            succeeded=len(outcomes) - failed,
            failed=failed
        )

    def _resolve_lost_swap(self, shopify_product_id: int, requested: DecisionState) -> DecisionResult:
        """The conditional update matched nothing: not found, no-op, or conflict."""
        current = self.get_decision(shopify_product_id)

        if current.decision == requested:
            logger.info(
                "decision_noop",
                shopify_product_id=shopify_product_id,
                decision=requested.value
            )
            if requested is DecisionState.REJECTED:
                # Finishes a rejection whose deactivate write failed earlier
                self._deactivate(shopify_product_id)
            return DecisionResult(
                shopify_product_id=shopify_product_id,
                decision=current.decision,
                changed=False,
                decided_by=current.decided_by,
                decided_at=current.decided_at
            )

        if current.decision is DecisionState.PENDING:
            # Row was pending yet the conditional update matched nothing
            raise PersistenceError(
                "update_decision",
                f"decision for {shopify_product_id} was not updated"
            )

        logger.warning(
            "decision_conflict",
            shopify_product_id=shopify_product_id,
            current=current.decision.value,
            requested=requested.value
        )
        raise DecisionConflictError(
            str(shopify_product_id),
            current.decision.value,
            requested.value
        )

    def _reconcile(self, shopify_product_id: int) -> ReconcileResult:
        product = self.reconciliation.load_staged_product(shopify_product_id)
        result = self.reconciliation.reconcile(product)

        execute_with_retry(
            "stamp_reconciled_at",
            lambda: self.db.table(DECISIONS_TABLE).update({
                "reconciled_at": datetime.now(timezone.utc).isoformat()
            }).eq("shopify_product_id", shopify_product_id).execute()
        )
        return result

    def _deactivate(self, shopify_product_id: int) -> None:
        """A rejection only hides the staged product; no canonical writes."""
        execute_with_retry(
            "deactivate_vendor_product",
            lambda: self.db.table(PRODUCTS_TABLE).update(
                {"is_active": False}
            ).eq("shopify_product_id", shopify_product_id).execute()
        )
        logger.info("staged_product_deactivated", shopify_product_id=shopify_product_id)

    # ===================
    # RECOVERY
    # ===================

    def retry_unreconciled(self) -> list[ReconcileResult]:
        """
        Reconcile accepted decisions that never finished reconciling.

        Returns:
            Results for each product reconciled in this call
        """
        pending = execute_with_retry(
            "select_unreconciled",
            lambda: self.db.table(DECISIONS_TABLE).select("shopify_product_id").eq(
                "decision", DecisionState.ACCEPTED.value
            ).is_("reconciled_at", "null").execute()
        )

        product_ids = [row["shopify_product_id"] for row in pending.data or []]
        logger.info("retrying_unreconciled", count=len(product_ids))

        results = []
        for product_id in product_ids:
            try:
                results.append(self._reconcile(product_id))
            except AppError as e:
                logger.error(
                    "reconciliation_retry_failed",
                    shopify_product_id=product_id,
                    error=e.message
                )

        return results


# Singleton instance
_decision_service: Optional[DecisionService] = None


def get_decision_service() -> DecisionService:
    """Get or create DecisionService instance."""
    global _decision_service
    if _decision_service is None:
        _decision_service = DecisionService()
    return _decision_service
