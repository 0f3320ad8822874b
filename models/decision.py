"""
Import decision models.

One decision per staged product. pending is the initial state;
accepted and rejected are terminal.
"""

from typing import Any, Optional, Literal
from datetime import datetime
from enum import Enum
from pydantic import Field

from models.base import BaseSchema
from models.catalog import ReconcileResult


class DecisionState(str, Enum):
    """State of an import decision."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not DecisionState.PENDING


class ImportDecision(BaseSchema):
    """Stored decision row."""

    shopify_product_id: int
    decision: DecisionState = DecisionState.PENDING
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    reconciled_at: Optional[datetime] = None


class DecideRequest(BaseSchema):
    """Operator decision on a staged product."""

    decision: Literal["accepted", "rejected"]
    actor: str = Field(..., min_length=1, max_length=200, description="Operator identity")


class DecisionResult(BaseSchema):
    """
    Result of a decide call.

    changed is False for an idempotent re-submission of the current
    decision; reconciliation is only present when this call accepted.
    """

    shopify_product_id: int
    decision: DecisionState
    changed: bool
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    reconciliation: Optional[ReconcileResult] = None
    reconciliation_error: Optional[str] = Field(
        None,
        description="Set when the decision committed but reconciliation failed"
    )


class BulkDecisionItem(BaseSchema):
    shopify_product_id: int
    decision: Literal["accepted", "rejected"]


class BulkDecideRequest(BaseSchema):
    """Several decisions recorded by one operator."""

    items: list[BulkDecisionItem] = Field(..., min_length=1, max_length=500)
    actor: str = Field(..., min_length=1, max_length=200, description="Operator identity")


class BulkDecisionOutcome(BaseSchema):
    """Either result or error is set."""

    shopify_product_id: int
    result: Optional[DecisionResult] = None
    error: Optional[dict[str, Any]] = Field(
        None,
        description="Error envelope body (code, message, details) for this product"
    )


class BulkDecisionResult(BaseSchema):
    outcomes: list[BulkDecisionOutcome]
    succeeded: int
    failed: int
