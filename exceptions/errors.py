"""
Custom exception classes for the application.

Every error carries a code, a message and an HTTP status so routes can
render the standard error envelope.
"""

from typing import Optional, Any
from datetime import datetime, timezone


class AppError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions inherit from this.

    Attributes:
        code: Error code (e.g., "DECISION_CONFLICT")
        message: Human-readable message
        status_code: HTTP status code
        details: Additional context
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert to API response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp
            }
        }


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(
        self,
        resource: str,
        identifier: str,
        code: Optional[str] = None
    ):
        super().__init__(
            code=code or f"{resource.upper()}_NOT_FOUND",
            message=f"{resource} not found",
            status_code=404,
            details={"id": identifier}
        )


class ValidationError(AppError):
    """Validation failed (422)."""

    def __init__(
        self,
        message: str,
        code: str = "VALIDATION_ERROR",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=422,
            details=details
        )


class ConflictError(AppError):
    """Conflict with existing resource (409)."""

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: Optional[dict] = None
    ):
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details
        )


class ExternalServiceError(AppError):
    """External service failure (503)."""

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int = 503,
        details: Optional[dict] = None
    ):
        super().__init__(
            code=f"{service.upper()}_ERROR",
            message=message,
            status_code=status_code,
            details={"service": service, **(details or {})}
        )


class DatabaseError(AppError):
    """Database operation failed (500)."""

    def __init__(
        self,
        operation: str,
        message: str,
        details: Optional[dict] = None
    ):
        super().__init__(
            code="DATABASE_ERROR",
            message=f"Database {operation} failed: {message}",
            status_code=500,
            details={"operation": operation, **(details or {})}
        )


# ===================
# UPSTREAM ERRORS
# ===================

class UpstreamAPIError(ExternalServiceError):
    """
    Upstream commerce platform call failed.

    retryable is True for 429/5xx/network failures (the run may continue
    after the page is reported failed) and False for other 4xx responses
    and missing credentials (the run aborts).
    """

    def __init__(
        self,
        message: str,
        retryable: bool,
        upstream_status: Optional[int] = None,
        details: Optional[dict] = None
    ):
        self.retryable = retryable
        self.upstream_status = upstream_status
        super().__init__(
            service="upstream",
            message=message,
            status_code=503 if retryable else 502,
            details={
                "retryable": retryable,
                "upstream_status": upstream_status,
                **(details or {})
            }
        )


# ===================
# STAGING ERRORS
# ===================

class StagedRecordValidationError(ValidationError):
    """A single staged record is missing required fields."""

    def __init__(self, record_key: str, missing_fields: list[str]):
        self.record_key = record_key
        self.missing_fields = missing_fields
        super().__init__(
            code="STAGED_RECORD_INVALID",
            message=f"Record {record_key} is missing required fields: {', '.join(missing_fields)}",
            details={"record": record_key, "missing_fields": missing_fields}
        )


class PersistenceError(DatabaseError):
    """Staging or canonical write failed after retries."""

    def __init__(
        self,
        operation: str,
        message: str,
        attempts: int = 1,
        details: Optional[dict] = None
    ):
        self.attempts = attempts
        super().__init__(
            operation=operation,
            message=message,
            details={"attempts": attempts, **(details or {})}
        )
        self.code = "PERSISTENCE_ERROR"


class StagedProductNotFoundError(NotFoundError):
    """Staged vendor product (or its decision row) not found."""

    def __init__(self, shopify_product_id: str):
        super().__init__(
            resource="Staged product",
            identifier=shopify_product_id,
            code="STAGED_PRODUCT_NOT_FOUND"
        )


# ===================
# DECISION ERRORS
# ===================

class DecisionConflictError(ConflictError):
    """A terminal decision exists and a different one was requested."""

    def __init__(self, shopify_product_id: str, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            code="DECISION_CONFLICT",
            message=f"Product {shopify_product_id} is already {current}; cannot mark it {requested}",
            details={
                "shopify_product_id": shopify_product_id,
                "current_decision": current,
                "requested_decision": requested,
            }
        )


class ReconciliationConflictError(ConflictError):
    """
    Canonical field differs from the incoming staged value.

    Raised inside the reconciliation engine and resolved there by
    recording an override; callers never see it.
    """

    def __init__(self, sku: str, field_name: str, canonical_value: Any, staged_value: Any):
        self.sku = sku
        self.field_name = field_name
        self.canonical_value = canonical_value
        self.staged_value = staged_value
        super().__init__(
            code="RECONCILIATION_CONFLICT",
            message=f"{field_name} differs for SKU {sku}",
            details={
                "sku": sku,
                "field": field_name,
                "canonical_value": canonical_value,
                "staged_value": staged_value,
            }
        )
