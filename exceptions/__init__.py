"""
Custom exceptions module.
"""

from exceptions.errors import (
    # Base exceptions
    AppError,
    NotFoundError,
    ValidationError,
    ConflictError,
    ExternalServiceError,
    DatabaseError,

    # Upstream
    UpstreamAPIError,

    # Staging
    StagedRecordValidationError,
    PersistenceError,
    StagedProductNotFoundError,

    # Decisions / reconciliation
    DecisionConflictError,
    ReconciliationConflictError,
)

__all__ = [
    # Base
    "AppError",
    "NotFoundError",
    "ValidationError",
    "ConflictError",
    "ExternalServiceError",
    "DatabaseError",

    # Upstream
    "UpstreamAPIError",

    # Staging
    "StagedRecordValidationError",
    "PersistenceError",
    "StagedProductNotFoundError",

    # Decisions / reconciliation
    "DecisionConflictError",
    "ReconciliationConflictError",
]
