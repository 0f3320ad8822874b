"""
Retry wrapper for Supabase writes.

Staging and canonical writes are retried with exponential backoff; on
exhaustion the failure surfaces as PersistenceError so callers can
record a partial failure instead of crashing the run.
"""

import time
from typing import Callable, Optional, TypeVar
import structlog

from config import settings
from exceptions import AppError, PersistenceError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def execute_with_retry(
    operation: str,
    func: Callable[[], T],
    max_retries: Optional[int] = None,
    backoff_seconds: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run a database call, retrying on failure.

    Args:
        operation: Name used in logs and in the raised error
        func: Zero-argument callable performing the query
        max_retries: Defaults to settings.persistence_max_retries
        backoff_seconds: Defaults to settings.persistence_backoff_seconds

    Returns:
        Whatever func returns

    Raises:
        PersistenceError: After max_retries + 1 failed attempts
        AppError: Application errors from func are not retried
    """
    retries = settings.persistence_max_retries if max_retries is None else max_retries
    backoff = settings.persistence_backoff_seconds if backoff_seconds is None else backoff_seconds

    last_error: Optional[Exception] = None
    for attempt in range(retries + 1):
        try:
            return func()
        except AppError:
            raise
        except Exception as e:
            last_error = e
            if attempt < retries:
                delay = backoff * (2 ** attempt)
                logger.warning(
                    "db_write_retrying",
                    operation=operation,
                    attempt=attempt + 1,
                    max_retries=retries,
                    delay_seconds=delay,
                    error=str(e),
                    error_type=type(e).__name__
                )
                sleep(delay)

    logger.error(
        "db_write_failed",
        operation=operation,
        attempts=retries + 1,
        error=str(last_error)
    )
    raise PersistenceError(operation, str(last_error), attempts=retries + 1)
