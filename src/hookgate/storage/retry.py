"""Retry utilities for storage operations.

Provides exponential backoff retry logic for transient database errors
(dropped connections, lock timeouts). Only idempotent operations use it.
"""

from __future__ import annotations

import logging

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hookgate.exceptions import StorageError

logger = logging.getLogger(__name__)


class TransientStorageError(StorageError):
    """A storage failure that may succeed when retried."""

    code: str = "storage_unavailable"


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts with context.

    Args:
        retry_state: Current retry state from tenacity.
    """
    logger.warning(
        "Retrying database operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


# Decorator for retrying transient database errors
db_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception_type(TransientStorageError),
    before_sleep=_log_retry,
    reraise=True,
)
