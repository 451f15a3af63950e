"""Utility modules for the fund allocator."""

from .retry import RetryPolicy, backoff_delay, retry_with_backoff
from .logging import (
    setup_logging,
    setup_logging_from_settings,
    JSONFormatter,
    log_price,
    log_purchase,
    log_solver_stage,
)

__all__ = [
    "retry_with_backoff",
    "RetryPolicy",
    "backoff_delay",
    "setup_logging",
    "setup_logging_from_settings",
    "JSONFormatter",
    "log_price",
    "log_purchase",
    "log_solver_stage",
]
