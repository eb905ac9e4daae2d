"""Utility helpers shared across the pipeline."""

from .retry import RetryConfig, RetryState, call_with_retry, next_delay
from .tracing import get_current_trace_ids, new_operation_id

__all__ = [
    "RetryConfig",
    "RetryState",
    "call_with_retry",
    "next_delay",
    "get_current_trace_ids",
    "new_operation_id",
]
