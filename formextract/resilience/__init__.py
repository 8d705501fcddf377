"""Resilience utilities for upstream extractor calls.

- Retry Logic: Handles transient errors with exponential backoff
"""

from formextract.resilience.retry import async_retry_with_backoff, compute_delay, RetryConfig

__all__ = [
    "async_retry_with_backoff",
    "compute_delay",
    "RetryConfig",
]
