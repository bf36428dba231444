"""
Network utilities: remote image fetch with exponential backoff retry.
"""

from .retry import (
    RetryConfig,
    RetryableError,
    with_retry,
)
from .fetch import fetch_url_bytes

__all__ = [
    "RetryConfig",
    "RetryableError",
    "with_retry",
    "fetch_url_bytes",
]
