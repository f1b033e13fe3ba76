"""
Shared utility functions for mapsharvest.

- Date helpers
- Retry logic with exponential backoff
- Record filters (rating, open/closed status)
"""

from mapsharvest.utils.date_utils import get_current_timestamp, format_date
from mapsharvest.utils.retry import retry_async_with_backoff, RetryConfig

__all__ = [
    "get_current_timestamp",
    "format_date",
    "retry_async_with_backoff",
    "RetryConfig",
]
