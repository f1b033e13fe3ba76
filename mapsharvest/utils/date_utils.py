"""
Date utility functions.
"""

from datetime import datetime, timezone


def get_current_timestamp() -> str:
    """
    Get current timestamp in ISO format with UTC timezone.

    Example:
        >>> ts = get_current_timestamp()
        >>> ts.endswith('+00:00')
        True
    """
    return datetime.now(timezone.utc).isoformat()


def format_date(dt: datetime, fmt: str = "%Y%m%d") -> str:
    """
    Format datetime object to string (used for dated log and output names).

    Example:
        >>> format_date(datetime(2026, 1, 8))
        '20260108'
    """
    return dt.strftime(fmt)
