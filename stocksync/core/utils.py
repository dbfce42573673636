"""
Utility functions for the application.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP(timezone=False) columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def quantity_value(value: Optional[Dict[str, Any]], key: str = "available") -> Optional[int]:
    """
    Read a quantity out of a JSON value column such as {"available": 12}.
    Returns None when the value is missing or not numeric.
    """
    if not value or key not in value:
        return None
    try:
        return int(value[key])
    except (TypeError, ValueError):
        return None
