"""
Shared utility functions for the DocSpace workspace.
"""

from datetime import datetime, timezone

from dateutil import parser as dateutil_parser


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a backend timestamp into an aware datetime.

    The backend sends ISO 8601 strings, sometimes without an offset
    (``2024-05-01T10:00:00``); naive values are assumed to be UTC.
    Returns None if the value cannot be parsed.

    Args:
        value: The timestamp string (or an existing datetime).

    Returns:
        An aware datetime, or None if parsing fails.
    """
    if isinstance(value, datetime):
        parsed = value
    elif not value or not isinstance(value, str):
        return None
    else:
        try:
            parsed = dateutil_parser.isoparse(value)
        except (ValueError, TypeError, OverflowError):
            try:
                parsed = dateutil_parser.parse(value)
            except (ValueError, TypeError, OverflowError):
                return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
