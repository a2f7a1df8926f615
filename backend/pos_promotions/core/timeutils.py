"""Clock helpers.

Validity windows and usage timestamps are stored as naive UTC datetimes so
that comparisons behave the same on SQLite (which drops tzinfo) and on
PostgreSQL. Services accept a ``clock`` callable returning such a value,
which lets tests pin "now".
"""

from datetime import datetime, timezone
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
