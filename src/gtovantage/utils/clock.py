"""Epoch-millisecond time helpers.

Token timestamps are stored as integer epoch milliseconds in every backend so
that a record reloaded from storage compares exactly as it did when written.
"""

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], int]

MS_PER_HOUR = 60 * 60 * 1000
MS_PER_DAY = 24 * MS_PER_HOUR


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return to_epoch_ms(datetime.now(UTC))


def to_epoch_ms(value: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=UTC)
