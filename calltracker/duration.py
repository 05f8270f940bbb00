"""
Timestamp parsing and call duration calculation.

parse_timestamp() is the single place where raw timestamp values coming from
requests are interpreted. Everything past it works with timezone-aware UTC
datetimes.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Union

from calltracker.errors import DurationTooLong, InvalidTimestamp, NegativeDuration

logger = logging.getLogger(__name__)

MAX_CALL_DURATION_SECONDS = 3600

# Stored timestamps are fixed width, so four-digit years only
MIN_TIMESTAMP_YEAR = 1000

TimestampLike = Union[str, datetime]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: TimestampLike) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a 'Z' suffix, a numeric offset, or no offset at all (treated as
    UTC). Datetime instances are normalized the same way.

    Raises:
        InvalidTimestamp: value is empty, not a string/datetime, unparseable,
            or outside years 1000-9999 once converted to UTC
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            logger.debug(f"Unparseable timestamp: {value!r}")
            raise InvalidTimestamp(value)
    else:
        raise InvalidTimestamp(value)

    try:
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        else:
            parsed = parsed.astimezone(timezone.utc)
    except OverflowError:
        # The offset pushes the instant outside the datetime range
        logger.debug(f"Timestamp out of range: {value!r}")
        raise InvalidTimestamp(value)

    if parsed.year < MIN_TIMESTAMP_YEAR:
        logger.debug(f"Timestamp before year {MIN_TIMESTAMP_YEAR}: {value!r}")
        raise InvalidTimestamp(value)
    return parsed


def elapsed_seconds(started: datetime, ended: datetime) -> int:
    """Whole seconds between two instants, floored."""
    return (ended - started) // timedelta(seconds=1)


def compute_duration(
    started: TimestampLike,
    ended: TimestampLike,
    max_duration: int = MAX_CALL_DURATION_SECONDS,
) -> int:
    """
    Compute the duration of a call in whole seconds.

    Args:
        started: Call start instant
        ended: Call end instant
        max_duration: Upper bound in seconds; longer calls are rejected

    Returns:
        floor(ended - started) in seconds

    Raises:
        InvalidTimestamp: either timestamp cannot be parsed
        NegativeDuration: ended is before started
        DurationTooLong: result is above max_duration
    """
    start = parse_timestamp(started)
    end = parse_timestamp(ended)
    seconds = elapsed_seconds(start, end)

    if seconds < 0:
        raise NegativeDuration(seconds)
    if seconds > max_duration:
        raise DurationTooLong(seconds, max_duration)
    return seconds
