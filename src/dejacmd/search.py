"""
Search parameters.

Timestamp bounds are written YYYY-MM-DD_HH:MM:SS; the time part may be
shortened to HH:MM or left out (midnight), and a space may stand in for the
underscore. Bounds are taken as UTC, like every stored timestamp.
"""

import re
from dataclasses import dataclass
from datetime import UTC, datetime

from dejacmd.errors import InvalidTimeRangeError
from dejacmd.schema import utc_now

DEFAULT_LIMIT = 25

TIMESTAMP_BOUND_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})"
    r"(?:[_ T](?P<hour>\d{2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?)?$"
)


@dataclass(frozen=True)
class SearchCriteria:
    """
    Filter for a history search.

    Attributes:
        text: Substring (or regex) to match against the command, None for all
        regex: Treat text as a regular expression
        ignore_case: Case-insensitive matching
        start: Inclusive lower timestamp bound
        end: Inclusive upper timestamp bound
        limit: Maximum number of results, 0 for no limit
        unique: Collapse duplicate commands into their most recent use
    """

    text: str | None = None
    regex: bool = False
    ignore_case: bool = False
    start: datetime | None = None
    end: datetime | None = None
    limit: int = DEFAULT_LIMIT
    unique: bool = False


def parse_timestamp_bound(value: str) -> datetime:
    """
    Parse one search bound.

    Raises:
        InvalidTimeRangeError: If the value is not a valid date/time
    """
    match = TIMESTAMP_BOUND_RE.match(value.strip())
    if not match:
        raise InvalidTimeRangeError(value=value)
    text = match.group("date")
    text += f" {match.group('hour') or '00'}:{match.group('minute') or '00'}:{match.group('second') or '00'}"
    try:
        return datetime.strptime(text, "%Y-%m-%d %H:%M:%S").replace(tzinfo=UTC)
    except ValueError as e:
        raise InvalidTimeRangeError(value=value) from e


def parse_time_range(
    start: str | None,
    end: str | None,
    now: datetime | None = None,
) -> tuple[datetime | None, datetime | None]:
    """
    Parse the optional start/end pair.

    A start without an end is bounded at now; an end without a start is
    rejected, as is a start after the end.

    Raises:
        InvalidTimeRangeError: If either bound is invalid or the pair is inconsistent
    """
    if not start and not end:
        return None, None
    if not start:
        raise InvalidTimeRangeError(
            message="An end timestamp requires a start timestamp",
            value=end or "",
            suggestion="Pass --start as well as --end",
        )
    start_at = parse_timestamp_bound(start)
    end_at = parse_timestamp_bound(end) if end else (now or utc_now())
    if start_at > end_at:
        raise InvalidTimeRangeError(
            message=f"Start {start!r} is after end {end or 'now'!r}",
            value=start,
        )
    return start_at, end_at
