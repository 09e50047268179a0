"""Timestamp helpers shared by the attendance modules.

Timestamps are stored as naive local ISO strings (``YYYY-MM-DDTHH:MM:SS``) so
that lexical order in SQL matches chronological order.
"""

import math
from datetime import datetime, date, time
from typing import Optional, Union

TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%S'

Timestamp = Union[str, datetime]


def parse_timestamp(value: Optional[Timestamp]) -> Optional[datetime]:
    """
    Parse an ISO timestamp (or pass a datetime through).

    Timezone-aware values are converted to naive local time.

    Raises:
        ValueError: If the value is not a valid timestamp
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed.replace(microsecond=0)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime(TIMESTAMP_FORMAT)


def combine_date_time(day: Union[str, date], clock_time: Union[str, time]) -> datetime:
    """Combine ``2025-03-01`` and ``09:00`` into a datetime."""
    if isinstance(day, str):
        day = date.fromisoformat(day.strip())
    if isinstance(clock_time, str):
        clock_time = time.fromisoformat(clock_time.strip())
    return datetime.combine(day, clock_time)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, rounded half up."""
    return math.floor((end - start).total_seconds() / 60 + 0.5)
