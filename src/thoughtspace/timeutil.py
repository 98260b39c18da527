"""Human-friendly time handling for the admin CLI.

``parse_since`` accepts "2026-01-15", "90 minutes ago", "3 days ago",
"yesterday" or "last week"; ``format_age`` renders "5 minutes ago".
"""

import re
from datetime import datetime, timedelta, timezone

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

_AGO = re.compile(r"^(\d+)\s*(second|minute|hour|day|week|month|year)s?\s+ago$")

_UNITS = {
    "second": lambda n: timedelta(seconds=n),
    "minute": lambda n: timedelta(minutes=n),
    "hour": lambda n: timedelta(hours=n),
    "day": lambda n: timedelta(days=n),
    "week": lambda n: timedelta(weeks=n),
    "month": lambda n: relativedelta(months=n),
    "year": lambda n: relativedelta(years=n),
}

# Largest unit first
_AGE_STEPS = (
    ("year", 365 * 86400),
    ("month", 30 * 86400),
    ("week", 7 * 86400),
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
)


def parse_since(ref: str, now: datetime | None = None) -> datetime:
    """Parse a time reference into an aware UTC datetime.

    Raises:
        ValueError: If the reference cannot be parsed
    """
    now = now or datetime.now(timezone.utc)
    text = ref.strip().lower()

    if text == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if text == "yesterday":
        return (now - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    if text.startswith("last "):
        unit = text[5:]
        if unit in _UNITS:
            return now - _UNITS[unit](1)

    match = _AGO.match(text)
    if match:
        return now - _UNITS[match.group(2)](int(match.group(1)))

    try:
        parsed = dateparser.parse(text)
    except (ValueError, OverflowError, dateparser.ParserError) as e:
        raise ValueError(f"Cannot parse time reference: {ref}") from e
    if parsed is None:
        raise ValueError(f"Cannot parse time reference: {ref}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_age(dt: datetime | None, now: datetime | None = None) -> str:
    """Render how long ago ``dt`` was ("never" for None)."""
    if dt is None:
        return "never"
    now = now or datetime.now(timezone.utc)
    seconds = int((now - dt).total_seconds())
    if seconds < 0:
        return "in the future"
    for unit, size in _AGE_STEPS:
        if seconds >= size:
            n = seconds // size
            return f"{n} {unit}{'s' if n != 1 else ''} ago"
    return "just now" if seconds < 5 else f"{seconds} seconds ago"
