"""Shared date and time utilities.

Weekday-code handling and strict ISO date / ``HH:MM`` parsing used by the
recurrence codec, the expander and the session workflows.
"""
from __future__ import annotations

import datetime as _dt
import re
from typing import Any, List

from .constants import FMT_DATE

__all__ = [
    "DAY_MAP",
    "WEEKDAY_CODES",
    "normalize_day",
    "parse_date",
    "parse_hhmm",
    "sort_day_codes",
]

# Two-letter RRULE codes in Mon->Sun order (index == date.weekday())
WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

# Day-of-week name/abbreviation to RRULE code mapping
DAY_MAP = {
    "monday": "MO",
    "mon": "MO",
    "tuesday": "TU",
    "tue": "TU",
    "tues": "TU",
    "wednesday": "WE",
    "wed": "WE",
    "thursday": "TH",
    "thu": "TH",
    "thur": "TH",
    "thurs": "TH",
    "friday": "FR",
    "fri": "FR",
    "saturday": "SA",
    "sat": "SA",
    "sunday": "SU",
    "sun": "SU",
}

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::\d{2})?$")


def normalize_day(day_name: str) -> str:
    """Convert a day name or code to its two-letter code (e.g., 'Monday' -> 'MO').

    Returns '' when the value is not a recognised weekday.
    """
    s = (day_name or "").strip()
    if s.upper() in WEEKDAY_CODES:
        return s.upper()
    return DAY_MAP.get(s.lower(), "")


def sort_day_codes(codes: List[str]) -> List[str]:
    """Return unique weekday codes in Mon->Sun order."""
    wanted = set(codes)
    return [c for c in WEEKDAY_CODES if c in wanted]


def parse_date(value: Any) -> _dt.date:
    """Parse a ``YYYY-MM-DD`` string (or pass through a date).

    A datetime-like string keeps only its date part. Raises ValueError on
    anything else.
    """
    if isinstance(value, _dt.datetime):
        return value.date()
    if isinstance(value, _dt.date):
        return value
    s = str(value or "").strip()
    if "T" in s:
        s = s.split("T", 1)[0]
    return _dt.datetime.strptime(s, FMT_DATE).date()


def parse_hhmm(value: Any) -> _dt.time:
    """Parse ``HH:MM`` (seconds tolerated) into a time. Raises ValueError."""
    if isinstance(value, _dt.time):
        return value
    m = _HHMM_RE.match(str(value or "").strip())
    if not m:
        raise ValueError(f"Invalid time '{value}'; expected HH:MM")
    return _dt.time(int(m.group(1)), int(m.group(2)))

