"""Planner data model.

Recurrence patterns are immutable values: a series is changed by replacing
its whole pattern. The end condition is a tagged variant (``Never``,
``Until`` or ``Count``) so that "both set" and "neither set" cannot be
represented.

Sessions, courses and study programs are plain mutable records; their hour
fields are derived by :mod:`study_planner.hours` and never edited directly.
"""
from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple, Union

from core.constants import DEFAULT_HOURS_PER_ECTS, DEFAULT_TOTAL_ECTS
from core.date_utils import WEEKDAY_CODES, normalize_day, parse_date, parse_hhmm, sort_day_codes

from .errors import InvalidPattern

__all__ = [
    "Count",
    "Course",
    "CourseStatus",
    "EndCondition",
    "Frequency",
    "Never",
    "RecurrencePattern",
    "ScheduledSession",
    "SeriesRecord",
    "StudyProgram",
    "compute_duration_minutes",
]


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


@dataclass(frozen=True)
class Never:
    """Series without a natural end; expansion needs a caller horizon."""


@dataclass(frozen=True)
class Until:
    """Series ends on ``date`` (inclusive)."""
    date: _dt.date


@dataclass(frozen=True)
class Count:
    """Series ends after ``n`` occurrences, the anchor included."""
    n: int

    def __post_init__(self) -> None:
        if isinstance(self.n, bool) or not isinstance(self.n, int) or self.n < 1:
            raise InvalidPattern(f"COUNT must be a positive integer, got {self.n!r}")


EndCondition = Union[Never, Until, Count]


def _normalize_by_day(values: Iterable[str]) -> Tuple[str, ...]:
    if isinstance(values, str):
        values = [v for v in values.replace(";", ",").split(",")]
    codes: List[str] = []
    for raw in values:
        if not str(raw).strip():
            continue
        code = normalize_day(str(raw))
        if not code:
            raise InvalidPattern(f"Unknown weekday code '{raw}'")
        codes.append(code)
    return tuple(sort_day_codes(codes))


@dataclass(frozen=True)
class RecurrencePattern:
    """Structured recurrence rule.

    ``by_day`` only applies to WEEKLY and ``by_month_day`` only to MONTHLY;
    values given for other frequencies are dropped so that equal rules compare
    equal. Weekday codes are kept in Mon->Sun order.
    """

    frequency: Frequency
    interval: int = 1
    by_day: Tuple[str, ...] = ()
    by_month_day: Optional[int] = None
    end: EndCondition = field(default_factory=Never)

    def __post_init__(self) -> None:
        try:
            freq = Frequency(self.frequency)
        except ValueError as exc:
            raise InvalidPattern(f"Unknown frequency '{self.frequency}'") from exc
        object.__setattr__(self, "frequency", freq)

        if isinstance(self.interval, bool) or not isinstance(self.interval, int) or self.interval < 1:
            raise InvalidPattern(f"INTERVAL must be >= 1, got {self.interval!r}")

        by_day = _normalize_by_day(self.by_day or ()) if freq is Frequency.WEEKLY else ()
        object.__setattr__(self, "by_day", by_day)

        by_month_day = self.by_month_day if freq is Frequency.MONTHLY else None
        if by_month_day is not None and (
            isinstance(by_month_day, bool) or not isinstance(by_month_day, int) or not 1 <= by_month_day <= 31
        ):
            raise InvalidPattern(f"BYMONTHDAY must be within 1..31, got {by_month_day!r}")
        object.__setattr__(self, "by_month_day", by_month_day)

        if not isinstance(self.end, (Never, Until, Count)):
            raise InvalidPattern(f"Unsupported end condition {self.end!r}")

    def validate(self, anchor: _dt.date) -> None:
        """Check the invariants that depend on the anchor date."""
        if isinstance(self.end, Until) and self.end.date < anchor:
            raise InvalidPattern(f"UNTIL {self.end.date.isoformat()} is before the anchor {anchor.isoformat()}")

    @property
    def weekday_indexes(self) -> List[int]:
        return [WEEKDAY_CODES.index(code) for code in self.by_day]


class CourseStatus(str, Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass
class ScheduledSession:
    id: str
    owner_id: str
    date: str  # YYYY-MM-DD
    start_time: str  # HH:MM
    end_time: str  # HH:MM
    duration_minutes: Optional[int] = None
    course_id: Optional[str] = None  # None for unassigned blocker sessions
    end_date: Optional[str] = None  # multi-day sessions only
    completed: bool = False
    completion_percentage: int = 0
    notes: Optional[str] = None
    last_modified: Optional[int] = None  # ms timestamp
    recurring_series_id: Optional[str] = None
    is_exception_instance: bool = False
    external_event_id: Optional[str] = None
    external_calendar_id: Optional[str] = None

    @property
    def hours(self) -> float:
        return (self.duration_minutes or 0) / 60

    @property
    def is_generated(self) -> bool:
        return self.recurring_series_id is not None


@dataclass
class SeriesRecord:
    """Persisted recurrence of an anchor session."""
    anchor_id: str
    rule: str
    dtstart: str
    exception_dates: List[str] = field(default_factory=list)


@dataclass
class Course:
    id: str
    owner_id: str
    name: str
    estimated_hours: float
    ects: float = 0
    completed_hours: float = 0.0
    scheduled_hours: float = 0.0
    status: CourseStatus = CourseStatus.PLANNED

    def __post_init__(self) -> None:
        self.status = CourseStatus(self.status)


@dataclass
class StudyProgram:
    total_ects: float = DEFAULT_TOTAL_ECTS
    completed_ects: float = 0
    hours_per_ects: float = DEFAULT_HOURS_PER_ECTS


def compute_duration_minutes(
    start_time: str,
    end_time: str,
    date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> int:
    """Wall-clock span of a session in minutes.

    Without an end date the session lives on one day, wrapping over midnight
    when the end time is earlier than the start time. With both dates the
    span is the datetime difference, floored at zero.
    """
    start = parse_hhmm(start_time)
    end = parse_hhmm(end_time)
    if not date or not end_date:
        s = start.hour * 60 + start.minute
        e = end.hour * 60 + end.minute
        return e - s if e >= s else (24 * 60 - s) + e
    sdt = _dt.datetime.combine(parse_date(date), start)
    edt = _dt.datetime.combine(parse_date(end_date), end)
    return max(0, int((edt - sdt).total_seconds() // 60))
