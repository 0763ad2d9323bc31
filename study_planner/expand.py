"""Occurrence expansion for recurrence patterns.

``expand`` turns an anchor date, a pattern and a set of exception dates into
an ordered, duplicate-free sequence of occurrence dates. The sequence is lazy
and restartable: every ``iter()`` starts again from the anchor.

Stepping rules:
- the anchor itself is always the first candidate;
- DAILY steps ``interval`` days;
- WEEKLY enumerates the BYDAY weekdays (Mon->Sun) inside each interval-week
  window, windows starting on the Monday of the anchor's week;
- MONTHLY lands on BYMONTHDAY (default: the anchor's day) of every
  interval-th month and skips months without that day;
- YEARLY lands on the anchor's month/day of every interval-th year and skips
  years without that date (Feb 29).

Exception dates are skipped and do not count toward COUNT.
"""
from __future__ import annotations

import calendar
import datetime as _dt
import logging
from dataclasses import dataclass, field, replace
from itertools import chain
from typing import Callable, Iterable, Iterator, List, Optional

from core.date_utils import WEEKDAY_CODES, parse_date

from .errors import InvalidPattern
from .model import Count, Frequency, Never, RecurrencePattern, ScheduledSession, Until

__all__ = [
    "Horizon",
    "Occurrences",
    "SeriesSyncPlan",
    "align_weekly_anchor",
    "expand",
    "materialize_series",
    "plan_series_sync",
]

LOG = logging.getLogger(__name__)

# Consecutive steps without a valid date before a rule is considered exhausted
# (e.g. BYMONTHDAY=30 when every stepped month is February).
_MAX_IDLE_STEPS = 1000


@dataclass(frozen=True)
class Horizon:
    """Caller-supplied safety bound on expansion."""
    max_occurrences: Optional[int] = None
    until: Optional[_dt.date] = None

    def __post_init__(self) -> None:
        if self.max_occurrences is not None and self.max_occurrences < 1:
            raise InvalidPattern(f"Horizon max_occurrences must be >= 1, got {self.max_occurrences}")

    @property
    def is_empty(self) -> bool:
        return self.max_occurrences is None and self.until is None

    @classmethod
    def from_days(cls, anchor: _dt.date, days: int, max_occurrences: Optional[int] = None) -> "Horizon":
        return cls(max_occurrences=max_occurrences, until=anchor + _dt.timedelta(days=days))


def _daily(anchor: _dt.date, interval: int) -> Iterator[Optional[_dt.date]]:
    step = _dt.timedelta(days=interval)
    d = anchor
    while True:
        try:
            d = d + step
        except OverflowError:
            return
        yield d


def _weekly(anchor: _dt.date, interval: int, weekdays: List[int]) -> Iterator[Optional[_dt.date]]:
    monday = anchor - _dt.timedelta(days=anchor.weekday())
    k = 0
    while True:
        try:
            window = monday + _dt.timedelta(weeks=k * interval)
            days = [window + _dt.timedelta(days=wd) for wd in weekdays]
        except OverflowError:
            return
        yield from days
        k += 1


def _month_steps(anchor: _dt.date, months: int, day: int) -> Iterator[Optional[_dt.date]]:
    """Yield the ``day`` of every ``months``-th month, starting at the anchor's month.

    ``None`` marks a step whose month has no such day.
    """
    k = 0
    while True:
        total = anchor.month - 1 + k * months
        year, month = anchor.year + total // 12, total % 12 + 1
        if year > _dt.MAXYEAR:
            return
        if day <= calendar.monthrange(year, month)[1]:
            yield _dt.date(year, month, day)
        else:
            yield None
        k += 1


def _candidates(anchor: _dt.date, pattern: RecurrencePattern) -> Iterator[Optional[_dt.date]]:
    freq = pattern.frequency
    if freq is Frequency.DAILY:
        return _daily(anchor, pattern.interval)
    if freq is Frequency.WEEKLY:
        return _weekly(anchor, pattern.interval, pattern.weekday_indexes)
    if freq is Frequency.MONTHLY:
        return _month_steps(anchor, pattern.interval, pattern.by_month_day or anchor.day)
    return _month_steps(anchor, 12 * pattern.interval, anchor.day)


class Occurrences:
    """Lazy, finite and restartable occurrence sequence."""

    def __init__(
        self,
        anchor: _dt.date,
        pattern: RecurrencePattern,
        exception_dates: frozenset,
        horizon: Optional[Horizon],
    ) -> None:
        self.anchor = anchor
        self.pattern = pattern
        self.exception_dates = exception_dates
        self.horizon = horizon

    def __iter__(self) -> Iterator[_dt.date]:
        end = self.pattern.end
        count_limit = end.n if isinstance(end, Count) else None
        until = end.date if isinstance(end, Until) else None
        horizon = self.horizon or Horizon()

        emitted = 0
        idle = 0
        last: Optional[_dt.date] = None
        for cand in chain([self.anchor], _candidates(self.anchor, self.pattern)):
            if cand is None:
                idle += 1
                if idle > _MAX_IDLE_STEPS:
                    LOG.debug("rule exhausted after %d idle steps from %s", idle, self.anchor)
                    return
                continue
            if cand < self.anchor or (last is not None and cand <= last):
                continue
            idle = 0
            if until is not None and cand > until:
                return
            if horizon.until is not None and cand > horizon.until:
                return
            last = cand
            if cand in self.exception_dates:
                continue
            yield cand
            emitted += 1
            if count_limit is not None and emitted >= count_limit:
                return
            if horizon.max_occurrences is not None and emitted >= horizon.max_occurrences:
                return

    def to_list(self) -> List[_dt.date]:
        return list(self)


def expand(
    anchor,
    pattern: RecurrencePattern,
    exception_dates: Iterable = (),
    horizon: Optional[Horizon] = None,
) -> Occurrences:
    """Expand ``pattern`` from ``anchor`` into occurrence dates.

    Raises InvalidPattern up front for WEEKLY without weekdays, a Never end
    condition without a horizon, an empty horizon, or a pattern whose UNTIL
    precedes the anchor.
    """
    anchor_date = parse_date(anchor)
    pattern.validate(anchor_date)
    if pattern.frequency is Frequency.WEEKLY and not pattern.by_day:
        raise InvalidPattern("WEEKLY pattern needs at least one BYDAY weekday")
    if horizon is not None and horizon.is_empty:
        raise InvalidPattern("Horizon must set max_occurrences or until")
    if isinstance(pattern.end, Never) and horizon is None:
        raise InvalidPattern("A never-ending pattern cannot be expanded without a horizon")
    exceptions = frozenset(parse_date(d) for d in exception_dates)
    return Occurrences(anchor_date, pattern, exceptions, horizon)


def align_weekly_anchor(value, by_day: Iterable[str]) -> _dt.date:
    """Move a weekly anchor back to the nearest allowed weekday.

    The date is kept when its weekday is allowed; otherwise the closest
    allowed weekday within the previous six days is used.
    """
    d = parse_date(value)
    allowed = [WEEKDAY_CODES.index(c) for c in by_day if c in WEEKDAY_CODES]
    if not allowed or d.weekday() in allowed:
        return d
    back = min((d.weekday() - wd) % 7 for wd in allowed)
    return d - _dt.timedelta(days=back)


def _instance_for(
    anchor: ScheduledSession,
    occurrence: _dt.date,
    new_id: Callable[[], str],
    clock: Callable[[], int],
) -> ScheduledSession:
    end_date = None
    if anchor.end_date:
        offset = parse_date(anchor.end_date) - parse_date(anchor.date)
        end_date = (occurrence + offset).isoformat()
    return replace(
        anchor,
        id=new_id(),
        date=occurrence.isoformat(),
        end_date=end_date,
        completed=False,
        completion_percentage=0,
        last_modified=clock(),
        recurring_series_id=anchor.id,
        is_exception_instance=False,
        external_event_id=None,
        external_calendar_id=None,
    )


def materialize_series(
    anchor: ScheduledSession,
    pattern: RecurrencePattern,
    exception_dates: Iterable,
    horizon: Optional[Horizon],
    new_id: Callable[[], str],
    clock: Callable[[], int],
) -> List[ScheduledSession]:
    """Build generated sessions for every occurrence after the anchor."""
    anchor_date = parse_date(anchor.date)
    out: List[ScheduledSession] = []
    for occ in expand(anchor_date, pattern, exception_dates, horizon):
        if occ == anchor_date:
            continue
        out.append(_instance_for(anchor, occ, new_id, clock))
    LOG.debug("materialized %d instances for series %s", len(out), anchor.id)
    return out


@dataclass
class SeriesSyncPlan:
    create: List[ScheduledSession] = field(default_factory=list)
    delete: List[ScheduledSession] = field(default_factory=list)
    keep: List[ScheduledSession] = field(default_factory=list)


def plan_series_sync(
    anchor: ScheduledSession,
    pattern: RecurrencePattern,
    exception_dates: Iterable,
    existing: Iterable[ScheduledSession],
    horizon: Optional[Horizon],
    new_id: Callable[[], str],
    clock: Callable[[], int],
) -> SeriesSyncPlan:
    """Work out which generated sessions to create, delete or keep.

    Exception instances are kept as they are. Every other instance must sit
    on a date the expander still produces, one instance per date.
    """
    anchor_date = parse_date(anchor.date)
    expected = [d for d in expand(anchor_date, pattern, exception_dates, horizon) if d != anchor_date]
    expected_set = set(expected)

    plan = SeriesSyncPlan()
    claimed: set = set()
    instances = sorted(
        (s for s in existing if s.recurring_series_id == anchor.id and s.id != anchor.id),
        key=lambda s: (s.date, -(s.last_modified or 0), s.id),
    )
    for inst in instances:
        if inst.is_exception_instance:
            plan.keep.append(inst)
            continue
        try:
            d = parse_date(inst.date)
        except ValueError:
            plan.delete.append(inst)
            continue
        if d in expected_set and d not in claimed:
            claimed.add(d)
            plan.keep.append(inst)
        else:
            plan.delete.append(inst)

    for d in expected:
        if d not in claimed:
            plan.create.append(_instance_for(anchor, d, new_id, clock))
    LOG.debug(
        "series %s sync: create=%d delete=%d keep=%d",
        anchor.id, len(plan.create), len(plan.delete), len(plan.keep),
    )
    return plan
