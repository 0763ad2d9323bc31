"""Planner workflows over a storage collaborator.

Every mutation runs as one unit: take the owner's lock, open a store
transaction, mutate sessions, reconcile the affected courses from their full
session set, commit. A failure anywhere rolls the whole unit back.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from core.constants import DEFAULT_HORIZON_DAYS, DEFAULT_HORIZON_OCCURRENCES
from core.date_utils import parse_date, parse_hhmm

from . import dedup as _dedup
from . import hours as _hours
from .errors import CourseNotFound, SessionNotFound, ValidationError
from .expand import Horizon, SeriesSyncPlan, align_weekly_anchor, materialize_series, plan_series_sync
from .model import Frequency, Never, RecurrencePattern, ScheduledSession, SeriesRecord, StudyProgram, compute_duration_minutes
from .rrule import decode, encode
from .store import SessionStore

__all__ = ["OwnerLocks", "PlannerService", "monotonic_clock", "new_session_id"]

LOG = logging.getLogger(__name__)

_EDITABLE_FIELDS = (
    "date",
    "start_time",
    "end_time",
    "end_date",
    "course_id",
    "notes",
    "completed",
    "completion_percentage",
)
# Editing any of these on a generated instance detaches it from its series.
_DETACHING_FIELDS = ("date", "start_time", "end_time", "end_date", "course_id", "notes")


class OwnerLocks:
    """One re-entrant lock per owner id."""

    def __init__(self) -> None:
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, owner_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(owner_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[owner_id] = lock
            return lock

    @contextmanager
    def hold(self, owner_id: str) -> Iterator[None]:
        with self.get(owner_id):
            yield


def monotonic_clock() -> Callable[[], int]:
    """Millisecond timestamps that never repeat or go backwards."""
    state = {"last": 0}
    guard = threading.Lock()

    def now() -> int:
        with guard:
            ms = max(int(time.time() * 1000), state["last"] + 1)
            state["last"] = ms
            return ms

    return now


def new_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def _check_schedule(date: str, start_time: str, end_time: str, end_date: Optional[str]) -> None:
    try:
        parse_date(date)
        parse_hhmm(start_time)
        parse_hhmm(end_time)
        if end_date:
            if parse_date(end_date) < parse_date(date):
                raise ValidationError(f"end_date {end_date} is before date {date}")
    except ValidationError:
        raise
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _align_weekly(date: str, end_date: Optional[str], by_day) -> Tuple[str, Optional[str]]:
    """Move a weekly anchor onto an allowed weekday, shifting its end date along."""
    aligned = align_weekly_anchor(date, by_day)
    if end_date:
        end_date = (parse_date(end_date) - (parse_date(date) - aligned)).isoformat()
    return aligned.isoformat(), end_date


def _check_percentage(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
        raise ValidationError(f"completion_percentage must be within 0..100, got {value!r}")
    return value


class PlannerService:
    def __init__(
        self,
        store: SessionStore,
        *,
        clock: Optional[Callable[[], int]] = None,
        new_id: Optional[Callable[[], str]] = None,
        horizon_days: int = DEFAULT_HORIZON_DAYS,
        max_occurrences: int = DEFAULT_HORIZON_OCCURRENCES,
        default_program: Optional[StudyProgram] = None,
    ) -> None:
        self.store = store
        self.clock = clock or monotonic_clock()
        self.new_id = new_id or new_session_id
        self.horizon_days = horizon_days
        self.max_occurrences = max_occurrences
        self.default_program = default_program or StudyProgram()
        self.locks = OwnerLocks()

    # Plumbing

    @contextmanager
    def _section(self, owner_id: str) -> Iterator[None]:
        with self.locks.hold(owner_id):
            with self.store.transaction():
                yield

    def _horizon(self, anchor_date, pattern: RecurrencePattern) -> Optional[Horizon]:
        # COUNT and UNTIL rules stop on their own.
        if not isinstance(pattern.end, Never):
            return None
        return Horizon.from_days(parse_date(anchor_date), self.horizon_days, self.max_occurrences)

    def _require_session(self, session_id: str) -> ScheduledSession:
        session = self.store.load_session(session_id)
        if session is None:
            raise SessionNotFound(f"Session not found: {session_id}")
        return session

    def _require_course(self, course_id: str, owner_id: Optional[str] = None):
        course = self.store.load_course(course_id)
        if course is None or (owner_id is not None and course.owner_id != owner_id):
            raise CourseNotFound(f"Course not found: {course_id}")
        return course

    def _reconcile(self, owner_id: str, course_ids: Iterable[Optional[str]]) -> Dict[str, _hours.CourseHours]:
        out: Dict[str, _hours.CourseHours] = {}
        for course_id in sorted({c for c in course_ids if c}):
            course = self.store.load_course(course_id)
            if course is None:
                LOG.warning("cannot reconcile missing course %s", course_id)
                continue
            result = _hours.reconcile(course, self.store.load_sessions(owner_id, course_id))
            self.store.update_course_hours(course_id, result.completed_hours, result.scheduled_hours)
            LOG.debug(
                "course %s: completed=%.2fh scheduled=%.2fh",
                course_id, result.completed_hours, result.scheduled_hours,
            )
            out[course_id] = result
        return out

    def _apply_sync(self, plan: SeriesSyncPlan) -> Set[Optional[str]]:
        touched: Set[Optional[str]] = set()
        for inst in plan.delete:
            self.store.delete_session(inst.id)
            touched.add(inst.course_id)
        for inst in plan.create:
            self.store.save_session(inst)
            touched.add(inst.course_id)
        return touched

    # Sessions

    def create_session(
        self,
        owner_id: str,
        date: str,
        start_time: str,
        end_time: str,
        *,
        course_id: Optional[str] = None,
        end_date: Optional[str] = None,
        notes: Optional[str] = None,
        pattern: Optional[RecurrencePattern] = None,
        external_event_id: Optional[str] = None,
        external_calendar_id: Optional[str] = None,
    ) -> ScheduledSession:
        """Create a session, plus its series when ``pattern`` is given.

        A weekly anchor is moved back to the nearest allowed weekday before
        the series is expanded.
        """
        _check_schedule(date, start_time, end_time, end_date)
        if pattern is not None and pattern.frequency is Frequency.WEEKLY:
            if not pattern.by_day:
                raise ValidationError("Weekly recurrence needs at least one weekday")
            date, end_date = _align_weekly(date, end_date, pattern.by_day)
        else:
            date = parse_date(date).isoformat()

        with self._section(owner_id):
            if course_id:
                self._require_course(course_id, owner_id)
            anchor = ScheduledSession(
                id=self.new_id(),
                owner_id=owner_id,
                course_id=course_id or None,
                date=date,
                start_time=start_time,
                end_time=end_time,
                end_date=end_date,
                duration_minutes=compute_duration_minutes(start_time, end_time, date, end_date),
                notes=notes,
                last_modified=self.clock(),
                external_event_id=external_event_id,
                external_calendar_id=external_calendar_id,
            )
            self.store.save_session(anchor)
            if pattern is not None:
                self.store.save_series(SeriesRecord(anchor_id=anchor.id, rule=encode(pattern), dtstart=date))
                instances = materialize_series(anchor, pattern, (), self._horizon(date, pattern), self.new_id, self.clock)
                for inst in instances:
                    self.store.save_session(inst)
                LOG.info("created series %s with %d generated sessions", anchor.id, len(instances))
            self._reconcile(owner_id, [anchor.course_id])
        return anchor

    def update_session(self, session_id: str, **changes) -> ScheduledSession:
        """Edit a session and reconcile every course it touched.

        Editing the schedule of a generated instance turns it into an
        exception instance and records its original date as an exception
        date of the series.
        Moving a weekly anchor lands it on an allowed weekday and re-syncs the
        series.
        """
        unknown = set(changes) - set(_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot edit field(s): {', '.join(sorted(unknown))}")
        current = self._require_session(session_id)

        with self._section(current.owner_id):
            current = self._require_session(session_id)
            old_course, old_date = current.course_id, current.date
            for name, value in changes.items():
                setattr(current, name, value)
            current.course_id = current.course_id or None
            current.completed = bool(current.completed)
            _check_schedule(current.date, current.start_time, current.end_time, current.end_date)
            current.date = parse_date(current.date).isoformat()
            series = self.store.load_series(current.id)
            pattern = decode(series.rule) if series is not None else None
            if pattern is not None and pattern.frequency is Frequency.WEEKLY and current.date != old_date:
                current.date, current.end_date = _align_weekly(current.date, current.end_date, pattern.by_day)
            _check_percentage(current.completion_percentage)
            if current.course_id and current.course_id != old_course:
                self._require_course(current.course_id, current.owner_id)
            current.duration_minutes = compute_duration_minutes(
                current.start_time, current.end_time, current.date, current.end_date
            )
            current.last_modified = self.clock()

            detaching = any(name in changes for name in _DETACHING_FIELDS)
            if current.is_generated and not current.is_exception_instance and detaching:
                current.is_exception_instance = True
                self._add_exception_date(current.recurring_series_id, old_date)

            self.store.save_session(current)
            if pattern is not None and current.date != old_date:
                self._resync(current, pattern, series)
            self._reconcile(current.owner_id, [old_course, current.course_id])
        return current

    def set_completed(self, session_id: str, completed: bool = True, percentage: Optional[int] = None) -> ScheduledSession:
        changes = {"completed": bool(completed)}
        if percentage is not None:
            changes["completion_percentage"] = percentage
        elif completed:
            changes["completion_percentage"] = 100
        return self.update_session(session_id, **changes)

    def delete_session(self, session_id: str) -> List[str]:
        """Delete a session; returns the ids actually removed.

        Deleting an anchor removes its series record and the generated
        instances that are not exceptions. Deleting a generated instance
        records its date as an exception date of the series.
        """
        session = self._require_session(session_id)
        removed: List[str] = []
        with self._section(session.owner_id):
            session = self._require_session(session_id)
            touched: Set[Optional[str]] = {session.course_id}
            if self.store.load_series(session.id) is not None:
                for inst in self.store.load_sessions(session.owner_id):
                    if inst.recurring_series_id == session.id and not inst.is_exception_instance:
                        self.store.delete_session(inst.id)
                        removed.append(inst.id)
                        touched.add(inst.course_id)
                self.store.delete_series(session.id)
            elif session.is_generated and not session.is_exception_instance:
                self._add_exception_date(session.recurring_series_id, session.date)
            self.store.delete_session(session.id)
            removed.insert(0, session.id)
            self._reconcile(session.owner_id, touched)
        LOG.info("deleted %d session(s) starting at %s", len(removed), session_id)
        return removed

    def _add_exception_date(self, anchor_id: str, day: str) -> None:
        series = self.store.load_series(anchor_id)
        if series is None:
            return
        iso = parse_date(day).isoformat()
        if iso not in series.exception_dates:
            series.exception_dates = sorted(series.exception_dates + [iso])
            self.store.save_series(series)

    # Series

    def _resync(self, anchor: ScheduledSession, pattern: RecurrencePattern, series: SeriesRecord) -> Set[Optional[str]]:
        plan = plan_series_sync(
            anchor,
            pattern,
            series.exception_dates,
            self.store.load_sessions(anchor.owner_id),
            self._horizon(anchor.date, pattern),
            self.new_id,
            self.clock,
        )
        series.rule = encode(pattern)
        series.dtstart = anchor.date
        self.store.save_series(series)
        return self._apply_sync(plan)

    def replace_pattern(self, anchor_id: str, pattern: RecurrencePattern) -> SeriesSyncPlan:
        """Swap a series' pattern and bring its instances back in line."""
        if pattern.frequency is Frequency.WEEKLY and not pattern.by_day:
            raise ValidationError("Weekly recurrence needs at least one weekday")
        anchor = self._require_session(anchor_id)
        if anchor.recurring_series_id:
            raise ValidationError(f"Session {anchor_id} is a generated instance, not a series anchor")
        with self._section(anchor.owner_id):
            anchor = self._require_session(anchor_id)
            series = self.store.load_series(anchor.id) or SeriesRecord(
                anchor_id=anchor.id, rule="", dtstart=anchor.date
            )
            plan = plan_series_sync(
                anchor,
                pattern,
                series.exception_dates,
                self.store.load_sessions(anchor.owner_id),
                self._horizon(anchor.date, pattern),
                self.new_id,
                self.clock,
            )
            series.rule = encode(pattern)
            series.dtstart = anchor.date
            self.store.save_series(series)
            touched = self._apply_sync(plan)
            touched.add(anchor.course_id)
            self._reconcile(anchor.owner_id, touched)
        LOG.info(
            "replaced pattern of %s: created=%d deleted=%d kept=%d",
            anchor_id, len(plan.create), len(plan.delete), len(plan.keep),
        )
        return plan

    # Courses and aggregates

    def reconcile_course(self, course_id: str) -> _hours.CourseHours:
        course = self._require_course(course_id)
        with self._section(course.owner_id):
            result = self._reconcile(course.owner_id, [course_id])
        return result.get(course_id, _hours.CourseHours(0.0, 0.0))

    def reconcile_owner(self, owner_id: str) -> Dict[str, _hours.CourseHours]:
        with self._section(owner_id):
            course_ids = [c.id for c in self.store.load_courses(owner_id)]
            result = self._reconcile(owner_id, course_ids)
        LOG.info("recalculated %d course(s) for %s", len(result), owner_id)
        return result

    def reconcile_all(self, owner_id: Optional[str] = None) -> Dict[str, Dict[str, _hours.CourseHours]]:
        owners = [owner_id] if owner_id else self.store.list_owner_ids()
        return {owner: self.reconcile_owner(owner) for owner in owners}

    def deduplicate(self, owner_id: Optional[str] = None, apply: bool = True) -> _dedup.DedupResult:
        """Collapse duplicate sessions, one owner section at a time.

        With ``apply=False`` nothing is deleted; the result is the plan.
        """
        owners = [owner_id] if owner_id else self.store.list_owner_ids()
        combined = _dedup.DedupResult()
        for owner in owners:
            with self._section(owner):
                result = _dedup.deduplicate(self.store.load_sessions(owner), owner_id=owner)
                if apply and result.removed:
                    for session in result.removed:
                        self.store.delete_session(session.id)
                    self._reconcile(owner, [s.course_id for s in result.removed])
            combined.survivors.extend(result.survivors)
            combined.removed.extend(result.removed)
            combined.skipped.extend(result.skipped)
            combined.groups.extend(result.groups)
        return combined

    def program_progress(self, owner_id: str) -> _hours.ProgramProgress:
        with self.locks.hold(owner_id):
            program = self.store.load_program(owner_id) or self.default_program
            return _hours.program_progress(
                program,
                self.store.load_courses(owner_id),
                self.store.load_sessions(owner_id),
            )
