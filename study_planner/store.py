"""Storage collaborators for the planner.

``SessionStore`` is the shape the engine relies on. ``SqliteStore`` keeps
data in a local SQLite file; ``MemoryStore`` keeps it in dicts (tests,
dry runs). Both expose ``transaction()`` so a workflow's writes become
visible all together or not at all. Storage errors propagate unchanged.
"""
from __future__ import annotations

import copy
import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Protocol

from .model import Course, ScheduledSession, SeriesRecord, StudyProgram

__all__ = ["MemoryStore", "SessionStore", "SqliteStore", "session_from_row", "session_to_row"]

LOG = logging.getLogger(__name__)


class SessionStore(Protocol):
    def load_sessions(self, owner_id: str, course_id: Optional[str] = None) -> List[ScheduledSession]:
        ...

    def load_session(self, session_id: str) -> Optional[ScheduledSession]:
        ...

    def save_session(self, session: ScheduledSession) -> None:
        ...

    def delete_session(self, session_id: str) -> bool:
        ...

    def load_course(self, course_id: str) -> Optional[Course]:
        ...

    def load_courses(self, owner_id: str) -> List[Course]:
        ...

    def save_course(self, course: Course) -> None:
        ...

    def update_course_hours(self, course_id: str, completed_hours: float, scheduled_hours: float) -> None:
        ...

    def load_series(self, anchor_id: str) -> Optional[SeriesRecord]:
        ...

    def save_series(self, record: SeriesRecord) -> None:
        ...

    def delete_series(self, anchor_id: str) -> None:
        ...

    def load_program(self, owner_id: str) -> Optional[StudyProgram]:
        ...

    def save_program(self, owner_id: str, program: StudyProgram) -> None:
        ...

    def list_owner_ids(self) -> List[str]:
        ...

    def transaction(self) -> Any:
        ...


_SESSION_COLUMNS = (
    "id",
    "user_id",
    "course_id",
    "date",
    "start_time",
    "end_date",
    "end_time",
    "duration_minutes",
    "completed",
    "completion_percentage",
    "notes",
    "last_modified",
    "recurring_event_id",
    "is_recurrence_exception",
    "external_event_id",
    "external_calendar_id",
)


def session_to_row(s: ScheduledSession) -> Dict[str, Any]:
    return {
        "id": s.id,
        "user_id": s.owner_id,
        "course_id": s.course_id,
        "date": s.date,
        "start_time": s.start_time,
        "end_date": s.end_date,
        "end_time": s.end_time,
        "duration_minutes": s.duration_minutes,
        "completed": 1 if s.completed else 0,
        "completion_percentage": s.completion_percentage,
        "notes": s.notes,
        "last_modified": s.last_modified,
        "recurring_event_id": s.recurring_series_id,
        "is_recurrence_exception": 1 if s.is_exception_instance else 0,
        "external_event_id": s.external_event_id,
        "external_calendar_id": s.external_calendar_id,
    }


def session_from_row(row: Dict[str, Any]) -> ScheduledSession:
    """Build a session from a storage row, tolerating legacy NULLs."""
    duration = row.get("duration_minutes")
    return ScheduledSession(
        id=row.get("id"),
        owner_id=row.get("user_id"),
        course_id=row.get("course_id") or None,
        date=row.get("date"),
        start_time=row.get("start_time"),
        end_time=row.get("end_time"),
        end_date=row.get("end_date"),
        duration_minutes=int(duration) if duration is not None else None,
        completed=bool(row.get("completed")),
        completion_percentage=int(row.get("completion_percentage") or 0),
        notes=row.get("notes"),
        last_modified=row.get("last_modified"),
        recurring_series_id=row.get("recurring_event_id"),
        is_exception_instance=bool(row.get("is_recurrence_exception")),
        external_event_id=row.get("external_event_id"),
        external_calendar_id=row.get("external_calendar_id"),
    )


_SCHEMA = """
CREATE TABLE IF NOT EXISTS study_programs (
    user_id TEXT PRIMARY KEY,
    total_ects REAL NOT NULL DEFAULT 180,
    completed_ects REAL NOT NULL DEFAULT 0,
    hours_per_ects REAL NOT NULL DEFAULT 27.5
);
CREATE TABLE IF NOT EXISTS courses (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    ects REAL NOT NULL DEFAULT 0,
    estimated_hours REAL NOT NULL,
    completed_hours REAL NOT NULL DEFAULT 0,
    scheduled_hours REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'planned' CHECK(status IN ('planned', 'active', 'completed'))
);
CREATE TABLE IF NOT EXISTS scheduled_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    course_id TEXT,
    date TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_date TEXT,
    end_time TEXT NOT NULL,
    duration_minutes INTEGER,
    completed INTEGER NOT NULL DEFAULT 0,
    completion_percentage INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    last_modified INTEGER,
    recurring_event_id TEXT,
    is_recurrence_exception INTEGER NOT NULL DEFAULT 0,
    external_event_id TEXT,
    external_calendar_id TEXT
);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON scheduled_sessions(user_id, course_id);
CREATE TABLE IF NOT EXISTS recurrence_patterns (
    session_id TEXT PRIMARY KEY,
    rrule TEXT NOT NULL,
    dtstart TEXT NOT NULL,
    exdates TEXT
);
"""


class SqliteStore:
    """SQLite-backed store. One connection, serialized by an internal lock."""

    def __init__(self, path: str) -> None:
        self.path = path
        if path != ":memory:":
            parent = os.path.dirname(os.path.abspath(path))
            os.makedirs(parent, exist_ok=True)
        self._conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator["SqliteStore"]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._conn.execute("ROLLBACK")
                    LOG.debug("rolled back transaction on %s", self.path)
                raise
            self._depth -= 1
            if outermost:
                self._conn.execute("COMMIT")

    def _all(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._conn.execute(sql, params).fetchall()]

    def _one(self, sql: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        rows = self._all(sql, params)
        return rows[0] if rows else None

    def _run(self, sql: str, params: tuple = ()) -> int:
        with self._lock:
            return self._conn.execute(sql, params).rowcount

    # Sessions

    def load_sessions(self, owner_id: str, course_id: Optional[str] = None) -> List[ScheduledSession]:
        if course_id is None:
            rows = self._all(
                "SELECT * FROM scheduled_sessions WHERE user_id = ? ORDER BY date ASC, start_time ASC",
                (owner_id,),
            )
        else:
            rows = self._all(
                "SELECT * FROM scheduled_sessions WHERE user_id = ? AND course_id = ? ORDER BY date ASC, start_time ASC",
                (owner_id, course_id),
            )
        return [session_from_row(r) for r in rows]

    def load_session(self, session_id: str) -> Optional[ScheduledSession]:
        row = self._one("SELECT * FROM scheduled_sessions WHERE id = ?", (session_id,))
        return session_from_row(row) if row else None

    def save_session(self, session: ScheduledSession) -> None:
        row = session_to_row(session)
        placeholders = ", ".join("?" for _ in _SESSION_COLUMNS)
        self._run(
            f"INSERT OR REPLACE INTO scheduled_sessions ({', '.join(_SESSION_COLUMNS)}) VALUES ({placeholders})",  # noqa: S608
            tuple(row[c] for c in _SESSION_COLUMNS),
        )

    def delete_session(self, session_id: str) -> bool:
        return self._run("DELETE FROM scheduled_sessions WHERE id = ?", (session_id,)) > 0

    # Courses

    @staticmethod
    def _course(row: Dict[str, Any]) -> Course:
        return Course(
            id=row["id"],
            owner_id=row["user_id"],
            name=row["name"],
            ects=row["ects"],
            estimated_hours=row["estimated_hours"],
            completed_hours=row["completed_hours"],
            scheduled_hours=row["scheduled_hours"],
            status=row["status"],
        )

    def load_course(self, course_id: str) -> Optional[Course]:
        row = self._one("SELECT * FROM courses WHERE id = ?", (course_id,))
        return self._course(row) if row else None

    def load_courses(self, owner_id: str) -> List[Course]:
        return [self._course(r) for r in self._all("SELECT * FROM courses WHERE user_id = ? ORDER BY id", (owner_id,))]

    def save_course(self, course: Course) -> None:
        self._run(
            "INSERT OR REPLACE INTO courses (id, user_id, name, ects, estimated_hours, completed_hours, "
            "scheduled_hours, status) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                course.id,
                course.owner_id,
                course.name,
                course.ects,
                course.estimated_hours,
                course.completed_hours,
                course.scheduled_hours,
                course.status.value,
            ),
        )

    def update_course_hours(self, course_id: str, completed_hours: float, scheduled_hours: float) -> None:
        self._run(
            "UPDATE courses SET completed_hours = ?, scheduled_hours = ? WHERE id = ?",
            (float(completed_hours), float(scheduled_hours), course_id),
        )

    # Recurrence series

    def load_series(self, anchor_id: str) -> Optional[SeriesRecord]:
        row = self._one("SELECT * FROM recurrence_patterns WHERE session_id = ?", (anchor_id,))
        if not row:
            return None
        return SeriesRecord(
            anchor_id=row["session_id"],
            rule=row["rrule"],
            dtstart=row["dtstart"],
            exception_dates=json.loads(row["exdates"]) if row["exdates"] else [],
        )

    def save_series(self, record: SeriesRecord) -> None:
        self._run(
            "INSERT OR REPLACE INTO recurrence_patterns (session_id, rrule, dtstart, exdates) VALUES (?, ?, ?, ?)",
            (record.anchor_id, record.rule, record.dtstart, json.dumps(list(record.exception_dates))),
        )

    def delete_series(self, anchor_id: str) -> None:
        self._run("DELETE FROM recurrence_patterns WHERE session_id = ?", (anchor_id,))

    # Study program

    def load_program(self, owner_id: str) -> Optional[StudyProgram]:
        row = self._one("SELECT * FROM study_programs WHERE user_id = ?", (owner_id,))
        if not row:
            return None
        return StudyProgram(
            total_ects=row["total_ects"],
            completed_ects=row["completed_ects"],
            hours_per_ects=row["hours_per_ects"],
        )

    def save_program(self, owner_id: str, program: StudyProgram) -> None:
        self._run(
            "INSERT OR REPLACE INTO study_programs (user_id, total_ects, completed_ects, hours_per_ects) "
            "VALUES (?, ?, ?, ?)",
            (owner_id, program.total_ects, program.completed_ects, program.hours_per_ects),
        )

    def list_owner_ids(self) -> List[str]:
        rows = self._all(
            "SELECT user_id FROM courses UNION SELECT user_id FROM scheduled_sessions "
            "UNION SELECT user_id FROM study_programs ORDER BY user_id"
        )
        return [r["user_id"] for r in rows]


class MemoryStore:
    """Dict-backed store with snapshot/restore transactions."""

    def __init__(self) -> None:
        self.sessions: Dict[str, ScheduledSession] = {}
        self.courses: Dict[str, Course] = {}
        self.series: Dict[str, SeriesRecord] = {}
        self.programs: Dict[str, StudyProgram] = {}
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator["MemoryStore"]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = copy.deepcopy((self.sessions, self.courses, self.series, self.programs)) if outermost else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if snapshot is not None:
                    self.sessions, self.courses, self.series, self.programs = snapshot
                raise
            self._depth -= 1

    def load_sessions(self, owner_id: str, course_id: Optional[str] = None) -> List[ScheduledSession]:
        out = [
            copy.copy(s)
            for s in self.sessions.values()
            if s.owner_id == owner_id and (course_id is None or s.course_id == course_id)
        ]
        return sorted(out, key=lambda s: (s.date or "", s.start_time or ""))

    def load_session(self, session_id: str) -> Optional[ScheduledSession]:
        s = self.sessions.get(session_id)
        return copy.copy(s) if s else None

    def save_session(self, session: ScheduledSession) -> None:
        self.sessions[session.id] = copy.copy(session)

    def delete_session(self, session_id: str) -> bool:
        return self.sessions.pop(session_id, None) is not None

    def load_course(self, course_id: str) -> Optional[Course]:
        c = self.courses.get(course_id)
        return copy.copy(c) if c else None

    def load_courses(self, owner_id: str) -> List[Course]:
        return [copy.copy(c) for _, c in sorted(self.courses.items()) if c.owner_id == owner_id]

    def save_course(self, course: Course) -> None:
        self.courses[course.id] = copy.copy(course)

    def update_course_hours(self, course_id: str, completed_hours: float, scheduled_hours: float) -> None:
        course = self.courses.get(course_id)
        if course is not None:
            course.completed_hours = float(completed_hours)
            course.scheduled_hours = float(scheduled_hours)

    def load_series(self, anchor_id: str) -> Optional[SeriesRecord]:
        r = self.series.get(anchor_id)
        return copy.deepcopy(r) if r else None

    def save_series(self, record: SeriesRecord) -> None:
        self.series[record.anchor_id] = copy.deepcopy(record)

    def delete_series(self, anchor_id: str) -> None:
        self.series.pop(anchor_id, None)

    def load_program(self, owner_id: str) -> Optional[StudyProgram]:
        p = self.programs.get(owner_id)
        return copy.copy(p) if p else None

    def save_program(self, owner_id: str, program: StudyProgram) -> None:
        self.programs[owner_id] = copy.copy(program)

    def list_owner_ids(self) -> List[str]:
        owners = {c.owner_id for c in self.courses.values()}
        owners.update(s.owner_id for s in self.sessions.values() if s.owner_id)
        owners.update(self.programs)
        return sorted(owners)
