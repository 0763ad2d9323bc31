"""Hour reconciliation for courses and the study program.

Course hour fields are derived values: they are always recomputed from the
full current session set of the course, never adjusted by deltas. Hours are
floats; rounding happens only when formatting for display.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from .model import Course, CourseStatus, ScheduledSession, StudyProgram

__all__ = [
    "CourseHours",
    "ProgramProgress",
    "course_progress",
    "format_hours",
    "program_progress",
    "reconcile",
    "remaining_hours",
    "unassigned_scheduled_hours",
]


@dataclass(frozen=True)
class CourseHours:
    completed_hours: float
    scheduled_hours: float


def reconcile(course: Course, sessions: Iterable[ScheduledSession]) -> CourseHours:
    """Recompute a course's completed and scheduled hours.

    Only sessions assigned to ``course`` count. A completed session counts
    its full duration regardless of its self-reported percentage.
    """
    completed_minutes = 0.0
    scheduled_minutes = 0.0
    for session in sessions:
        if session.course_id != course.id:
            continue
        minutes = session.duration_minutes or 0
        if session.completed:
            completed_minutes += minutes
        else:
            scheduled_minutes += minutes
    return CourseHours(completed_hours=completed_minutes / 60, scheduled_hours=scheduled_minutes / 60)


def remaining_hours(estimated: float, completed: float, scheduled: float) -> float:
    """Open hours for display; never negative, even when over-scheduled."""
    return max(0.0, (estimated or 0) - (completed or 0) - (scheduled or 0))


def course_progress(course: Course) -> int:
    """Completion percentage (0..100) for display."""
    if not course.estimated_hours or course.estimated_hours <= 0:
        return 0
    return min(100, round(course.completed_hours / course.estimated_hours * 100))


def unassigned_scheduled_hours(sessions: Iterable[ScheduledSession]) -> float:
    """Hours of open sessions that belong to no course (blockers)."""
    return sum(s.hours for s in sessions if not s.course_id and not s.completed)


@dataclass(frozen=True)
class ProgramProgress:
    total_hours: float
    prior_credit_hours: float
    completed_hours: float
    scheduled_hours: float
    remaining_hours: float


def program_progress(
    program: StudyProgram,
    courses: List[Course],
    sessions: Iterable[ScheduledSession],
) -> ProgramProgress:
    """Aggregate progress over the whole study program.

    ``program.completed_ects`` holds credit earned before using the planner
    plus the credit of courses marked completed. Those courses already report
    their hours, so their ECTS are taken out of the prior credit.
    """
    completed_course_ects = sum(c.ects or 0 for c in courses if c.status is CourseStatus.COMPLETED)
    prior_ects = (program.completed_ects or 0) - completed_course_ects
    prior_hours = max(0.0, prior_ects * program.hours_per_ects)

    completed = prior_hours + sum(c.completed_hours or 0 for c in courses)
    scheduled = sum(c.scheduled_hours or 0 for c in courses) + unassigned_scheduled_hours(sessions)
    total = (program.total_ects or 0) * program.hours_per_ects
    return ProgramProgress(
        total_hours=total,
        prior_credit_hours=prior_hours,
        completed_hours=completed,
        scheduled_hours=scheduled,
        remaining_hours=remaining_hours(total, completed, scheduled),
    )


def format_hours(hours: float) -> str:
    """Round hours for display: '2.5h', '12h'."""
    rounded = round(hours or 0, 1)
    if rounded == int(rounded):
        return f"{int(rounded)}h"
    return f"{rounded}h"
