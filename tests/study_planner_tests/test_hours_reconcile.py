"""Tests for course and program hour reconciliation."""

from __future__ import annotations

import unittest

from study_planner.hours import (
    course_progress,
    format_hours,
    program_progress,
    reconcile,
    remaining_hours,
    unassigned_scheduled_hours,
)
from study_planner.model import CourseStatus, StudyProgram, compute_duration_minutes
from tests.fakes import make_course, make_session


class TestDuration(unittest.TestCase):
    def test_same_day(self):
        self.assertEqual(compute_duration_minutes("09:00", "10:30"), 90)

    def test_wraps_over_midnight(self):
        self.assertEqual(compute_duration_minutes("23:00", "01:00"), 120)

    def test_multi_day(self):
        self.assertEqual(compute_duration_minutes("22:00", "02:00", "2025-03-01", "2025-03-02"), 240)

    def test_multi_day_floors_at_zero(self):
        self.assertEqual(compute_duration_minutes("10:00", "09:00", "2025-03-02", "2025-03-02"), 0)


class TestReconcile(unittest.TestCase):
    def test_buckets(self):
        course = make_course()
        sessions = [
            make_session("a", completed=True, completion_percentage=40),
            make_session("b", start_time="13:00", end_time="14:00"),
            make_session("c", course_id="c2", completed=True),
            make_session("d", course_id=None),
        ]
        hours = reconcile(course, sessions)
        self.assertEqual(hours.completed_hours, 1.5)
        self.assertEqual(hours.scheduled_hours, 1.0)

    def test_completed_and_open_durations(self):
        sessions = [
            make_session("a", duration_minutes=60, completed=True),
            make_session("b", duration_minutes=90, completed=True),
            make_session("c", duration_minutes=120),
        ]
        hours = reconcile(make_course(), sessions)
        self.assertEqual((hours.completed_hours, hours.scheduled_hours), (2.5, 2.0))

    def test_missing_duration_counts_zero(self):
        hours = reconcile(make_course(), [make_session("a", duration_minutes=None)])
        self.assertEqual((hours.completed_hours, hours.scheduled_hours), (0.0, 0.0))

    def test_hours_are_not_rounded(self):
        hours = reconcile(make_course(), [make_session("a", start_time="09:00", end_time="09:20")])
        self.assertAlmostEqual(hours.scheduled_hours, 1 / 3)

    def test_remaining_floors_at_zero(self):
        self.assertEqual(remaining_hours(10, 4, 3), 3)
        self.assertEqual(remaining_hours(10, 8, 5), 0)

    def test_course_progress(self):
        self.assertEqual(course_progress(make_course(estimated_hours=150, completed_hours=75)), 50)
        self.assertEqual(course_progress(make_course(estimated_hours=10, completed_hours=30)), 100)
        self.assertEqual(course_progress(make_course(estimated_hours=0, completed_hours=3)), 0)


class TestProgramProgress(unittest.TestCase):
    def test_completed_course_ects_leave_prior_credit(self):
        program = StudyProgram(total_ects=180, completed_ects=36, hours_per_ects=25)
        courses = [
            make_course("c1", ects=6, completed_hours=150, status=CourseStatus.COMPLETED),
            make_course("c2", ects=6, completed_hours=10, scheduled_hours=20, status="active"),
        ]
        sessions = [
            make_session("blocker", course_id=None, start_time="08:00", end_time="10:00"),
            make_session("done-blocker", course_id=None, completed=True),
        ]
        p = program_progress(program, courses, sessions)
        self.assertEqual(p.total_hours, 4500)
        self.assertEqual(p.prior_credit_hours, 750)
        self.assertEqual(p.completed_hours, 910)
        self.assertEqual(p.scheduled_hours, 22)
        self.assertEqual(p.remaining_hours, 3568)

    def test_prior_credit_never_negative(self):
        program = StudyProgram(completed_ects=0)
        courses = [make_course(ects=6, status=CourseStatus.COMPLETED)]
        self.assertEqual(program_progress(program, courses, []).prior_credit_hours, 0)

    def test_unassigned_hours(self):
        sessions = [make_session("a", course_id=None), make_session("b")]
        self.assertEqual(unassigned_scheduled_hours(sessions), 1.5)


class TestFormatHours(unittest.TestCase):
    def test_rounding_for_display(self):
        self.assertEqual(format_hours(12.0), "12h")
        self.assertEqual(format_hours(2.5), "2.5h")
        self.assertEqual(format_hours(1 / 3), "0.3h")
        self.assertEqual(format_hours(None), "0h")


if __name__ == "__main__":
    unittest.main()
