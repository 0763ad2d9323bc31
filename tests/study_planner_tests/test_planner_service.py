"""Tests for planner workflows (mutate, reconcile, persist)."""

from __future__ import annotations

import sqlite3
import threading
import unittest

from study_planner.errors import CourseNotFound, SessionNotFound, ValidationError
from study_planner.model import Frequency, RecurrencePattern, StudyProgram
from study_planner.rrule import decode
from study_planner.service import OwnerLocks, PlannerService, monotonic_clock
from study_planner.store import MemoryStore
from tests.fakes import FailingStore, make_course, make_session


class _Counter:
    def __init__(self, prefix):
        self.prefix = prefix
        self.n = 0

    def __call__(self):
        self.n += 1
        return f"{self.prefix}-{self.n}" if self.prefix else self.n


class _ServiceCase(unittest.TestCase):
    store_cls = MemoryStore

    def setUp(self):
        self.store = self.store_cls()
        self.store.save_course(make_course("c1"))
        self.store.save_course(make_course("c2", name="Databases"))
        self.svc = PlannerService(self.store, clock=_Counter(""), new_id=_Counter("s"))

    def course(self, course_id="c1"):
        return self.store.load_course(course_id)

    def dates(self, owner="u1"):
        return [s.date for s in self.store.load_sessions(owner)]

    def make_series(self, rule="FREQ=WEEKLY;BYDAY=MO,WE;COUNT=4"):
        return self.svc.create_session("u1", "2025-03-03", "09:00", "10:30", course_id="c1", pattern=decode(rule))


class TestSessionWorkflows(_ServiceCase):
    def test_create_reconciles_course(self):
        s = self.svc.create_session("u1", "2025-03-03", "09:00", "10:30", course_id="c1")
        self.assertEqual(s.duration_minutes, 90)
        self.assertEqual(s.last_modified, 1)
        self.assertEqual(self.course().scheduled_hours, 1.5)
        self.assertEqual(self.course().completed_hours, 0.0)

    def test_unassigned_session_is_valid(self):
        s = self.svc.create_session("u1", "2025-03-03", "22:00", "01:00")
        self.assertIsNone(s.course_id)
        self.assertEqual(s.duration_minutes, 180)

    def test_completion_moves_hours(self):
        s = self.svc.create_session("u1", "2025-03-03", "09:00", "10:30", course_id="c1")
        updated = self.svc.set_completed(s.id)
        self.assertEqual(updated.completion_percentage, 100)
        self.assertEqual((self.course().completed_hours, self.course().scheduled_hours), (1.5, 0.0))
        self.svc.set_completed(s.id, False, percentage=0)
        self.assertEqual((self.course().completed_hours, self.course().scheduled_hours), (0.0, 1.5))

    def test_reassignment_reconciles_both_courses(self):
        s = self.svc.create_session("u1", "2025-03-03", "09:00", "10:30", course_id="c1")
        self.svc.update_session(s.id, course_id="c2")
        self.assertEqual(self.course("c1").scheduled_hours, 0.0)
        self.assertEqual(self.course("c2").scheduled_hours, 1.5)

    def test_duration_is_recomputed(self):
        s = self.svc.create_session("u1", "2025-03-03", "09:00", "10:30", course_id="c1")
        updated = self.svc.update_session(s.id, end_time="12:00")
        self.assertEqual(updated.duration_minutes, 180)
        self.assertEqual(self.course().scheduled_hours, 3.0)

    def test_delete_reconciles(self):
        s = self.svc.create_session("u1", "2025-03-03", "09:00", "10:30", course_id="c1")
        self.assertEqual(self.svc.delete_session(s.id), [s.id])
        self.assertEqual(self.course().scheduled_hours, 0.0)

    def test_validation(self):
        with self.assertRaises(ValidationError):
            self.svc.create_session("u1", "2025-03-03", "9am", "10:30")
        with self.assertRaises(ValidationError):
            self.svc.create_session("u1", "03/03/2025", "09:00", "10:30")
        with self.assertRaises(CourseNotFound):
            self.svc.create_session("u1", "2025-03-03", "09:00", "10:30", course_id="nope")
        with self.assertRaises(CourseNotFound):
            self.svc.create_session("u2", "2025-03-03", "09:00", "10:30", course_id="c1")
        with self.assertRaises(SessionNotFound):
            self.svc.update_session("nope", notes="x")
        with self.assertRaises(SessionNotFound):
            self.svc.delete_session("nope")
        s = self.svc.create_session("u1", "2025-03-03", "09:00", "10:30")
        with self.assertRaises(ValidationError):
            self.svc.update_session(s.id, completion_percentage=150)
        with self.assertRaises(ValidationError):
            self.svc.update_session(s.id, duration_minutes=5)


class TestSeriesWorkflows(_ServiceCase):
    def test_create_series_materializes_instances(self):
        anchor = self.make_series()
        self.assertEqual(self.dates(), ["2025-03-03", "2025-03-05", "2025-03-10", "2025-03-12"])
        self.assertEqual(self.store.load_series(anchor.id).rule, "FREQ=WEEKLY;BYDAY=MO,WE;COUNT=4")
        self.assertEqual(self.course().scheduled_hours, 6.0)

    def test_weekly_anchor_is_aligned(self):
        anchor = self.svc.create_session(
            "u1", "2025-03-06", "09:00", "10:00", pattern=decode("FREQ=WEEKLY;BYDAY=MO,WE;COUNT=2")
        )
        self.assertEqual(anchor.date, "2025-03-05")
        self.assertEqual(self.dates(), ["2025-03-05", "2025-03-10"])

    def test_weekly_without_days_rejected(self):
        with self.assertRaises(ValidationError):
            self.svc.create_session("u1", "2025-03-03", "09:00", "10:00", pattern=RecurrencePattern(Frequency.WEEKLY))
        self.assertEqual(self.dates(), [])

    def test_never_ending_series_uses_horizon(self):
        svc = PlannerService(self.store, new_id=_Counter("n"), horizon_days=14)
        svc.create_session("u1", "2025-03-03", "09:00", "10:00", pattern=decode("FREQ=DAILY;INTERVAL=7"))
        self.assertEqual(self.dates(), ["2025-03-03", "2025-03-10", "2025-03-17"])

    def test_count_series_runs_past_horizon(self):
        self.make_series("FREQ=WEEKLY;BYDAY=MO;COUNT=60")
        dates = self.dates()
        self.assertEqual(len(dates), 60)
        self.assertEqual(dates[-1], "2026-04-20")
        self.assertEqual(self.course().scheduled_hours, 90.0)

    def test_until_series_runs_past_horizon(self):
        self.make_series("FREQ=MONTHLY;UNTIL=20270303T235959Z")
        dates = self.dates()
        self.assertEqual(len(dates), 25)
        self.assertEqual(dates[-1], "2027-03-03")

    def test_replace_pattern_with_long_count(self):
        anchor = self.make_series()
        self.svc.replace_pattern(anchor.id, decode("FREQ=DAILY;COUNT=400"))
        self.assertEqual(len(self.dates()), 400)

    def test_editing_weekly_anchor_date_aligns_it(self):
        anchor = self.make_series()
        moved = self.svc.update_session(anchor.id, date="2025-03-13")
        self.assertEqual(moved.date, "2025-03-12")
        self.assertEqual(self.dates(), ["2025-03-12", "2025-03-17", "2025-03-19", "2025-03-24"])
        self.assertEqual(self.store.load_series(anchor.id).dtstart, "2025-03-12")

    def test_editing_weekly_anchor_onto_disallowed_day_snaps_back(self):
        anchor = self.make_series()
        moved = self.svc.update_session(anchor.id, date="2025-03-04")
        self.assertEqual(moved.date, "2025-03-03")
        self.assertEqual(self.dates(), ["2025-03-03", "2025-03-05", "2025-03-10", "2025-03-12"])

    def test_completing_third_tuesday_thursday_occurrence(self):
        self.svc.create_session(
            "u1", "2025-03-04", "09:00", "11:00", course_id="c1", pattern=decode("FREQ=WEEKLY;BYDAY=TU,TH;COUNT=4")
        )
        self.assertEqual(self.dates(), ["2025-03-04", "2025-03-06", "2025-03-11", "2025-03-13"])
        self.assertEqual(self.course().scheduled_hours, 8.0)
        third = self.store.load_sessions("u1")[2]
        self.svc.set_completed(third.id)
        self.assertEqual((self.course().completed_hours, self.course().scheduled_hours), (2.0, 6.0))

    def test_completing_instance_keeps_it_in_series(self):
        self.make_series()
        inst = [s for s in self.store.load_sessions("u1") if s.date == "2025-03-05"][0]
        done = self.svc.set_completed(inst.id)
        self.assertFalse(done.is_exception_instance)
        self.assertEqual(self.course().completed_hours, 1.5)
        self.assertEqual(self.course().scheduled_hours, 4.5)

    def test_editing_instance_detaches_it(self):
        anchor = self.make_series()
        inst = [s for s in self.store.load_sessions("u1") if s.date == "2025-03-10"][0]
        edited = self.svc.update_session(inst.id, date="2025-03-11")
        self.assertTrue(edited.is_exception_instance)
        self.assertEqual(edited.recurring_series_id, anchor.id)
        self.assertEqual(self.store.load_series(anchor.id).exception_dates, ["2025-03-10"])

    def test_deleting_instance_adds_exception_date(self):
        anchor = self.make_series()
        inst = [s for s in self.store.load_sessions("u1") if s.date == "2025-03-05"][0]
        self.svc.delete_session(inst.id)
        self.assertEqual(self.store.load_series(anchor.id).exception_dates, ["2025-03-05"])
        self.assertEqual(self.dates(), ["2025-03-03", "2025-03-10", "2025-03-12"])
        self.assertEqual(self.course().scheduled_hours, 4.5)

    def test_deleting_anchor_cascades_but_keeps_exceptions(self):
        anchor = self.make_series()
        inst = [s for s in self.store.load_sessions("u1") if s.date == "2025-03-10"][0]
        self.svc.update_session(inst.id, notes="moved to library")
        removed = self.svc.delete_session(anchor.id)
        self.assertEqual(len(removed), 3)
        self.assertEqual(removed[0], anchor.id)
        self.assertEqual([s.id for s in self.store.load_sessions("u1")], [inst.id])
        self.assertIsNone(self.store.load_series(anchor.id))
        self.assertEqual(self.course().scheduled_hours, 1.5)

    def test_replace_pattern_resyncs(self):
        anchor = self.make_series()
        plan = self.svc.replace_pattern(anchor.id, decode("FREQ=WEEKLY;BYDAY=MO;COUNT=3"))
        self.assertEqual(len(plan.create), 1)
        self.assertEqual(len(plan.delete), 2)
        self.assertEqual(self.dates(), ["2025-03-03", "2025-03-10", "2025-03-17"])
        self.assertEqual(self.store.load_series(anchor.id).rule, "FREQ=WEEKLY;BYDAY=MO;COUNT=3")
        self.assertEqual(self.course().scheduled_hours, 4.5)

    def test_replace_pattern_keeps_exception_instances(self):
        anchor = self.make_series()
        inst = [s for s in self.store.load_sessions("u1") if s.date == "2025-03-12"][0]
        self.svc.update_session(inst.id, start_time="10:00", end_time="11:00")
        self.svc.replace_pattern(anchor.id, decode("FREQ=DAILY;COUNT=2"))
        self.assertEqual(self.dates(), ["2025-03-03", "2025-03-04", "2025-03-12"])

    def test_replace_pattern_on_instance_rejected(self):
        self.make_series()
        inst = [s for s in self.store.load_sessions("u1") if s.date == "2025-03-05"][0]
        with self.assertRaises(ValidationError):
            self.svc.replace_pattern(inst.id, decode("FREQ=DAILY;COUNT=2"))


class TestAtomicity(_ServiceCase):
    store_cls = FailingStore

    def test_failed_reconcile_leaves_no_partial_state(self):
        self.store.fail_course_updates = True
        with self.assertRaises(sqlite3.OperationalError):
            self.make_series()
        self.assertEqual(self.dates(), [])
        self.assertEqual(self.store.series, {})

    def test_failed_delete_keeps_series(self):
        anchor = self.make_series()
        self.store.fail_course_updates = True
        with self.assertRaises(sqlite3.OperationalError):
            self.svc.delete_session(anchor.id)
        self.assertEqual(len(self.dates()), 4)
        self.assertIsNotNone(self.store.load_series(anchor.id))


class TestMaintenance(_ServiceCase):
    def _seed_duplicates(self):
        self.store.save_session(make_session("a", last_modified=1))
        self.store.save_session(make_session("b", last_modified=2))
        self.store.save_session(make_session("x", owner_id="u2", course_id=None))
        self.store.save_session(make_session("y", owner_id="u2", course_id=None))
        self.store.update_course_hours("c1", 0.0, 3.0)

    def test_dry_run_deletes_nothing(self):
        self._seed_duplicates()
        result = self.svc.deduplicate(apply=False)
        self.assertEqual(sorted(s.id for s in result.removed), ["a", "x"])
        self.assertEqual(len(self.store.sessions), 4)

    def test_apply_deletes_and_reconciles(self):
        self._seed_duplicates()
        report = self.svc.deduplicate(owner_id="u1").report()
        self.assertEqual(report.as_dict(), {"survivor_count": 1, "removed_count": 1, "removed_ids": ["a"]})
        self.assertEqual(sorted(self.store.sessions), ["b", "x", "y"])
        self.assertEqual(self.course().scheduled_hours, 1.5)

    def test_reconcile_course_repairs_drift(self):
        self.store.save_session(make_session("a", completed=True))
        self.store.update_course_hours("c1", 99.0, 99.0)
        hours = self.svc.reconcile_course("c1")
        self.assertEqual((hours.completed_hours, hours.scheduled_hours), (1.5, 0.0))
        with self.assertRaises(CourseNotFound):
            self.svc.reconcile_course("missing")

    def test_reconcile_all(self):
        self.store.save_session(make_session("a"))
        self.store.save_course(make_course("c9", owner_id="u2"))
        result = self.svc.reconcile_all()
        self.assertEqual(sorted(result), ["u1", "u2"])
        self.assertEqual(result["u1"]["c1"].scheduled_hours, 1.5)

    def test_program_progress_default_and_stored(self):
        p = self.svc.program_progress("u1")
        self.assertEqual(p.total_hours, 180 * 27.5)
        self.store.save_program("u1", StudyProgram(total_ects=10, completed_ects=2, hours_per_ects=10))
        p = self.svc.program_progress("u1")
        self.assertEqual((p.total_hours, p.prior_credit_hours), (100, 20))


class TestHelpers(unittest.TestCase):
    def test_owner_locks_are_per_owner(self):
        locks = OwnerLocks()
        self.assertIs(locks.get("u1"), locks.get("u1"))
        self.assertIsNot(locks.get("u1"), locks.get("u2"))

    def test_owner_lock_blocks_other_threads(self):
        locks = OwnerLocks()
        acquired = []
        with locks.hold("u1"):
            t = threading.Thread(target=lambda: acquired.append(locks.get("u1").acquire(timeout=0.05)))
            t.start()
            t.join()
        self.assertEqual(acquired, [False])

    def test_monotonic_clock(self):
        clock = monotonic_clock()
        values = [clock() for _ in range(5)]
        self.assertEqual(values, sorted(set(values)))


if __name__ == "__main__":
    unittest.main()
