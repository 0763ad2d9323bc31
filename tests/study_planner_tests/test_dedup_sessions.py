"""Tests for duplicate session detection."""

from __future__ import annotations

import unittest

from study_planner.dedup import deduplicate, group_key
from tests.fakes import make_session


class TestGroupKey(unittest.TestCase):
    def test_nulls_become_sentinel(self):
        s = make_session("x", course_id=None, end_time="", duration_minutes=None)
        self.assertEqual(group_key(s), ("u1", "NULL", "2025-03-03", "09:00", "NULL", 0))


class TestDeduplicate(unittest.TestCase):
    def test_newest_survives(self):
        sessions = [
            make_session("a", last_modified=10),
            make_session("b", last_modified=30),
            make_session("c", last_modified=20),
        ]
        result = deduplicate(sessions)
        self.assertEqual([s.id for s in result.survivors], ["b"])
        self.assertEqual(sorted(s.id for s in result.removed), ["a", "c"])

    def test_tie_breaks_on_highest_id(self):
        sessions = [
            make_session("session-1", last_modified=5),
            make_session("session-3", last_modified=5),
            make_session("session-2", last_modified=None),
        ]
        result = deduplicate(sessions)
        self.assertEqual(result.groups[0].keep.id, "session-3")
        self.assertEqual([s.id for s in result.groups[0].delete], ["session-1", "session-2"])

    def test_missing_last_modified_counts_as_zero(self):
        result = deduplicate([make_session("z", last_modified=None), make_session("a", last_modified=1)])
        self.assertEqual(result.survivors[0].id, "a")

    def test_different_slots_are_not_duplicates(self):
        sessions = [
            make_session("a"),
            make_session("b", course_id="c2"),
            make_session("c", end_time="11:00"),
            make_session("d", date="2025-03-04"),
            make_session("e", owner_id="u2"),
            make_session("f", course_id=None),
        ]
        result = deduplicate(sessions)
        self.assertEqual(len(result.survivors), 6)
        self.assertEqual(result.removed, [])

    def test_unassigned_sessions_group_together(self):
        result = deduplicate([make_session("a", course_id=None), make_session("b", course_id=None)])
        self.assertEqual([s.id for s in result.removed], ["a"])

    def test_idempotent(self):
        sessions = [make_session("a"), make_session("b"), make_session("c", date="2025-03-10")]
        first = deduplicate(sessions)
        second = deduplicate(first.survivors)
        self.assertEqual(second.removed, [])
        self.assertEqual(sorted(s.id for s in second.survivors), sorted(s.id for s in first.survivors))

    def test_owner_filter_leaves_others_untouched(self):
        sessions = [
            make_session("a"),
            make_session("b"),
            make_session("x", owner_id="u2"),
            make_session("y", owner_id="u2"),
        ]
        result = deduplicate(sessions, owner_id="u1")
        self.assertEqual([s.id for s in result.removed], ["a"])
        self.assertEqual([s.id for s in result.survivors], ["b"])

    def test_rows_missing_key_fields_are_skipped(self):
        sessions = [make_session("a"), make_session("b", start_time=None), make_session("c", date="")]
        with self.assertLogs("study_planner.dedup", level="WARNING") as logs:
            result = deduplicate(sessions)
        self.assertEqual(sorted(s.id for s in result.skipped), ["b", "c"])
        self.assertEqual([s.id for s in result.survivors], ["a"])
        self.assertEqual(len(logs.output), 2)

    def test_report(self):
        result = deduplicate([make_session("a", last_modified=1), make_session("b", last_modified=2)])
        self.assertEqual(
            result.report().as_dict(),
            {"survivor_count": 1, "removed_count": 1, "removed_ids": ["a"]},
        )


if __name__ == "__main__":
    unittest.main()
