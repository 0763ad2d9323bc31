"""Shared fake objects for testing.

Modules:
    planner - session factory and stores that fail on demand
"""

from __future__ import annotations

from tests.fakes.planner import FailingStore, make_course, make_session

__all__ = [
    "FailingStore",
    "make_course",
    "make_session",
]
