"""Planner domain errors."""
from __future__ import annotations


class PlannerError(ValueError):
    """Base class for planner errors."""


class MalformedRule(PlannerError):
    """A canonical rule string could not be decoded."""


class InvalidPattern(PlannerError):
    """A recurrence pattern violates its contract (programming error)."""


class ValidationError(PlannerError):
    """Rejected session or course input."""


class SessionNotFound(PlannerError, LookupError):
    """No session with the given id."""


class CourseNotFound(PlannerError, LookupError):
    """No course with the given id."""
