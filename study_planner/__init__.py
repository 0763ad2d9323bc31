"""Study planner engine.

Tracks courses and study sessions against an ECTS-hour budget: recurrence
rules and their expansion into sessions, duplicate-session repair and
course hour reconciliation.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
