from __future__ import annotations

from core.meta_base import AppMeta

_META = AppMeta(
    app_id="study_planner",
    purpose="recurring study sessions, duplicate cleanup and ECTS hour tracking",
    display_name="Study Planner",
    example_cmd="study-planner rrule encode --freq WEEKLY --byday MO,WE --count 10",
)

APP_ID = _META.app_id
PURPOSE = _META.purpose
PROG = _META.prog
DESCRIPTION = _META.description
EPILOG = _META.epilog
