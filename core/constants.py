"""Shared constants used across the planner packages."""

from __future__ import annotations

import os

# -----------------------------------------------------------------------------
# Date/time formats
# -----------------------------------------------------------------------------

FMT_DATE = "%Y-%m-%d"
FMT_RRULE_DATE = "%Y%m%d"

# -----------------------------------------------------------------------------
# Config paths
# -----------------------------------------------------------------------------

APP_DIR_NAME = "study-planner"
CONFIG_ENV = "STUDY_PLANNER_CONFIG"
DATABASE_ENV = "DATABASE_PATH"


def config_roots() -> list[str]:
    """Return ordered list of config root directories."""
    roots: list[str] = []
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        roots.append(os.path.expanduser(xdg))
    roots.append(os.path.expanduser("~/.config"))
    return roots


def config_paths() -> list[str]:
    """Return ordered list of config.yaml paths to search."""
    paths: list[str] = []

    env_cfg = os.environ.get(CONFIG_ENV)
    if env_cfg:
        paths.append(os.path.expanduser(env_cfg))

    for root in config_roots():
        paths.append(os.path.join(root, APP_DIR_NAME, "config.yaml"))

    # Dedupe while preserving order
    seen: set[str] = set()
    unique: list[str] = []
    for p in paths:
        if p and p not in seen:
            seen.add(p)
            unique.append(p)
    return unique


# -----------------------------------------------------------------------------
# Planner defaults
# -----------------------------------------------------------------------------

DEFAULT_DATABASE_PATH = "./data/study-planner.db"
DEFAULT_HORIZON_OCCURRENCES = 500
DEFAULT_HORIZON_DAYS = 366
DEFAULT_TOTAL_ECTS = 180
DEFAULT_HOURS_PER_ECTS = 27.5
