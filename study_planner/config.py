"""Planner configuration (YAML file + environment overrides).

Example ``~/.config/study-planner/config.yaml``::

    database: ~/study/planner.db
    horizon:
      max_occurrences: 500
      days: 366
    program:
      total_ects: 180
      completed_ects: 0
      hours_per_ects: 27.5
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import yaml

from core.cli_errors import ConfigError
from core.constants import (
    DATABASE_ENV,
    DEFAULT_DATABASE_PATH,
    DEFAULT_HORIZON_DAYS,
    DEFAULT_HORIZON_OCCURRENCES,
    config_paths,
)
from core.yamlio import load_config

from .model import StudyProgram

LOG = logging.getLogger(__name__)


@dataclass
class PlannerConfig:
    database: str = DEFAULT_DATABASE_PATH
    max_occurrences: int = DEFAULT_HORIZON_OCCURRENCES
    horizon_days: int = DEFAULT_HORIZON_DAYS
    program: StudyProgram = field(default_factory=StudyProgram)
    source: Optional[str] = None


def _section(data: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _positive_int(section: Mapping[str, Any], key: str, default: int, label: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"'{label}' must be a positive integer, got {value!r}")
    return value


def _number(section: Mapping[str, Any], key: str, default: float, label: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ConfigError(f"'{label}' must be a non-negative number, got {value!r}")
    return value


def from_mapping(data: Mapping[str, Any], env: Optional[Mapping[str, str]] = None) -> PlannerConfig:
    """Build a config from a parsed YAML mapping; unknown keys are ignored."""
    env = os.environ if env is None else env
    database = data.get("database", DEFAULT_DATABASE_PATH)
    if not isinstance(database, str) or not database:
        raise ConfigError(f"'database' must be a path string, got {database!r}")
    if env.get(DATABASE_ENV):
        database = env[DATABASE_ENV]

    horizon = _section(data, "horizon")
    program = _section(data, "program")
    defaults = StudyProgram()
    return PlannerConfig(
        database=os.path.expanduser(database),
        max_occurrences=_positive_int(horizon, "max_occurrences", DEFAULT_HORIZON_OCCURRENCES, "horizon.max_occurrences"),
        horizon_days=_positive_int(horizon, "days", DEFAULT_HORIZON_DAYS, "horizon.days"),
        program=StudyProgram(
            total_ects=_number(program, "total_ects", defaults.total_ects, "program.total_ects"),
            completed_ects=_number(program, "completed_ects", defaults.completed_ects, "program.completed_ects"),
            hours_per_ects=_number(program, "hours_per_ects", defaults.hours_per_ects, "program.hours_per_ects"),
        ),
    )


def load(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> PlannerConfig:
    """Load config from ``path`` or the first existing default location."""
    candidates = [os.path.expanduser(path)] if path else config_paths()
    if path and not os.path.exists(candidates[0]):
        raise ConfigError(f"Config file not found: {path}")
    for candidate in candidates:
        if not os.path.exists(candidate):
            continue
        try:
            data = load_config(candidate)
        except (ValueError, yaml.YAMLError) as exc:
            raise ConfigError(f"Invalid config {candidate}: {exc}") from exc
        except OSError as exc:
            raise ConfigError(f"Cannot read {candidate}: {exc}") from exc
        cfg = from_mapping(data, env)
        cfg.source = candidate
        LOG.debug("loaded config from %s", candidate)
        return cfg
    return from_mapping({}, env)
