"""YAML read/write helpers for planner config and CLI output."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

__all__ = ["load_config", "dump_config", "dump_text"]


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """Load a YAML mapping; returns {} if the path is unset, missing or empty.

    Raises ValueError when the document root is not a mapping.
    """
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    data = yaml.safe_load(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML in {p} must be a mapping (dict)")
    return data


def dump_text(data: Any) -> str:
    """Render data as YAML with stable ordering for humans."""
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)


def dump_config(path: str, data: Dict[str, Any]) -> None:
    """Write a dict to YAML, creating parent directories."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(dump_text(data), encoding="utf-8")
