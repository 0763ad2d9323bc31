"""Duplicate session detection.

Sessions sharing (owner, course, date, start, end, duration) describe the
same logical slot. Per group the most recently modified record survives
(ties: highest id); everything else is marked for removal. Deletion itself
is left to the caller.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .model import ScheduledSession

__all__ = ["DedupGroup", "DedupReport", "DedupResult", "deduplicate", "group_key"]

LOG = logging.getLogger(__name__)

NULL_SENTINEL = "NULL"

GroupKey = Tuple[str, str, str, str, str, int]


def group_key(session: ScheduledSession) -> GroupKey:
    return (
        session.owner_id,
        session.course_id or NULL_SENTINEL,
        session.date,
        session.start_time,
        session.end_time or NULL_SENTINEL,
        int(session.duration_minutes or 0),
    )


def _missing_key_fields(session: ScheduledSession) -> List[str]:
    return [name for name in ("id", "owner_id", "date", "start_time") if not getattr(session, name, None)]


@dataclass
class DedupGroup:
    key: GroupKey
    keep: ScheduledSession
    delete: List[ScheduledSession]


@dataclass
class DedupReport:
    survivor_count: int
    removed_count: int
    removed_ids: List[str]

    def as_dict(self) -> Dict[str, object]:
        return {
            "survivor_count": self.survivor_count,
            "removed_count": self.removed_count,
            "removed_ids": list(self.removed_ids),
        }


@dataclass
class DedupResult:
    survivors: List[ScheduledSession] = field(default_factory=list)
    removed: List[ScheduledSession] = field(default_factory=list)
    skipped: List[ScheduledSession] = field(default_factory=list)
    groups: List[DedupGroup] = field(default_factory=list)

    def report(self) -> DedupReport:
        return DedupReport(
            survivor_count=len(self.survivors),
            removed_count=len(self.removed),
            removed_ids=[s.id for s in self.removed],
        )


def _survivor_order(group: List[ScheduledSession]) -> List[ScheduledSession]:
    # Two stable sorts: id descending, then last_modified descending.
    by_id = sorted(group, key=lambda s: str(s.id), reverse=True)
    return sorted(by_id, key=lambda s: s.last_modified or 0, reverse=True)


def deduplicate(sessions: Iterable[ScheduledSession], owner_id: Optional[str] = None) -> DedupResult:
    """Partition sessions into survivors and duplicates to remove.

    When ``owner_id`` is given only that owner's sessions are considered.
    Sessions missing key fields are skipped (and logged), never removed.
    """
    result = DedupResult()
    groups: Dict[GroupKey, List[ScheduledSession]] = defaultdict(list)
    for session in sessions:
        if owner_id is not None and session.owner_id != owner_id:
            continue
        missing = _missing_key_fields(session)
        if missing:
            LOG.warning("skipping session %r: missing %s", getattr(session, "id", None), ", ".join(missing))
            result.skipped.append(session)
            continue
        groups[group_key(session)].append(session)

    for key, group in groups.items():
        if len(group) == 1:
            result.survivors.append(group[0])
            continue
        ordered = _survivor_order(group)
        keep, delete = ordered[0], ordered[1:]
        result.survivors.append(keep)
        result.removed.extend(delete)
        result.groups.append(DedupGroup(key=key, keep=keep, delete=delete))
        LOG.info("group %s has %d dupes: keeping %s, removing %d", "|".join(map(str, key)), len(group), keep.id, len(delete))
    return result
