"""Consumer/processor/producer pipelines behind the CLI commands."""
from __future__ import annotations

import datetime as _dt
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.cli_errors import ExitCode, exit_code_for
from core.constants import DEFAULT_HORIZON_OCCURRENCES
from core.date_utils import parse_date
from core.pipeline import BaseProducer, Processor, RequestConsumer, ResultEnvelope
from core.yamlio import dump_text

from . import hours as _hours
from .dedup import DedupReport
from .errors import PlannerError
from .expand import Horizon, expand
from .model import Count, Never, RecurrencePattern, Until
from .rrule import decode, encode

__all__ = [
    "DedupProcessor",
    "DedupProducer",
    "DedupRequest",
    "ExpandProcessor",
    "ExpandProducer",
    "ExpandRequest",
    "ProgressProcessor",
    "ProgressProducer",
    "ProgressRequest",
    "RecalcProcessor",
    "RecalcProducer",
    "RecalcRequest",
    "RuleDecodeProcessor",
    "RuleDecodeProducer",
    "RuleDecodeRequest",
    "RuleEncodeProcessor",
    "RuleEncodeProducer",
    "RuleEncodeRequest",
    "pattern_to_dict",
]

LOG = logging.getLogger(__name__)


def _error(exc: BaseException) -> ResultEnvelope:
    return ResultEnvelope.error(str(exc), code=int(exit_code_for(exc)))


def pattern_to_dict(pattern: RecurrencePattern) -> Dict[str, Any]:
    out: Dict[str, Any] = {"frequency": pattern.frequency.value, "interval": pattern.interval}
    if pattern.by_day:
        out["by_day"] = list(pattern.by_day)
    if pattern.by_month_day is not None:
        out["by_month_day"] = pattern.by_month_day
    end = pattern.end
    if isinstance(end, Until):
        out["end"] = {"until": end.date.isoformat()}
    elif isinstance(end, Count):
        out["end"] = {"count": end.n}
    else:
        out["end"] = "never"
    return out


# -----------------------------------------------------------------------------
# rrule encode / decode
# -----------------------------------------------------------------------------


@dataclass
class RuleEncodeRequest:
    freq: str
    interval: int = 1
    byday: Optional[str] = None
    bymonthday: Optional[int] = None
    until: Optional[str] = None
    count: Optional[int] = None


RuleEncodeRequestConsumer = RequestConsumer[RuleEncodeRequest]


class RuleEncodeProcessor(Processor[RuleEncodeRequest, ResultEnvelope[str]]):
    def process(self, payload: RuleEncodeRequest) -> ResultEnvelope[str]:
        if payload.until and payload.count is not None:
            return ResultEnvelope.error("--until and --count are mutually exclusive", code=int(ExitCode.USAGE))
        try:
            if payload.until:
                end = Until(parse_date(payload.until))
            elif payload.count is not None:
                end = Count(payload.count)
            else:
                end = Never()
            pattern = RecurrencePattern(
                frequency=(payload.freq or "").upper(),
                interval=payload.interval,
                by_day=tuple(d for d in (payload.byday or "").split(",") if d.strip()),
                by_month_day=payload.bymonthday,
                end=end,
            )
        except ValueError as exc:
            return _error(exc)
        return ResultEnvelope.success(encode(pattern))


class RuleEncodeProducer(BaseProducer):
    def _produce_success(self, payload: str, diagnostics: Optional[Dict[str, Any]]) -> None:
        print(payload)


@dataclass
class RuleDecodeRequest:
    rule: str


RuleDecodeRequestConsumer = RequestConsumer[RuleDecodeRequest]


class RuleDecodeProcessor(Processor[RuleDecodeRequest, ResultEnvelope[RecurrencePattern]]):
    def process(self, payload: RuleDecodeRequest) -> ResultEnvelope[RecurrencePattern]:
        try:
            return ResultEnvelope.success(decode(payload.rule))
        except PlannerError as exc:
            return _error(exc)


class RuleDecodeProducer(BaseProducer):
    def _produce_success(self, payload: RecurrencePattern, diagnostics: Optional[Dict[str, Any]]) -> None:
        print(dump_text(pattern_to_dict(payload)), end="")


# -----------------------------------------------------------------------------
# expand
# -----------------------------------------------------------------------------


@dataclass
class ExpandRequest:
    start: str
    rule: str
    exdates: List[str] = field(default_factory=list)
    max_occurrences: Optional[int] = None
    through: Optional[str] = None
    default_max: int = DEFAULT_HORIZON_OCCURRENCES


ExpandRequestConsumer = RequestConsumer[ExpandRequest]


class ExpandProcessor(Processor[ExpandRequest, ResultEnvelope[List[_dt.date]]]):
    def process(self, payload: ExpandRequest) -> ResultEnvelope[List[_dt.date]]:
        try:
            pattern = decode(payload.rule)
            through = parse_date(payload.through) if payload.through else None
            horizon = None
            if payload.max_occurrences is not None or through is not None:
                horizon = Horizon(max_occurrences=payload.max_occurrences, until=through)
            elif isinstance(pattern.end, Never):
                horizon = Horizon(max_occurrences=payload.default_max)
            dates = expand(payload.start, pattern, payload.exdates, horizon).to_list()
        except ValueError as exc:
            return _error(exc)
        LOG.debug("expanded %s from %s into %d dates", payload.rule, payload.start, len(dates))
        return ResultEnvelope.success(dates)


class ExpandProducer(BaseProducer):
    def _produce_success(self, payload: List[_dt.date], diagnostics: Optional[Dict[str, Any]]) -> None:
        for d in payload:
            print(d.isoformat())


# -----------------------------------------------------------------------------
# dedup
# -----------------------------------------------------------------------------


@dataclass
class DedupRequest:
    service: Any
    owner: Optional[str] = None
    apply: bool = False


DedupRequestConsumer = RequestConsumer[DedupRequest]


@dataclass
class DedupPlan:
    report: DedupReport
    groups: List[Dict[str, Any]]
    skipped: int
    apply: bool


class DedupProcessor(Processor[DedupRequest, ResultEnvelope[DedupPlan]]):
    def process(self, payload: DedupRequest) -> ResultEnvelope[DedupPlan]:
        result = payload.service.deduplicate(owner_id=payload.owner, apply=payload.apply)
        groups = [
            {"key": "|".join(map(str, g.key)), "keep": g.keep.id, "delete": [s.id for s in g.delete]}
            for g in result.groups
        ]
        plan = DedupPlan(report=result.report(), groups=groups, skipped=len(result.skipped), apply=payload.apply)
        return ResultEnvelope.success(plan)


class DedupProducer(BaseProducer):
    def _produce_success(self, payload: DedupPlan, diagnostics: Optional[Dict[str, Any]]) -> None:
        if payload.skipped:
            print(f"Skipped {payload.skipped} session(s) with missing key fields.")
        if not payload.groups:
            print("No duplicate sessions found.")
            return
        print(f"Found {len(payload.groups)} duplicate groups. key -> keep + delete list")
        for group in payload.groups:
            print(f"- {group['key']}: keep {group['keep']} delete {', '.join(group['delete'])}")
        report = payload.report
        if not payload.apply:
            print(f"Dry plan only. Re-run with --apply to delete {report.removed_count} session(s).")
            return
        print(f"Deleted {report.removed_count} duplicate session(s); {report.survivor_count} remain.")


# -----------------------------------------------------------------------------
# recalc / progress
# -----------------------------------------------------------------------------


@dataclass
class RecalcRequest:
    service: Any
    owner: Optional[str] = None


RecalcRequestConsumer = RequestConsumer[RecalcRequest]


class RecalcProcessor(Processor[RecalcRequest, ResultEnvelope[Dict[str, Dict[str, _hours.CourseHours]]]]):
    def process(self, payload: RecalcRequest) -> ResultEnvelope[Dict[str, Dict[str, _hours.CourseHours]]]:
        return ResultEnvelope.success(payload.service.reconcile_all(payload.owner))


class RecalcProducer(BaseProducer):
    def _produce_success(self, payload: Dict[str, Dict[str, _hours.CourseHours]], diagnostics: Optional[Dict[str, Any]]) -> None:
        total = 0
        for owner, courses in payload.items():
            print(f"{owner}:")
            for course_id, h in courses.items():
                print(
                    f"  {course_id}: completed {_hours.format_hours(h.completed_hours)}, "
                    f"scheduled {_hours.format_hours(h.scheduled_hours)}"
                )
            total += len(courses)
        print(f"Recalculated {total} course(s).")


@dataclass
class ProgressRequest:
    service: Any
    owner: str


ProgressRequestConsumer = RequestConsumer[ProgressRequest]


class ProgressProcessor(Processor[ProgressRequest, ResultEnvelope[_hours.ProgramProgress]]):
    def process(self, payload: ProgressRequest) -> ResultEnvelope[_hours.ProgramProgress]:
        if not payload.owner:
            return ResultEnvelope.error("--owner is required", code=int(ExitCode.USAGE))
        return ResultEnvelope.success(payload.service.program_progress(payload.owner))


class ProgressProducer(BaseProducer):
    def _produce_success(self, payload: _hours.ProgramProgress, diagnostics: Optional[Dict[str, Any]]) -> None:
        fmt = _hours.format_hours
        print(f"Total:     {fmt(payload.total_hours)}")
        print(f"Completed: {fmt(payload.completed_hours)} (prior credit {fmt(payload.prior_credit_hours)})")
        print(f"Scheduled: {fmt(payload.scheduled_hours)}")
        print(f"Remaining: {fmt(payload.remaining_hours)}")
