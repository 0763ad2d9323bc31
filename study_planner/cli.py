"""Study planner CLI.

Plan then apply: ``dedup`` only reports unless ``--apply`` is given.
"""
from __future__ import annotations

from typing import Optional, Sequence

from core.cli_framework import CLIApp
from core.pipeline import run_pipeline

from . import __version__
from . import config as _config
from .meta import DESCRIPTION, EPILOG, PROG
from .pipeline import (
    DedupProcessor,
    DedupProducer,
    DedupRequest,
    ExpandProcessor,
    ExpandProducer,
    ExpandRequest,
    ProgressProcessor,
    ProgressProducer,
    ProgressRequest,
    RecalcProcessor,
    RecalcProducer,
    RecalcRequest,
    RuleDecodeProcessor,
    RuleDecodeProducer,
    RuleDecodeRequest,
    RuleEncodeProcessor,
    RuleEncodeProducer,
    RuleEncodeRequest,
)
from .service import PlannerService
from .store import SqliteStore

app = CLIApp(PROG, DESCRIPTION, version=__version__, epilog=EPILOG)


def _load_config(args) -> _config.PlannerConfig:
    cfg = _config.load(getattr(args, "config", None))
    if getattr(args, "db", None):
        cfg.database = args.db
    return cfg


def _build_service(args) -> PlannerService:
    cfg = _load_config(args)
    return PlannerService(
        SqliteStore(cfg.database),
        horizon_days=cfg.horizon_days,
        max_occurrences=cfg.max_occurrences,
        default_program=cfg.program,
    )


rrule_group = app.group("rrule", help="Encode and decode recurrence rule strings")


# Note: @argument decorators must come BEFORE @command (decorators apply bottom-up)
@rrule_group.command("encode", help="Build a canonical rule string")
@rrule_group.argument("--freq", required=True, help="DAILY, WEEKLY, MONTHLY or YEARLY")
@rrule_group.argument("--interval", type=int, default=1, help="Step between occurrences (default 1)")
@rrule_group.argument("--byday", help="Weekdays for WEEKLY rules, e.g. MO,WE")
@rrule_group.argument("--bymonthday", type=int, help="Day of month for MONTHLY rules")
@rrule_group.argument("--until", help="Last date (YYYY-MM-DD), inclusive")
@rrule_group.argument("--count", type=int, help="Number of occurrences, anchor included")
def cmd_rrule_encode(args) -> int:
    request = RuleEncodeRequest(
        freq=args.freq,
        interval=args.interval,
        byday=args.byday,
        bymonthday=args.bymonthday,
        until=args.until,
        count=args.count,
    )
    return run_pipeline(request, RuleEncodeProcessor(), RuleEncodeProducer())


@rrule_group.command("decode", help="Show the pattern behind a rule string")
@rrule_group.argument("rule", help="Rule string, e.g. FREQ=WEEKLY;BYDAY=MO;COUNT=5")
def cmd_rrule_decode(args) -> int:
    return run_pipeline(RuleDecodeRequest(rule=args.rule), RuleDecodeProcessor(), RuleDecodeProducer())


@app.command("expand", help="List occurrence dates of a rule")
@app.argument("--start", required=True, help="Anchor date (YYYY-MM-DD)")
@app.argument("--rule", required=True, help="Rule string")
@app.argument("--exdate", action="append", help="Exception date (repeatable)")
@app.argument("--max", type=int, dest="max_occurrences", help="Stop after N dates")
@app.argument("--through", help="Stop after this date (YYYY-MM-DD)")
def cmd_expand(args) -> int:
    cfg = _load_config(args)
    request = ExpandRequest(
        start=args.start,
        rule=args.rule,
        exdates=list(args.exdate or []),
        max_occurrences=args.max_occurrences,
        through=args.through,
        default_max=cfg.max_occurrences,
    )
    return run_pipeline(request, ExpandProcessor(), ExpandProducer())


@app.command("dedup", help="Remove duplicate sessions (dry-run unless --apply)")
@app.argument("--owner", help="Only this owner's sessions")
@app.argument("--apply", action="store_true", help="Delete the duplicates")
def cmd_dedup(args) -> int:
    service = _build_service(args)
    try:
        request = DedupRequest(service=service, owner=args.owner, apply=args.apply)
        return run_pipeline(request, DedupProcessor(), DedupProducer())
    finally:
        service.store.close()


@app.command("recalc", help="Recalculate completed/scheduled hours of every course")
@app.argument("--owner", help="Only this owner's courses")
def cmd_recalc(args) -> int:
    service = _build_service(args)
    try:
        return run_pipeline(RecalcRequest(service=service, owner=args.owner), RecalcProcessor(), RecalcProducer())
    finally:
        service.store.close()


@app.command("progress", help="Program-level hour summary for one owner")
@app.argument("--owner", required=True, help="Owner id")
def cmd_progress(args) -> int:
    service = _build_service(args)
    try:
        return run_pipeline(ProgressRequest(service=service, owner=args.owner), ProgressProcessor(), ProgressProducer())
    finally:
        service.store.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    return app.run(argv)
