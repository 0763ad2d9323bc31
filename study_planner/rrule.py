"""Canonical rule string codec.

Supported subset of RFC 5545 RRULE syntax::

    FREQ=<DAILY|WEEKLY|MONTHLY|YEARLY>[;INTERVAL=n][;BYDAY=MO,WE,...]
        [;BYMONTHDAY=n][;UNTIL=YYYYMMDDT235959Z|;COUNT=n]

``decode(encode(p)) == p`` holds for every valid pattern. Exception dates
are not part of the rule string; they are stored next to it.
"""
from __future__ import annotations

import datetime as _dt
import re
from typing import Dict, List, Optional

from core.constants import FMT_RRULE_DATE
from core.date_utils import WEEKDAY_CODES

from .errors import InvalidPattern, MalformedRule
from .model import Count, EndCondition, Frequency, Never, RecurrencePattern, Until

__all__ = ["encode", "decode", "UNTIL_TIME_SUFFIX"]

UNTIL_TIME_SUFFIX = "T235959Z"

_UNTIL_RE = re.compile(r"^(\d{8})(?:T(\d{6})Z?)?$")
_INT_RE = re.compile(r"^[+-]?\d+$")


def encode(pattern: RecurrencePattern) -> str:
    """Serialize a pattern to its canonical rule string."""
    parts: List[str] = [f"FREQ={pattern.frequency.value}"]
    if pattern.interval != 1:
        parts.append(f"INTERVAL={pattern.interval}")
    if pattern.frequency is Frequency.WEEKLY and pattern.by_day:
        parts.append("BYDAY=" + ",".join(pattern.by_day))
    if pattern.frequency is Frequency.MONTHLY and pattern.by_month_day is not None:
        parts.append(f"BYMONTHDAY={pattern.by_month_day}")
    end = pattern.end
    if isinstance(end, Until):
        parts.append(f"UNTIL={end.date.strftime(FMT_RRULE_DATE)}{UNTIL_TIME_SUFFIX}")
    elif isinstance(end, Count):
        parts.append(f"COUNT={end.n}")
    return ";".join(parts)


def _split_segments(rule: str) -> Dict[str, str]:
    text = (rule or "").strip()
    if text[:6].upper() == "RRULE:":
        text = text[6:]
    fields: Dict[str, str] = {}
    for segment in text.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        key, sep, value = segment.partition("=")
        if not sep:
            raise MalformedRule(f"Segment '{segment}' is not KEY=VALUE")
        fields[key.strip().upper()] = value.strip()
    return fields


def _parse_int(name: str, raw: str, minimum: int, maximum: Optional[int] = None) -> int:
    if not _INT_RE.match(raw):
        raise MalformedRule(f"{name} must be numeric, got '{raw}'")
    value = int(raw)
    if value < minimum or (maximum is not None and value > maximum):
        bound = f"{minimum}..{maximum}" if maximum is not None else f">= {minimum}"
        raise MalformedRule(f"{name} out of range ({bound}): {value}")
    return value


def _parse_until(raw: str) -> _dt.date:
    m = _UNTIL_RE.match(raw.upper())
    if not m:
        raise MalformedRule(f"UNTIL must be YYYYMMDD[THHMMSSZ], got '{raw}'")
    try:
        return _dt.datetime.strptime(m.group(1), FMT_RRULE_DATE).date()
    except ValueError as exc:
        raise MalformedRule(f"UNTIL is not a calendar date: '{raw}'") from exc


def _parse_by_day(raw: str) -> List[str]:
    codes: List[str] = []
    for token in raw.split(","):
        code = token.strip().upper()
        if not code:
            continue
        if code not in WEEKDAY_CODES:
            raise MalformedRule(f"Unsupported BYDAY value '{token.strip()}'")
        codes.append(code)
    return codes


def decode(rule: str) -> RecurrencePattern:
    """Parse a canonical rule string into a pattern.

    Unknown keys are ignored. Raises MalformedRule for a missing or
    unrecognised FREQ, non-numeric or out-of-range INTERVAL / BYMONTHDAY /
    COUNT, unsupported BYDAY values, an unparseable UNTIL, or UNTIL and
    COUNT given together.
    """
    fields = _split_segments(rule)

    freq_raw = fields.get("FREQ")
    if not freq_raw:
        raise MalformedRule(f"Missing FREQ in rule '{rule}'")
    try:
        frequency = Frequency(freq_raw.upper())
    except ValueError as exc:
        raise MalformedRule(f"Unsupported FREQ '{freq_raw}'") from exc

    interval = _parse_int("INTERVAL", fields["INTERVAL"], 1) if "INTERVAL" in fields else 1
    by_day = _parse_by_day(fields["BYDAY"]) if "BYDAY" in fields else []
    by_month_day = _parse_int("BYMONTHDAY", fields["BYMONTHDAY"], 1, 31) if "BYMONTHDAY" in fields else None

    if "UNTIL" in fields and "COUNT" in fields:
        raise MalformedRule("UNTIL and COUNT are mutually exclusive")
    end: EndCondition = Never()
    if "UNTIL" in fields:
        end = Until(_parse_until(fields["UNTIL"]))
    elif "COUNT" in fields:
        end = Count(_parse_int("COUNT", fields["COUNT"], 1))

    try:
        return RecurrencePattern(
            frequency=frequency,
            interval=interval,
            by_day=tuple(by_day),
            by_month_day=by_month_day,
            end=end,
        )
    except InvalidPattern as exc:
        raise MalformedRule(str(exc)) from exc
