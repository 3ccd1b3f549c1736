"""
scheduler/cron.py — Lightweight 5-field cron engine

Fields: minute hour day-of-month month day-of-week (Sunday = 0).

Parsing is deliberately permissive: out-of-domain values are clamped,
a zero step or an unparsable comma-part contributes nothing (its siblings
still do), and a reversed range is simply empty. validate_cron_expression()
is where such input is rejected, and it is only used at edit time. Nothing
on the scheduling path raises.

All five fields are AND-ed together, including day-of-month and
day-of-week (POSIX cron ORs those two when both are restricted; this
engine does not).

Example schedules:
    "0 8 * * *"    — every day at 08:00
    "*/30 * * * *" — every 30 minutes
    "0 9 * * 1-5"  — weekdays at 09:00
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

# (lo, hi) for each field, in expression order.
FIELD_LIMITS: tuple[tuple[int, int], ...] = (
    (0, 59),   # minute
    (0, 23),   # hour
    (1, 31),   # day of month
    (1, 12),   # month
    (0, 6),    # day of week
)
FIELD_NAMES = ("minute", "hour", "day-of-month", "month", "day-of-week")

_STEP_RE = re.compile(r"^(.+)/(\d+)$")
_INT_RE = re.compile(r"^\d+$")

# One year of minutes (leap year) bounds next_fire_after().
_MAX_SEARCH_MINUTES = 366 * 24 * 60


class CronPreset(NamedTuple):
    label: str
    value: str


PRESETS: tuple[CronPreset, ...] = (
    CronPreset("Every 5 min", "*/5 * * * *"),
    CronPreset("Every hour", "0 * * * *"),
    CronPreset("Every 2 hours", "0 */2 * * *"),
    CronPreset("Daily at 6 AM", "0 6 * * *"),
    CronPreset("Every Monday", "0 9 * * 1"),
    CronPreset("Saturday at noon", "0 12 * * 6"),
)

CronFields = tuple[set[int], set[int], set[int], set[int], set[int]]


# ─────────────────────────────────────────────────────────────────────────────
# Parsing + matching
# ─────────────────────────────────────────────────────────────────────────────

def _to_int(token: str) -> Optional[int]:
    token = token.strip()
    return int(token) if _INT_RE.match(token) else None


def _bounds(body: str, lo: int, hi: int) -> Optional[tuple[int, int]]:
    if body == "*":
        return lo, hi
    if "-" in body:
        a, b = body.split("-", 1)
        start, end = _to_int(a), _to_int(b)
        if start is None or end is None:
            return None
        return start, end
    value = _to_int(body)
    if value is None:
        return None
    return value, value


def parse_field(field: str, lo: int, hi: int) -> set[int]:
    """
    Expand one cron field into the set of values it selects within [lo, hi].

    >>> sorted(parse_field("*/15", 0, 59))
    [0, 15, 30, 45]
    >>> sorted(parse_field("*/0,5", 0, 59))
    [5]
    """
    values: set[int] = set()
    for part in field.split(","):
        m = _STEP_RE.match(part)
        step = int(m.group(2)) if m else 1
        body = m.group(1) if m else part

        # A zero step would never advance.
        if step <= 0:
            continue

        bounds = _bounds(body, lo, hi)
        if bounds is None:
            continue
        start, end = bounds
        start = max(lo, min(hi, start))
        end = max(lo, min(hi, end))
        values.update(range(start, end + 1, step))
    return values


def parse_expression(expression: str) -> Optional[CronFields]:
    """Parse all five fields, or return None if the field count is wrong."""
    fields = expression.split()
    if len(fields) != 5:
        return None
    return tuple(  # type: ignore[return-value]
        parse_field(f, lo, hi) for f, (lo, hi) in zip(fields, FIELD_LIMITS)
    )


def cron_weekday(when: datetime) -> int:
    """Day of week with Sunday = 0 … Saturday = 6."""
    return (when.weekday() + 1) % 7


def fields_match(fields: CronFields, when: datetime) -> bool:
    minute, hour, dom, month, dow = fields
    return (
        when.minute in minute
        and when.hour in hour
        and when.day in dom
        and when.month in month
        and cron_weekday(when) in dow
    )


def matches_cron(expression: str, when: datetime) -> bool:
    """True iff `when` satisfies every field of `expression`. Never raises."""
    fields = parse_expression(expression)
    if fields is None:
        return False
    return fields_match(fields, when)


def next_fire_after(expression: str, after: datetime) -> Optional[datetime]:
    """
    First whole minute strictly after `after` that matches `expression`.

    Searches at most one year ahead; returns None when nothing matches
    in that window (for example "0 0 31 2 *") or the expression is malformed.
    """
    fields = parse_expression(expression)
    if fields is None or not all(fields):
        return None
    dt = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    for _ in range(_MAX_SEARCH_MINUTES):
        if fields_match(fields, dt):
            return dt
        dt += timedelta(minutes=1)
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────

def validate_cron_expression(expression: str) -> Optional[str]:
    """Return a descriptive error message, or None if `expression` is valid."""
    fields = expression.split()
    if len(fields) != 5:
        return f"Expected 5 fields, got {len(fields)}"

    for field, (lo, hi), name in zip(fields, FIELD_LIMITS, FIELD_NAMES):
        for part in field.split(","):
            m = _STEP_RE.match(part)
            body = m.group(1) if m else part

            if m and int(m.group(2)) <= 0:
                return f"Invalid step value 0 in {name} field"

            if body == "*":
                continue

            if "-" in body:
                pieces = body.split("-")
                if len(pieces) != 2:
                    return f'Invalid range "{body}" in {name} field'
                a, b = _to_int(pieces[0]), _to_int(pieces[1])
                if a is None or b is None:
                    return f'Non-numeric range "{body}" in {name} field'
                if not (lo <= a <= hi and lo <= b <= hi):
                    return f"Value out of range ({lo}-{hi}) in {name} field"
                if a > b:
                    return f'Invalid range "{body}" in {name} field (start > end)'
                continue

            value = _to_int(body)
            if value is None:
                return f'Non-numeric value "{body}" in {name} field'
            if not lo <= value <= hi:
                return f"Value {value} out of range ({lo}-{hi}) in {name} field"

    return None


# ─────────────────────────────────────────────────────────────────────────────
# Human-readable descriptions
# ─────────────────────────────────────────────────────────────────────────────

DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
MONTH_NAMES = (
    "", "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def _hour12(h: int) -> tuple[int, str]:
    return (12 if h % 12 == 0 else h % 12), ("PM" if h >= 12 else "AM")


def format_hour12(h: int) -> str:
    h12, ampm = _hour12(h)
    return f"{h12} {ampm}"


def format_time12(h: int, m: int) -> str:
    h12, ampm = _hour12(h)
    return f"{h12}:{m:02d} {ampm}"


def ordinal(n: int) -> str:
    if 11 <= n % 100 <= 13:
        return f"{n}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def _contiguous(values: set[int]) -> Optional[tuple[int, int]]:
    if not values:
        return None
    ordered = sorted(values)
    if ordered[-1] - ordered[0] != len(ordered) - 1:
        return None
    return ordered[0], ordered[-1]


def _full_step(values: set[int], lo: int, hi: int) -> Optional[int]:
    """The step n if `values` is exactly lo, lo+n, lo+2n, … up to the end of the domain."""
    if len(values) <= 1:
        return None
    ordered = sorted(values)
    if ordered[0] != lo:
        return None
    step = ordered[1] - ordered[0]
    if any(b - a != step for a, b in zip(ordered, ordered[1:])):
        return None
    if ordered[-1] + step <= hi:
        return None
    return step


def _describe_days(values: set[int]) -> str:
    if len(values) == 7 or not values:
        return ""
    if values == {1, 2, 3, 4, 5}:
        return "Monday through Friday"
    if values == {0, 6}:
        return "Saturday and Sunday"
    span = _contiguous(values)
    if span:
        start, end = span
        if start == end:
            return DAY_NAMES[start]
        return f"{DAY_NAMES[start]} through {DAY_NAMES[end]}"
    ordered = sorted(values)
    if len(ordered) == 2:
        return f"{DAY_NAMES[ordered[0]]} and {DAY_NAMES[ordered[1]]}"
    return ", ".join(DAY_NAMES[d] for d in ordered)


def _describe_doms(values: set[int]) -> str:
    if len(values) == 31 or not values:
        return ""
    ordered = sorted(values)
    if len(ordered) == 1:
        return f"on the {ordinal(ordered[0])}"
    span = _contiguous(values)
    if span:
        return f"on days {span[0]}–{span[1]}"
    return "on days " + ", ".join(str(d) for d in ordered)


def _describe_months(values: set[int]) -> str:
    if len(values) == 12 or not values:
        return ""
    ordered = sorted(values)
    if len(ordered) == 1:
        return f"in {MONTH_NAMES[ordered[0]]}"
    span = _contiguous(values)
    if span:
        return f"{MONTH_NAMES[span[0]]} through {MONTH_NAMES[span[1]]}"
    return "in " + ", ".join(MONTH_NAMES[m] for m in ordered)


def _describe_time(minutes: set[int], hours: set[int]) -> Optional[str]:
    all_minutes = len(minutes) == 60
    all_hours = len(hours) == 24
    minute_step = _full_step(minutes, 0, 59)
    hour_step = _full_step(hours, 0, 23)
    hour_span = _contiguous(hours)

    if all_minutes and all_hours:
        return "Every minute"
    if minute_step and minute_step > 1 and all_hours:
        return f"Every {minute_step} minutes"
    if all_minutes:
        if hour_span:
            return f"Every minute from {format_hour12(hour_span[0])} to {format_hour12(hour_span[1])}"
        return "Every minute during select hours"

    if len(minutes) == 1:
        m = next(iter(minutes))
        if all_hours:
            return f"Every hour at :{m:02d}"
        if hour_step and hour_step > 1:
            if m == 0:
                return f"Every {hour_step} hours"
            return f"Every {hour_step} hours at :{m:02d}"
        if len(hours) == 1:
            return f"At {format_time12(next(iter(hours)), m)}"
        if hour_span:
            return (
                f"Every hour from {format_hour12(hour_span[0])} "
                f"to {format_hour12(hour_span[1])} at :{m:02d}"
            )
        if not hours:
            return None
        times = [format_time12(h, m) for h in sorted(hours)]
        if len(times) <= 3:
            return "At " + ", ".join(times)
        return f"{len(times)} times daily at :{m:02d}"

    if minute_step and minute_step > 1:
        if hour_span:
            return (
                f"Every {minute_step} minutes from {format_hour12(hour_span[0])} "
                f"to {format_hour12(hour_span[1])}"
            )
        return f"Every {minute_step} minutes during select hours"

    return None


def describe_schedule(expression: str) -> str:
    """
    Render a cron expression as natural language.

    Presets return their label verbatim. Anything the heuristics cannot
    phrase is returned unchanged.

    >>> describe_schedule("0 9 * * 1-5")
    'At 9:00 AM, Monday through Friday'
    >>> describe_schedule("0 8 21 * *")
    'At 8:00 AM, on the 21st'
    """
    for preset in PRESETS:
        if preset.value == expression:
            return preset.label

    fields = parse_expression(expression)
    if fields is None:
        return expression
    minutes, hours, doms, months, dows = fields

    time_part = _describe_time(minutes, hours)
    if time_part is None:
        return expression
    parts = [time_part]

    if len(dows) != 7:
        day_part = _describe_days(dows)
    else:
        day_part = _describe_doms(doms)
    if day_part:
        parts.append(day_part)

    month_part = _describe_months(months)
    if month_part:
        parts.append(month_part)

    return ", ".join(parts)
