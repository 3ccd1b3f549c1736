"""
scheduler/missed.py — Missed-fire counter

Counts how many times a cron expression would have fired while the
scheduler was not ticking (process stopped, machine asleep). The walk is
minute by minute from the minute after the last fire up to and including
the current minute. Callers cap how many catch-up runs they actually
execute; the count itself is uncapped.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from cronpilot.scheduler.cron import fields_match, parse_expression

_ONE_MINUTE = timedelta(minutes=1)


def count_missed_fire_times(expression: str, last_fired: datetime, now: datetime) -> int:
    """
    Number of minutes in (last_fired, now] that match `expression`.

    Both datetimes are compared at minute resolution. A malformed
    expression never matches, so it counts zero.
    """
    fields = parse_expression(expression)
    if fields is None or not all(fields):
        return 0

    cursor = last_fired.replace(second=0, microsecond=0) + _ONE_MINUTE
    end = now.replace(second=0, microsecond=0)
    count = 0
    while cursor <= end:
        if fields_match(fields, cursor):
            count += 1
        cursor += _ONE_MINUTE
    return count
