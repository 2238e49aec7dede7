"""Expansion of recurrence rules into concrete occurrences.

All math runs on aware UTC datetimes handed to ``dateutil.rrule``. Calendar
dates only appear at the edges: date window bounds are widened to whole UTC
days, and due dates are taken by truncating each UTC occurrence.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, time, timezone

from dateutil.rrule import DAILY, MONTHLY, WEEKLY, YEARLY, rrule, weekdays

from billtrack.core.exceptions import InvalidSpecificationError
from billtrack.recurrence.spec import Frequency, RecurrenceSpecification, as_utc, parse
from billtrack.recurrence.text import describe_specification

logger = logging.getLogger(__name__)

INVALID_DESCRIPTION = "Invalid recurrence pattern"

_RRULE_FREQ = {
    Frequency.YEARLY: YEARLY,
    Frequency.MONTHLY: MONTHLY,
    Frequency.WEEKLY: WEEKLY,
    Frequency.DAILY: DAILY,
}


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: str | None = None


def build_rule(spec: RecurrenceSpecification, anchor: date | datetime) -> rrule:
    """Build a fresh ``dateutil`` rule anchored at ``anchor``.

    dateutil refuses COUNT together with UNTIL, so when both are present the
    COUNT-th occurrence is resolved first and the earlier of the two instants
    becomes the rule's only UNTIL.
    """
    kwargs: dict = {
        "dtstart": as_utc(anchor),
        "interval": spec.interval,
    }
    if spec.by_weekday:
        kwargs["byweekday"] = [
            weekdays[t.weekday] if t.ordinal is None else weekdays[t.weekday](t.ordinal)
            for t in spec.by_weekday
        ]
    if spec.by_month:
        kwargs["bymonth"] = list(spec.by_month)
    if spec.by_month_day:
        kwargs["bymonthday"] = list(spec.by_month_day)

    freq = _RRULE_FREQ[spec.freq]
    if spec.count is not None and spec.until is not None:
        last = None
        for last in rrule(freq, count=spec.count, **kwargs):
            pass
        until = spec.until if last is None else min(last, spec.until)
        return rrule(freq, until=until, **kwargs)
    if spec.count is not None:
        return rrule(freq, count=spec.count, **kwargs)
    if spec.until is not None:
        return rrule(freq, until=spec.until, **kwargs)
    return rrule(freq, **kwargs)


def window_start_utc(value: date | datetime) -> datetime:
    return as_utc(value)


def window_end_utc(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


def validate(text: str | None) -> ValidationResult:
    try:
        parse(text)
    except InvalidSpecificationError as exc:
        return ValidationResult(valid=False, error=exc.message)
    return ValidationResult(valid=True)


def describe(text: str | None, anchor: date | datetime | None = None) -> str:
    """Human readable phrase for a rule, or a fixed sentinel for invalid input."""
    try:
        spec = parse(text)
    except InvalidSpecificationError:
        return INVALID_DESCRIPTION
    return describe_specification(spec, anchor)


def iter_spec_occurrences(
    spec: RecurrenceSpecification,
    anchor: date | datetime,
    start: date | datetime,
    end: date | datetime,
) -> Iterator[datetime]:
    window_start = window_start_utc(start)
    window_end = window_end_utc(end)
    if window_end < window_start:
        return
    rule = build_rule(spec, anchor)
    for occurrence in rule.xafter(window_start, inc=True):
        if occurrence > window_end:
            return
        yield occurrence


def iter_occurrences(
    text: str | None,
    anchor: date | datetime,
    start: date | datetime,
    end: date | datetime,
) -> Iterator[datetime]:
    """Lazily yield occurrences in ``[start, end]``; invalid rules yield nothing."""
    try:
        spec = parse(text)
    except InvalidSpecificationError as exc:
        logger.warning("Skipping expansion of invalid recurrence rule %r: %s", text, exc.message)
        return
    yield from iter_spec_occurrences(spec, anchor, start, end)


def occurrences_between(
    text: str | None,
    anchor: date | datetime,
    start: date | datetime,
    end: date | datetime,
) -> list[datetime]:
    """All occurrences within ``[start, end]`` in ascending order.

    Date bounds cover whole UTC days. Returns an empty list for an invalid
    rule or a window with no occurrences; it never raises for either.
    """
    return list(iter_occurrences(text, anchor, start, end))


def occurrence_dates_between(
    text: str | None,
    anchor: date | datetime,
    start: date | datetime,
    end: date | datetime,
) -> list[date]:
    return [occurrence.date() for occurrence in iter_occurrences(text, anchor, start, end)]


def next_occurrence(
    text: str | None,
    anchor: date | datetime,
    after: date | datetime | None = None,
) -> datetime | None:
    """Earliest occurrence strictly after ``after`` (default: now).

    Returns None when the rule is invalid or already exhausted.
    """
    try:
        spec = parse(text)
    except InvalidSpecificationError:
        return None
    after_utc = as_utc(after) if after is not None else datetime.now(timezone.utc)
    rule = build_rule(spec, anchor)
    for occurrence in rule.xafter(after_utc, inc=False):
        return occurrence
    return None
