"""English rendering of recurrence specifications ("every 2 weeks on Friday")."""

from __future__ import annotations

import calendar
from datetime import date, datetime

from billtrack.recurrence.spec import Frequency, RecurrenceSpecification, WeekdayToken, as_utc

_UNITS = {
    Frequency.DAILY: ("day", "days"),
    Frequency.WEEKLY: ("week", "weeks"),
    Frequency.MONTHLY: ("month", "months"),
    Frequency.YEARLY: ("year", "years"),
}

_ORDINAL_WORDS = {1: "first", 2: "second", 3: "third", 4: "fourth", 5: "fifth"}

_WORKWEEK = frozenset(range(5))


def ordinal(n: int) -> str:
    if 10 <= n % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def join_words(words: list[str]) -> str:
    if len(words) <= 1:
        return "".join(words)
    return ", ".join(words[:-1]) + " and " + words[-1]


def _month_day(day: int) -> str:
    if day == -1:
        return "the last day"
    if day < 0:
        return f"the {ordinal(-day)} to last day"
    return f"the {ordinal(day)}"


def _weekday(token: WeekdayToken) -> str:
    name = calendar.day_name[token.weekday]
    if token.ordinal is None:
        return name
    if token.ordinal == -1:
        return f"the last {name}"
    if token.ordinal < 0:
        return f"the {ordinal(-token.ordinal)} to last {name}"
    return f"the {_ORDINAL_WORDS.get(token.ordinal, ordinal(token.ordinal))} {name}"


def describe_specification(
    spec: RecurrenceSpecification, anchor: date | datetime | None = None
) -> str:
    singular, plural = _UNITS[spec.freq]
    weekday_set = {t.weekday for t in spec.by_weekday if t.ordinal is None}
    plain_weekdays = len(weekday_set) == len(spec.by_weekday)

    if (
        spec.interval == 1
        and spec.freq in (Frequency.DAILY, Frequency.WEEKLY)
        and plain_weekdays
        and weekday_set == _WORKWEEK
    ):
        words = ["every weekday"]
    else:
        words = [f"every {singular}" if spec.interval == 1 else f"every {spec.interval} {plural}"]
        if spec.by_weekday:
            words.append("on " + join_words([_weekday(t) for t in spec.by_weekday]))

    if spec.by_month:
        words.append("in " + join_words([calendar.month_name[m] for m in spec.by_month]))

    if spec.by_month_day:
        words.append("on " + join_words([_month_day(d) for d in spec.by_month_day]))
    elif anchor is not None and not spec.by_weekday:
        start = as_utc(anchor)
        if spec.freq == Frequency.MONTHLY:
            words.append(f"on the {ordinal(start.day)}")
        elif spec.freq == Frequency.YEARLY and not spec.by_month:
            words.append(f"on {calendar.month_name[start.month]} {start.day}")

    if spec.count is not None:
        words.append("for 1 time" if spec.count == 1 else f"for {spec.count} times")
    if spec.until is not None:
        until = spec.until
        words.append(f"until {calendar.month_name[until.month]} {until.day}, {until.year}")

    return " ".join(words)
