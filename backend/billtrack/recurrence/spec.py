"""Recurrence specification value type and its RRULE wire format.

A specification is the RFC 5545 RRULE subset used by templates:
``FREQ=WEEKLY;INTERVAL=2;BYDAY=MO,WE,FR``. Parsing is strict. Unknown keys,
repeated keys and out-of-domain values are rejected instead of being
replaced by defaults.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone

from billtrack.core.exceptions import InvalidSpecificationError


class Frequency(str, enum.Enum):
    YEARLY = "YEARLY"
    MONTHLY = "MONTHLY"
    WEEKLY = "WEEKLY"
    DAILY = "DAILY"


WEEKDAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")

RECOGNIZED_KEYS = frozenset(
    {"FREQ", "INTERVAL", "COUNT", "UNTIL", "BYDAY", "BYMONTH", "BYMONTHDAY"}
)

# Longest each month can be, leap years included.
MAX_MONTH_DAYS = {1: 31, 2: 29, 3: 31, 4: 30, 5: 31, 6: 30, 7: 31, 8: 31, 9: 30, 10: 31, 11: 30, 12: 31}

_WEEKDAY_RE = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")
_INT_RE = re.compile(r"^[+-]?\d+$")
_UNTIL_FORMATS = ("%Y%m%dT%H%M%SZ", "%Y%m%dT%H%M%S", "%Y%m%d")


@dataclass(frozen=True)
class WeekdayToken:
    """A BYDAY entry: weekday index (0=Monday) and optional ordinal (``-1FR``)."""

    weekday: int
    ordinal: int | None = None

    @property
    def code(self) -> str:
        return WEEKDAY_CODES[self.weekday]

    def __str__(self) -> str:
        if self.ordinal is None:
            return self.code
        return f"{self.ordinal}{self.code}"


@dataclass(frozen=True)
class RecurrenceSpecification:
    freq: Frequency
    interval: int = 1
    count: int | None = None
    until: datetime | None = None
    by_weekday: tuple[WeekdayToken, ...] = ()
    by_month: tuple[int, ...] = ()
    by_month_day: tuple[int, ...] = ()

    def to_rrule(self) -> str:
        """Render the canonical wire string."""
        parts = [f"FREQ={self.freq.value}"]
        if self.interval != 1:
            parts.append(f"INTERVAL={self.interval}")
        if self.count is not None:
            parts.append(f"COUNT={self.count}")
        if self.until is not None:
            parts.append(f"UNTIL={self.until.astimezone(timezone.utc).strftime('%Y%m%dT%H%M%SZ')}")
        if self.by_weekday:
            parts.append("BYDAY=" + ",".join(str(t) for t in self.by_weekday))
        if self.by_month:
            parts.append("BYMONTH=" + ",".join(str(m) for m in self.by_month))
        if self.by_month_day:
            parts.append("BYMONTHDAY=" + ",".join(str(d) for d in self.by_month_day))
        return ";".join(parts)

    def __str__(self) -> str:
        return self.to_rrule()


def _parse_int(key: str, raw: str) -> int:
    if not _INT_RE.match(raw):
        raise InvalidSpecificationError(f"{key} must be an integer, got '{raw}'")
    return int(raw)


def _parse_positive(key: str, raw: str) -> int:
    value = _parse_int(key, raw)
    if value < 1:
        raise InvalidSpecificationError(f"{key} must be a positive integer, got {value}")
    return value


def _parse_list(key: str, raw: str) -> list[str]:
    items = [item.strip() for item in raw.split(",")]
    if not items or any(not item for item in items):
        raise InvalidSpecificationError(f"{key} contains an empty entry")
    return items


def parse_until(raw: str) -> datetime:
    """Parse a compact ISO UNTIL value. Values without ``Z`` are read as UTC too."""
    for fmt in _UNTIL_FORMATS:
        try:
            parsed = datetime.strptime(raw, fmt)
        except ValueError:
            continue
        if fmt == "%Y%m%d":
            # A bare date bounds the whole day.
            parsed = parsed.replace(hour=23, minute=59, second=59)
        return parsed.replace(tzinfo=timezone.utc)
    raise InvalidSpecificationError(f"UNTIL must look like 20241231T235959Z, got '{raw}'")


def _parse_weekdays(raw: str) -> tuple[WeekdayToken, ...]:
    tokens = []
    for item in _parse_list("BYDAY", raw):
        match = _WEEKDAY_RE.match(item.upper())
        if match is None:
            raise InvalidSpecificationError(
                f"BYDAY value '{item}' is not one of {', '.join(WEEKDAY_CODES)}"
            )
        ordinal = int(match.group(1)) if match.group(1) else None
        if ordinal is not None and not (1 <= abs(ordinal) <= 53):
            raise InvalidSpecificationError(f"BYDAY ordinal must be within [-53, 53] excluding 0, got {ordinal}")
        tokens.append(WeekdayToken(WEEKDAY_CODES.index(match.group(2)), ordinal))
    return tuple(tokens)


def _parse_months(raw: str) -> tuple[int, ...]:
    months = []
    for item in _parse_list("BYMONTH", raw):
        month = _parse_int("BYMONTH", item)
        if not 1 <= month <= 12:
            raise InvalidSpecificationError(f"BYMONTH value must be within [1, 12], got {month}")
        months.append(month)
    return tuple(months)


def _parse_month_days(raw: str) -> tuple[int, ...]:
    days = []
    for item in _parse_list("BYMONTHDAY", raw):
        day = _parse_int("BYMONTHDAY", item)
        if day == 0 or not -31 <= day <= 31:
            raise InvalidSpecificationError(
                f"BYMONTHDAY value must be within [-31, 31] excluding 0, got {day}"
            )
        days.append(day)
    return tuple(days)


def parse(text: str | None) -> RecurrenceSpecification:
    """Parse a wire string into a :class:`RecurrenceSpecification`.

    Raises :class:`InvalidSpecificationError` on empty input, a missing or
    unknown frequency, unknown or repeated keys, and malformed values.
    """
    if text is None or not isinstance(text, str) or not text.strip():
        raise InvalidSpecificationError("Recurrence rule is empty")

    body = text.strip()
    if body.upper().startswith("RRULE:"):
        body = body[len("RRULE:"):]

    fields: dict[str, str] = {}
    for part in body.split(";"):
        part = part.strip()
        if not part:
            continue
        key, sep, value = part.partition("=")
        key = key.strip().upper()
        value = value.strip()
        if not sep or not key:
            raise InvalidSpecificationError(f"Malformed rule part '{part}', expected KEY=VALUE")
        if key not in RECOGNIZED_KEYS:
            raise InvalidSpecificationError(f"Unknown rule key '{key}'")
        if key in fields:
            raise InvalidSpecificationError(f"Rule key '{key}' appears more than once")
        if not value:
            raise InvalidSpecificationError(f"Rule key '{key}' has no value")
        fields[key] = value

    if "FREQ" not in fields:
        raise InvalidSpecificationError("FREQ is required")
    try:
        freq = Frequency(fields["FREQ"].upper())
    except ValueError:
        raise InvalidSpecificationError(
            f"Unsupported frequency '{fields['FREQ']}'; "
            f"expected one of {', '.join(f.value for f in Frequency)}"
        ) from None

    spec = RecurrenceSpecification(
        freq=freq,
        interval=_parse_positive("INTERVAL", fields["INTERVAL"]) if "INTERVAL" in fields else 1,
        count=_parse_positive("COUNT", fields["COUNT"]) if "COUNT" in fields else None,
        until=parse_until(fields["UNTIL"].upper()) if "UNTIL" in fields else None,
        by_weekday=_parse_weekdays(fields["BYDAY"]) if "BYDAY" in fields else (),
        by_month=_parse_months(fields["BYMONTH"]) if "BYMONTH" in fields else (),
        by_month_day=_parse_month_days(fields["BYMONTHDAY"]) if "BYMONTHDAY" in fields else (),
    )
    _check_combination(spec)
    return spec


def _ordinal_span(ordinal: int) -> tuple[int, int]:
    """Days of a 28 to 31 day month on which the ``ordinal``-th weekday can fall."""
    if ordinal > 0:
        return 7 * ordinal - 6, 7 * ordinal
    return 29 + 7 * ordinal, 38 + 7 * ordinal


def _month_day_span(day: int) -> tuple[int, int]:
    if day > 0:
        return day, day
    return 29 + day, 32 + day


def _check_combination(spec: RecurrenceSpecification) -> None:
    """Reject part combinations that are undefined or can never match.

    dateutil searches up to year 9999 for a rule with no occurrences, so an
    impossible rule has to be stopped here.
    """
    ordinals = [t.ordinal for t in spec.by_weekday if t.ordinal is not None]
    # Ordinals count within the month unless a yearly rule has no BYMONTH.
    within_month = spec.freq is Frequency.MONTHLY or bool(spec.by_month)
    if ordinals:
        if spec.freq not in (Frequency.MONTHLY, Frequency.YEARLY):
            raise InvalidSpecificationError(
                f"BYDAY ordinals are only allowed with FREQ=MONTHLY or FREQ=YEARLY, not {spec.freq.value}"
            )
        if within_month and any(abs(o) > 5 for o in ordinals):
            raise InvalidSpecificationError("BYDAY ordinal must be within [-5, 5] when counting within a month")

    if not spec.by_month_day:
        return
    if spec.freq is Frequency.WEEKLY:
        raise InvalidSpecificationError("BYMONTHDAY is not allowed with FREQ=WEEKLY")

    months = spec.by_month or tuple(range(1, 13))
    if not any(abs(day) <= MAX_MONTH_DAYS[m] for m in months for day in spec.by_month_day):
        raise InvalidSpecificationError(
            "BYMONTHDAY " + ",".join(str(d) for d in spec.by_month_day)
            + " never falls within BYMONTH " + ",".join(str(m) for m in months)
        )

    if within_month and spec.by_weekday and len(ordinals) == len(spec.by_weekday):
        overlaps = (
            _ordinal_span(o)[0] <= _month_day_span(d)[1] and _month_day_span(d)[0] <= _ordinal_span(o)[1]
            for o in ordinals
            for d in spec.by_month_day
        )
        if not any(overlaps):
            raise InvalidSpecificationError("BYDAY ordinals and BYMONTHDAY never select the same day")


def as_utc(value: date | datetime) -> datetime:
    """Normalize a date or datetime to an aware UTC datetime.

    Naive datetimes are taken as UTC and bare dates as UTC midnight.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
