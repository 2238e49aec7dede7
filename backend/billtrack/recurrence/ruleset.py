"""Composite schedules: several rules plus excluded and added dates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from dateutil.rrule import rruleset

from billtrack.core.exceptions import InvalidSpecificationError
from billtrack.recurrence.engine import build_rule, window_end_utc, window_start_utc
from billtrack.recurrence.spec import as_utc, parse

logger = logging.getLogger(__name__)


@dataclass
class RecurrenceSet:
    """Union of inclusion rules, minus exclusions, plus additions.

    Exclusions given as bare dates remove every occurrence on that UTC day;
    exclusions given as datetimes remove only that exact instant.
    """

    anchor: date | datetime
    rules: list[str] = field(default_factory=list)
    exclusions: list[date | datetime] = field(default_factory=list)
    additions: list[date | datetime] = field(default_factory=list)

    def _build(self) -> rruleset:
        rule_set = rruleset()
        for text in self.rules:
            try:
                spec = parse(text)
            except InvalidSpecificationError as exc:
                logger.warning("Dropping invalid rule %r from recurrence set: %s", text, exc.message)
                continue
            rule_set.rrule(build_rule(spec, self.anchor))
        for added in self.additions:
            rule_set.rdate(as_utc(added))
        for excluded in self.exclusions:
            if isinstance(excluded, datetime):
                rule_set.exdate(as_utc(excluded))
        return rule_set

    def occurrences_between(self, start: date | datetime, end: date | datetime) -> list[datetime]:
        window_start = window_start_utc(start)
        window_end = window_end_utc(end)
        if window_end < window_start:
            return []
        excluded_days = {d for d in self.exclusions if not isinstance(d, datetime)}
        # rruleset merges its members in order and drops duplicate instants.
        return [
            occurrence
            for occurrence in self._build().between(window_start, window_end, inc=True)
            if occurrence.date() not in excluded_days
        ]

    def occurrence_dates_between(self, start: date | datetime, end: date | datetime) -> list[date]:
        dates: list[date] = []
        for occurrence in self.occurrences_between(start, end):
            day = occurrence.date()
            if not dates or dates[-1] != day:
                dates.append(day)
        return dates
