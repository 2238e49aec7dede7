from datetime import date, datetime, timezone

from billtrack.recurrence.ruleset import RecurrenceSet

DEC_1 = date(2025, 12, 1)


class TestRecurrenceSet:
    def test_union_of_rules(self):
        rule_set = RecurrenceSet(anchor=DEC_1, rules=["FREQ=WEEKLY;BYDAY=MO", "FREQ=WEEKLY;BYDAY=TH"])
        assert rule_set.occurrence_dates_between(DEC_1, date(2025, 12, 14)) == [
            date(2025, 12, 1),
            date(2025, 12, 4),
            date(2025, 12, 8),
            date(2025, 12, 11),
        ]

    def test_overlapping_rules_are_deduplicated(self):
        single = RecurrenceSet(anchor=DEC_1, rules=["FREQ=DAILY"])
        doubled = RecurrenceSet(anchor=DEC_1, rules=["FREQ=DAILY", "FREQ=DAILY"])
        window = (DEC_1, date(2025, 12, 10))
        assert doubled.occurrences_between(*window) == single.occurrences_between(*window)

    def test_date_exclusion_removes_the_day(self):
        rule_set = RecurrenceSet(anchor=DEC_1, rules=["FREQ=WEEKLY"], exclusions=[date(2025, 12, 8)])
        assert rule_set.occurrence_dates_between(DEC_1, date(2025, 12, 21)) == [
            date(2025, 12, 1),
            date(2025, 12, 15),
        ]

    def test_datetime_exclusion_removes_the_instant(self):
        rule_set = RecurrenceSet(
            anchor=DEC_1,
            rules=["FREQ=WEEKLY"],
            exclusions=[datetime(2025, 12, 15, tzinfo=timezone.utc)],
        )
        assert date(2025, 12, 15) not in rule_set.occurrence_dates_between(DEC_1, date(2025, 12, 21))

    def test_additions_are_merged_in_order(self):
        rule_set = RecurrenceSet(anchor=DEC_1, rules=["FREQ=WEEKLY"], additions=[date(2025, 12, 25)])
        assert rule_set.occurrence_dates_between(DEC_1, date(2025, 12, 31)) == [
            date(2025, 12, 1),
            date(2025, 12, 8),
            date(2025, 12, 15),
            date(2025, 12, 22),
            date(2025, 12, 25),
            date(2025, 12, 29),
        ]

    def test_additions_outside_window_are_ignored(self):
        rule_set = RecurrenceSet(anchor=DEC_1, rules=[], additions=[date(2026, 2, 1)])
        assert rule_set.occurrence_dates_between(DEC_1, date(2025, 12, 31)) == []

    def test_invalid_rule_is_dropped(self):
        rule_set = RecurrenceSet(anchor=DEC_1, rules=["FREQ=BOGUS", "FREQ=DAILY;COUNT=2"])
        assert rule_set.occurrence_dates_between(DEC_1, date(2025, 12, 31)) == [
            date(2025, 12, 1),
            date(2025, 12, 2),
        ]

    def test_inverted_window(self):
        rule_set = RecurrenceSet(anchor=DEC_1, rules=["FREQ=DAILY"])
        assert rule_set.occurrences_between(date(2025, 12, 10), date(2025, 12, 1)) == []
