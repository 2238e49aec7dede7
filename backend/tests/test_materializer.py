"""Materializer behaviour against an in-memory SQLite store and a fixed clock."""
import asyncio
import logging
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from billtrack.core.exceptions import NotFoundError, TemplateNotRecurringError
from billtrack.instances.models import Instance, InstanceStatus
from billtrack.materializer.service import InstanceMaterializer
from billtrack.materializer.store import SqlAlchemyStore

TODAY = date(2025, 12, 1)

MONTHLY_DUE = [date(2025, 12, 1), date(2026, 1, 1), date(2026, 2, 1), date(2026, 3, 1)]


async def _instances(db, template_id) -> list[Instance]:
    result = await db.execute(
        select(Instance).where(Instance.template_id == template_id).order_by(Instance.due_date)
    )
    return list(result.scalars().all())


async def _due_dates(db, template_id) -> list[date]:
    return [i.due_date for i in await _instances(db, template_id)]


# ── generate_from_template ───────────────────────────────────────────────────

class TestGenerate:
    async def test_creates_window_of_instances(self, db, materializer, make_template):
        template = await make_template()
        created = await materializer.generate_from_template(template.id)
        assert [i.due_date for i in created] == MONTHLY_DUE
        assert await _due_dates(db, template.id) == MONTHLY_DUE

    async def test_snapshot_fields(self, materializer, make_template):
        template = await make_template(title="Internet", amount=59.99, notes="autopay")
        created = await materializer.generate_from_template(template.id)
        first = created[0]
        assert first.title == "Internet"
        assert first.amount == 59.99
        assert first.notes == "autopay"
        assert first.user_id == template.user_id
        assert first.status is InstanceStatus.SCHEDULED
        assert first.is_recurring is True
        assert first.is_historical is False
        assert first.can_edit is True

    async def test_idempotent(self, db, materializer, make_template):
        template = await make_template()
        await materializer.generate_from_template(template.id)
        again = await materializer.generate_from_template(template.id)
        assert again == []
        assert await _due_dates(db, template.id) == MONTHLY_DUE

    async def test_daily_horizon_covers_today_through_horizon(self, db, materializer, make_template):
        template = await make_template(rrule="FREQ=DAILY", auto_generate_days_ahead=90)
        created = await materializer.generate_from_template(template.id)
        assert len(created) == 91
        assert created[0].due_date == TODAY
        assert created[-1].due_date == TODAY + timedelta(days=90)

    async def test_no_backfill_for_past_anchor(self, materializer, make_template):
        template = await make_template(dtstart=datetime(2025, 6, 1, tzinfo=timezone.utc))
        created = await materializer.generate_from_template(template.id)
        assert [i.due_date for i in created] == MONTHLY_DUE

    async def test_future_anchor_starts_window(self, materializer, make_template):
        template = await make_template(
            rrule="FREQ=DAILY",
            dtstart=datetime(2025, 12, 10, tzinfo=timezone.utc),
            auto_generate_days_ahead=30,
        )
        created = await materializer.generate_from_template(template.id)
        assert created[0].due_date == date(2025, 12, 10)
        assert created[-1].due_date == date(2025, 12, 31)

    async def test_anchor_beyond_horizon_generates_nothing(self, materializer, make_template):
        template = await make_template(
            dtstart=datetime(2026, 6, 1, tzinfo=timezone.utc), auto_generate_days_ahead=30
        )
        assert await materializer.generate_from_template(template.id) == []

    async def test_dtend_clips_window(self, materializer, make_template):
        template = await make_template(dtend=datetime(2026, 1, 15, tzinfo=timezone.utc))
        created = await materializer.generate_from_template(template.id)
        assert [i.due_date for i in created] == MONTHLY_DUE[:2]

    async def test_default_horizon(self, store, clock, make_template):
        materializer = InstanceMaterializer(store, default_days_ahead=31, today=clock)
        template = await make_template(auto_generate_days_ahead=None)
        created = await materializer.generate_from_template(template.id)
        assert [i.due_date for i in created] == MONTHLY_DUE[:2]

    async def test_rolling_horizon_adds_only_new_dates(self, db, clock, materializer, make_template):
        template = await make_template()
        await materializer.generate_from_template(template.id)
        clock.current = date(2026, 1, 15)
        created = await materializer.generate_from_template(template.id)
        assert [i.due_date for i in created] == [date(2026, 4, 1)]
        assert len(await _due_dates(db, template.id)) == 5

    async def test_count_limited_rule(self, materializer, make_template):
        template = await make_template(rrule="FREQ=WEEKLY;COUNT=3")
        created = await materializer.generate_from_template(template.id)
        assert [i.due_date for i in created] == [date(2025, 12, 1), date(2025, 12, 8), date(2025, 12, 15)]

    async def test_invalid_rule_generates_nothing(self, db, materializer, make_template, caplog):
        template = await make_template(rrule="FREQ=BOGUS")
        with caplog.at_level(logging.WARNING, logger="billtrack.materializer.service"):
            created = await materializer.generate_from_template(template.id)
        assert created == []
        assert str(template.id) in caplog.text
        assert await _instances(db, template.id) == []

    @pytest.mark.parametrize(
        "overrides",
        [
            {"is_recurring": False},
            {"is_active": False},
            {"rrule": None},
            {"dtstart": None},
        ],
    )
    async def test_not_recurring(self, materializer, make_template, overrides):
        template = await make_template(**overrides)
        with pytest.raises(TemplateNotRecurringError):
            await materializer.generate_from_template(template.id)

    async def test_missing_template(self, materializer):
        with pytest.raises(NotFoundError):
            await materializer.generate_from_template(uuid.uuid4())


# ── uniqueness and concurrency ───────────────────────────────────────────────

class TestUniqueness:
    async def test_insert_skips_existing_due_dates(self, db, store, materializer, make_template):
        template = await make_template()
        await materializer.generate_from_template(template.id)
        rows = [
            materializer._instance_row(template, date(2026, 1, 1)),
            materializer._instance_row(template, date(2026, 4, 1)),
        ]
        inserted = await store.insert_instances(rows)
        assert [i.due_date for i in inserted] == [date(2026, 4, 1)]
        assert len(await _due_dates(db, template.id)) == 5

    async def test_concurrent_generation_inserts_once(self, db, materializer, make_template):
        template = await make_template()
        results = await asyncio.gather(
            *(materializer.generate_from_template(template.id) for _ in range(3))
        )
        assert sum(len(r) for r in results) == len(MONTHLY_DUE)
        assert await _due_dates(db, template.id) == MONTHLY_DUE

    async def test_one_time_instances_never_collide(self, db, store, materializer, make_template):
        template = await make_template(is_recurring=False)
        rows = [materializer._instance_row(template, TODAY) for _ in range(2)]
        for row in rows:
            row["template_id"] = None
        await store.insert_instances(rows)
        count = (await db.execute(select(func.count()).select_from(Instance))).scalar()
        assert count == 2


# ── regenerate_future_instances ──────────────────────────────────────────────

class TestRegenerate:
    async def test_rebuilds_future_and_preserves_history(self, db, clock, materializer, make_template):
        template = await make_template()
        await materializer.generate_from_template(template.id)

        clock.current = date(2026, 1, 10)
        await materializer.mark_historical()
        template.amount = 2000.0
        await db.commit()

        rebuilt = await materializer.regenerate_future_instances(template.id)
        assert [i.due_date for i in rebuilt] == [date(2026, 2, 1), date(2026, 3, 1), date(2026, 4, 1)]
        assert all(i.amount == 2000.0 for i in rebuilt)

        instances = await _instances(db, template.id)
        history = [i for i in instances if i.is_historical]
        assert [i.due_date for i in history] == [date(2025, 12, 1), date(2026, 1, 1)]
        assert all(i.amount == 1500.0 for i in history)
        assert len(instances) == 5

    async def test_past_unflagged_instances_are_kept(self, db, clock, materializer, make_template):
        template = await make_template()
        await materializer.generate_from_template(template.id)
        clock.current = date(2026, 1, 10)
        await materializer.regenerate_future_instances(template.id)
        assert date(2025, 12, 1) in await _due_dates(db, template.id)

    async def test_deactivated_template_only_loses_future(self, db, materializer, make_template):
        template = await make_template()
        await materializer.generate_from_template(template.id)
        template.is_active = False
        await db.commit()

        assert await materializer.regenerate_future_instances(template.id) == []
        assert await _instances(db, template.id) == []

    async def test_paid_future_instance_survives(self, db, store, materializer, make_template):
        template = await make_template()
        created = await materializer.generate_from_template(template.id)
        paid_at = datetime(2025, 12, 20, 9, 30, tzinfo=timezone.utc)
        paid = await store.update_instance_status(created[1].id, InstanceStatus.PAID, paid_at=paid_at)
        paid_id = paid.id

        template.amount = 2000.0
        await db.commit()
        rebuilt = await materializer.regenerate_future_instances(template.id)
        assert [i.due_date for i in rebuilt] == [date(2025, 12, 1), date(2026, 2, 1), date(2026, 3, 1)]

        instances = await _instances(db, template.id)
        assert [i.due_date for i in instances] == MONTHLY_DUE
        kept = instances[1]
        assert kept.id == paid_id
        assert kept.status is InstanceStatus.PAID
        assert kept.paid_at.replace(tzinfo=timezone.utc) == paid_at
        assert kept.amount == 1500.0

    async def test_cancelled_future_instance_stays_cancelled(self, db, store, materializer, make_template):
        template = await make_template()
        created = await materializer.generate_from_template(template.id)
        cancelled_id = created[2].id
        await store.update_instance_status(cancelled_id, InstanceStatus.CANCELLED)

        rebuilt = await materializer.regenerate_future_instances(template.id)
        assert date(2026, 2, 1) not in [i.due_date for i in rebuilt]

        instances = await _instances(db, template.id)
        assert [i.due_date for i in instances] == MONTHLY_DUE
        assert instances[2].id == cancelled_id
        assert instances[2].status is InstanceStatus.CANCELLED

    async def test_deactivation_keeps_settled_instances(self, db, store, materializer, make_template):
        template = await make_template()
        created = await materializer.generate_from_template(template.id)
        await store.update_instance_status(created[1].id, InstanceStatus.PAID)
        template.is_active = False
        await db.commit()

        await materializer.regenerate_future_instances(template.id)
        assert [i.status for i in await _instances(db, template.id)] == [InstanceStatus.PAID]


# ── sweeps ───────────────────────────────────────────────────────────────────

class TestSweeps:
    async def test_mark_overdue(self, db, store, clock, materializer, make_template):
        template = await make_template()
        created = await materializer.generate_from_template(template.id)
        await store.update_instance_status(created[1].id, InstanceStatus.PAID)

        clock.current = date(2026, 2, 15)
        assert await materializer.mark_overdue() == 2
        statuses = [i.status for i in await _instances(db, template.id)]
        assert statuses == [
            InstanceStatus.OVERDUE,
            InstanceStatus.PAID,
            InstanceStatus.OVERDUE,
            InstanceStatus.SCHEDULED,
        ]

    async def test_mark_overdue_is_idempotent(self, clock, materializer, make_template):
        template = await make_template()
        await materializer.generate_from_template(template.id)
        clock.current = date(2026, 2, 15)
        await materializer.mark_overdue()
        assert await materializer.mark_overdue() == 0

    async def test_due_today_is_not_overdue(self, materializer, make_template):
        template = await make_template()
        await materializer.generate_from_template(template.id)
        assert await materializer.mark_overdue() == 0

    async def test_mark_historical(self, db, clock, materializer, make_template):
        template = await make_template()
        await materializer.generate_from_template(template.id)
        clock.current = date(2026, 2, 15)
        assert await materializer.mark_historical() == 3
        assert await materializer.mark_historical() == 0
        flags = [i.can_edit for i in await _instances(db, template.id)]
        assert flags == [False, False, False, True]


# ── materialize_all ──────────────────────────────────────────────────────────

class _FailingStore(SqlAlchemyStore):
    def __init__(self, session, broken_id):
        super().__init__(session)
        self.broken_id = broken_id

    async def get_existing_due_dates(self, template_id):
        if template_id == self.broken_id:
            raise RuntimeError("storage unavailable")
        return await super().get_existing_due_dates(template_id)


class TestMaterializeAll:
    async def test_runs_every_active_recurring_template(self, materializer, make_template):
        rent = await make_template()
        gym = await make_template(title="Gym", rrule="FREQ=WEEKLY;COUNT=2")
        await make_template(title="Paused", is_active=False)
        await make_template(title="One-off", is_recurring=False)

        results = await materializer.materialize_all()
        assert results == {rent.id: 4, gym.id: 2}

    async def test_invalid_template_does_not_stop_batch(self, materializer, make_template):
        broken = await make_template(rrule="FREQ=BOGUS")
        rent = await make_template()
        results = await materializer.materialize_all()
        assert results[broken.id] == 0
        assert results[rent.id] == 4

    async def test_failing_template_is_skipped(self, db, clock, make_template, caplog):
        broken_id = (await make_template(title="Broken")).id
        rent_id = (await make_template()).id
        materializer = InstanceMaterializer(_FailingStore(db, broken_id), today=clock)

        with caplog.at_level(logging.WARNING, logger="billtrack.materializer.service"):
            results = await materializer.materialize_all()
        assert results == {rent_id: 4}
        assert str(broken_id) in caplog.text
