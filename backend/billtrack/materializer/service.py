"""Turn recurring templates into persisted instances.

Generation is idempotent. Each run diffs the rule's occurrences against the
due dates already stored for the template and inserts only the missing ones.
Runs for the same template are serialized by an in-process lock, and the
(template_id, due_date) unique constraint covers concurrent processes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from typing import Any

from billtrack.core.exceptions import NotFoundError, TemplateNotRecurringError
from billtrack.instances.models import Instance, InstanceStatus
from billtrack.materializer.store import Store
from billtrack.recurrence import engine
from billtrack.recurrence.spec import as_utc
from billtrack.templates.models import Template

logger = logging.getLogger(__name__)

DEFAULT_DAYS_AHEAD = 90


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class MaterializationLocks:
    """One ``asyncio.Lock`` per template, dropped once nobody holds a reference."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def for_template(self, template_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(template_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[template_id] = lock
        return lock


class InstanceMaterializer:
    def __init__(
        self,
        store: Store,
        locks: MaterializationLocks | None = None,
        default_days_ahead: int = DEFAULT_DAYS_AHEAD,
        today: Callable[[], date] = utc_today,
    ):
        self.store = store
        self.locks = locks or MaterializationLocks()
        self.default_days_ahead = default_days_ahead
        self.today = today

    def generation_window(self, template: Template) -> tuple[datetime, datetime] | None:
        """Window of due dates to materialize, or None when it is empty.

        Starts at the later of the anchor's day and today, ends ``days_ahead``
        days after today and never extends past the template's ``dtend``.
        """
        today = self.today()
        days_ahead = template.auto_generate_days_ahead
        if days_ahead is None:
            days_ahead = self.default_days_ahead

        start = max(as_utc(template.dtstart).date(), today)
        end = engine.window_end_utc(today + timedelta(days=days_ahead))
        if template.dtend is not None:
            end = min(end, as_utc(template.dtend))

        start_utc = engine.window_start_utc(start)
        if end < start_utc:
            return None
        return start_utc, end

    def _instance_row(self, template: Template, due_date: date) -> dict[str, Any]:
        return {
            "id": uuid.uuid4(),
            "user_id": template.user_id,
            "template_id": template.id,
            "kind": template.kind,
            "title": template.title,
            "description": template.description,
            "amount": template.amount,
            "currency": template.currency,
            "category_id": template.category_id,
            "priority": template.priority,
            "notes": template.notes,
            "due_date": due_date,
            "status": InstanceStatus.SCHEDULED,
            "is_recurring": True,
            "is_historical": False,
        }

    async def _load(self, template_id: uuid.UUID) -> Template:
        template = await self.store.get_template(template_id)
        if template is None:
            raise NotFoundError("Template", str(template_id))
        return template

    async def _generate(self, template: Template) -> list[Instance]:
        if not template.is_materializable:
            raise TemplateNotRecurringError(str(template.id))

        validation = engine.validate(template.rrule)
        if not validation.valid:
            logger.warning(
                "Template %s has an invalid recurrence rule, generating nothing: %s",
                template.id,
                validation.error,
            )
            return []

        window = self.generation_window(template)
        if window is None:
            return []
        start, end = window

        occurrences = engine.occurrence_dates_between(template.rrule, template.dtstart, start, end)
        existing = await self.store.get_existing_due_dates(template.id)
        new_dates = [d for d in dict.fromkeys(occurrences) if d not in existing]
        if not new_dates:
            logger.debug("Template %s is up to date through %s", template.id, end.date())
            return []

        created = await self.store.insert_instances(
            [self._instance_row(template, d) for d in new_dates]
        )
        logger.info(
            "Materialized %d instances for template %s (%s to %s)",
            len(created),
            template.id,
            start.date(),
            end.date(),
        )
        return created

    async def generate_from_template(self, template_id: uuid.UUID) -> list[Instance]:
        """Create the missing instances for a recurring template.

        Raises TemplateNotRecurringError when the template is inactive, not
        recurring, or missing its rule or anchor.
        """
        async with self.locks.for_template(template_id):
            template = await self._load(template_id)
            return await self._generate(template)

    async def regenerate_future_instances(self, template_id: uuid.UUID) -> list[Instance]:
        """Drop not-yet-occurred, unsettled instances and rebuild them.

        Instances dated before today, flagged historical, paid or cancelled
        are left alone, and their due dates are not generated again. A
        template that is no longer recurring or active only loses its future
        instances.
        """
        async with self.locks.for_template(template_id):
            template = await self._load(template_id)
            removed = await self.store.delete_future_non_historical_instances(
                template_id, self.today()
            )
            logger.info("Removed %d future instances of template %s", removed, template_id)
            if not template.is_materializable:
                return []
            return await self._generate(template)

    async def mark_overdue(self) -> int:
        count = await self.store.mark_overdue(self.today())
        if count:
            logger.info("Marked %d instances as overdue", count)
        return count

    async def mark_historical(self) -> int:
        count = await self.store.mark_historical(self.today())
        if count:
            logger.info("Marked %d instances as historical", count)
        return count

    async def materialize_all(self) -> dict[uuid.UUID, int]:
        """Extend the rolling horizon of every active recurring template.

        A failing template is logged and skipped so the rest of the batch
        still runs.
        """
        results: dict[uuid.UUID, int] = {}
        for template_id in await self.store.list_materializable_template_ids():
            try:
                created = await self.generate_from_template(template_id)
            except Exception:
                logger.warning("Materialization failed for template %s", template_id, exc_info=True)
                await self.store.rollback()
                continue
            results[template_id] = len(created)
        return results
