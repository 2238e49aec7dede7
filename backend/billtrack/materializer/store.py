"""Persistence contract used by the materializer, and its SQLAlchemy backing.

Each write method commits before returning, so every call is atomic on its
own. Database errors are not caught here; they reach the caller unchanged.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Any, Protocol

from sqlalchemy import delete, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from billtrack.instances.models import Instance, InstanceStatus
from billtrack.instances.status import UNRESOLVED, sources_for
from billtrack.templates.models import Template


class Store(Protocol):
    async def get_template(self, template_id: uuid.UUID) -> Template | None: ...

    async def get_existing_due_dates(self, template_id: uuid.UUID) -> set[date]: ...

    async def insert_instances(self, rows: list[dict[str, Any]]) -> list[Instance]: ...

    async def delete_future_non_historical_instances(
        self, template_id: uuid.UUID, from_date: date
    ) -> int: ...

    async def update_instance_status(
        self, instance_id: uuid.UUID, status: InstanceStatus, **extra: Any
    ) -> Instance | None: ...

    async def list_materializable_template_ids(self) -> list[uuid.UUID]: ...

    async def mark_overdue(self, today: date) -> int: ...

    async def mark_historical(self, today: date) -> int: ...

    async def rollback(self) -> None: ...


class SqlAlchemyStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_template(self, template_id: uuid.UUID) -> Template | None:
        result = await self.session.execute(select(Template).where(Template.id == template_id))
        return result.scalar_one_or_none()

    async def get_existing_due_dates(self, template_id: uuid.UUID) -> set[date]:
        result = await self.session.execute(
            select(Instance.due_date).where(Instance.template_id == template_id)
        )
        return set(result.scalars().all())

    def _insert_skipping_duplicates(self, rows: list[dict[str, Any]]):
        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            stmt = sqlite.insert(Instance).values(rows)
        elif dialect == "postgresql":
            stmt = postgresql.insert(Instance).values(rows)
        else:
            # No portable upsert; the unique constraint still rejects duplicates.
            return insert(Instance).values(rows)
        return stmt.on_conflict_do_nothing(index_elements=["template_id", "due_date"])

    async def insert_instances(self, rows: list[dict[str, Any]]) -> list[Instance]:
        """Insert rows, silently skipping any (template_id, due_date) already stored.

        Returns only the rows that were actually written.
        """
        if not rows:
            return []
        stmt = self._insert_skipping_duplicates(rows).returning(Instance)
        result = await self.session.scalars(stmt)
        inserted = sorted(result.all(), key=lambda i: i.due_date)
        await self.session.commit()
        return inserted

    async def delete_future_non_historical_instances(
        self, template_id: uuid.UUID, from_date: date
    ) -> int:
        result = await self.session.execute(
            delete(Instance)
            .where(
                Instance.template_id == template_id,
                Instance.due_date >= from_date,
                Instance.is_historical == False,  # noqa: E712
                Instance.status.in_(sorted(UNRESOLVED)),
            )
            .execution_options(synchronize_session="evaluate")
        )
        await self.session.commit()
        return result.rowcount or 0

    async def update_instance_status(
        self, instance_id: uuid.UUID, status: InstanceStatus, **extra: Any
    ) -> Instance | None:
        result = await self.session.execute(select(Instance).where(Instance.id == instance_id))
        instance = result.scalar_one_or_none()
        if instance is None:
            return None
        instance.status = status
        for key, value in extra.items():
            setattr(instance, key, value)
        await self.session.commit()
        await self.session.refresh(instance)
        return instance

    async def list_materializable_template_ids(self) -> list[uuid.UUID]:
        result = await self.session.execute(
            select(Template.id)
            .where(
                Template.is_recurring == True,  # noqa: E712
                Template.is_active == True,  # noqa: E712
                Template.rrule.is_not(None),
                Template.dtstart.is_not(None),
            )
            .order_by(Template.created_at)
        )
        return list(result.scalars().all())

    async def mark_overdue(self, today: date) -> int:
        result = await self.session.execute(
            update(Instance)
            .where(
                Instance.status.in_(sorted(sources_for(InstanceStatus.OVERDUE))),
                Instance.due_date < today,
            )
            .values(status=InstanceStatus.OVERDUE)
            .execution_options(synchronize_session="evaluate")
        )
        await self.session.commit()
        return result.rowcount or 0

    async def mark_historical(self, today: date) -> int:
        result = await self.session.execute(
            update(Instance)
            .where(
                Instance.due_date < today,
                Instance.is_historical == False,  # noqa: E712
            )
            .values(is_historical=True)
            .execution_options(synchronize_session="evaluate")
        )
        await self.session.commit()
        return result.rowcount or 0

    async def rollback(self) -> None:
        await self.session.rollback()
