import logging
import uuid
from datetime import date, datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from billtrack.core.exceptions import HistoricalRecordImmutableError, NotFoundError, ValidationError
from billtrack.core.pagination import PaginationParams, build_pagination_meta
from billtrack.instances.models import Instance, InstanceStatus
from billtrack.instances.schemas import (
    BulkPaymentRequest,
    BulkPaymentResult,
    BulkUpdateRequest,
    BulkUpdateResult,
    InstanceCreate,
    InstanceFilter,
    InstanceUpdate,
    PaymentRequest,
)
from billtrack.instances.status import can_transition, transition
from billtrack.materializer.store import SqlAlchemyStore

logger = logging.getLogger(__name__)


async def create_instance(db: AsyncSession, data: InstanceCreate) -> Instance:
    instance = Instance(
        **data.model_dump(),
        status=InstanceStatus.PENDING,
        is_recurring=False,
        is_historical=False,
    )
    db.add(instance)
    await db.commit()
    await db.refresh(instance)
    return instance


async def list_instances(
    db: AsyncSession, filters: InstanceFilter, pagination: PaginationParams
) -> tuple[list[Instance], dict]:
    query = select(Instance)

    if filters.search:
        term = f"%{filters.search}%"
        query = query.where(or_(Instance.title.ilike(term), Instance.description.ilike(term)))
    if filters.user_id is not None:
        query = query.where(Instance.user_id == filters.user_id)
    if filters.template_id is not None:
        query = query.where(Instance.template_id == filters.template_id)
    if filters.kind is not None:
        query = query.where(Instance.kind == filters.kind)
    if filters.status is not None:
        query = query.where(Instance.status == filters.status)
    if filters.date_from:
        query = query.where(Instance.due_date >= filters.date_from)
    if filters.date_to:
        query = query.where(Instance.due_date <= filters.date_to)
    if not filters.include_historical:
        query = query.where(Instance.is_historical == False)  # noqa: E712

    count_q = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_q)).scalar() or 0

    query = query.order_by(Instance.due_date, Instance.title).offset(pagination.offset).limit(pagination.page_size)
    result = await db.execute(query)
    instances = list(result.scalars().all())

    return instances, build_pagination_meta(total, pagination)


async def get_instance(db: AsyncSession, instance_id: uuid.UUID) -> Instance:
    result = await db.execute(select(Instance).where(Instance.id == instance_id))
    instance = result.scalar_one_or_none()
    if instance is None:
        raise NotFoundError("Instance", str(instance_id))
    return instance


async def _ensure_editable(
    db: AsyncSession, instance: Instance, today: date, action: str
) -> None:
    """Refuse to touch history, including past-due instances the sweep has not flagged yet."""
    if not instance.is_historical and instance.due_date < today:
        instance.is_historical = True
        await db.commit()
    if instance.is_historical:
        raise HistoricalRecordImmutableError(str(instance.id), action)


async def update_instance(
    db: AsyncSession, instance_id: uuid.UUID, data: InstanceUpdate, today: date
) -> Instance:
    instance = await get_instance(db, instance_id)
    await _ensure_editable(db, instance, today, "edit")

    update_data = data.model_dump(exclude_unset=True)
    new_due = update_data.get("due_date")
    if instance.template_id is not None and new_due is not None and new_due != instance.due_date:
        clash = await db.execute(
            select(Instance.id).where(
                Instance.template_id == instance.template_id,
                Instance.due_date == new_due,
            )
        )
        if clash.first() is not None:
            raise ValidationError(f"This template already has an instance due on {new_due}")

    for key, value in update_data.items():
        setattr(instance, key, value)

    await db.commit()
    await db.refresh(instance)
    return instance


async def delete_instance(db: AsyncSession, instance_id: uuid.UUID, today: date) -> None:
    instance = await get_instance(db, instance_id)
    await _ensure_editable(db, instance, today, "delete")
    await db.delete(instance)
    await db.commit()


async def mark_paid(
    db: AsyncSession, instance_id: uuid.UUID, data: PaymentRequest
) -> Instance:
    """Settle an instance. Overdue and historical instances can still be paid."""
    instance = await get_instance(db, instance_id)
    target = transition(instance.status, InstanceStatus.PAID)

    extra = {"paid_at": data.paid_at or datetime.now(timezone.utc)}
    if data.actual_amount is not None:
        extra["actual_amount"] = data.actual_amount
    if data.notes is not None:
        extra["notes"] = data.notes
    return await SqlAlchemyStore(db).update_instance_status(instance.id, target, **extra)


async def cancel_instance(db: AsyncSession, instance_id: uuid.UUID) -> Instance:
    instance = await get_instance(db, instance_id)
    target = transition(instance.status, InstanceStatus.CANCELLED)
    return await SqlAlchemyStore(db).update_instance_status(instance.id, target)


async def bulk_mark_paid(db: AsyncSession, data: BulkPaymentRequest) -> BulkPaymentResult:
    """Pay every listed instance that can still be paid; report the rest as skipped.

    Historical instances are skipped here and must be settled one at a time.
    """
    paid_at = data.paid_at or datetime.now(timezone.utc)
    ids = list(dict.fromkeys(data.instance_ids))

    result = await db.execute(select(Instance).where(Instance.id.in_(ids)))
    found = {i.id: i for i in result.scalars().all()}

    paid: list[uuid.UUID] = []
    skipped: list[uuid.UUID] = []
    for instance_id in ids:
        instance = found.get(instance_id)
        if (
            instance is None
            or instance.is_historical
            or not can_transition(instance.status, InstanceStatus.PAID)
        ):
            skipped.append(instance_id)
            continue
        instance.status = InstanceStatus.PAID
        instance.paid_at = paid_at
        actual_amount = data.actual_amounts.get(instance_id, data.actual_amount)
        if actual_amount is not None:
            instance.actual_amount = actual_amount
        if data.notes is not None:
            instance.notes = data.notes
        paid.append(instance_id)

    await db.commit()
    if skipped:
        logger.info("Bulk payment skipped %d of %d instances", len(skipped), len(ids))
    return BulkPaymentResult(paid=paid, skipped=skipped)


async def bulk_update_instances(
    db: AsyncSession, data: BulkUpdateRequest, today: date
) -> BulkUpdateResult:
    """Apply the same field changes to every listed instance that is not history."""
    changes = data.changes.model_dump(exclude_unset=True)
    ids = list(dict.fromkeys(data.instance_ids))

    result = await db.execute(select(Instance).where(Instance.id.in_(ids)))
    found = {i.id: i for i in result.scalars().all()}

    updated: list[uuid.UUID] = []
    skipped: list[uuid.UUID] = []
    for instance_id in ids:
        instance = found.get(instance_id)
        if instance is None or instance.is_historical or instance.due_date < today:
            skipped.append(instance_id)
            continue
        for key, value in changes.items():
            setattr(instance, key, value)
        updated.append(instance_id)

    await db.commit()
    if skipped:
        logger.info("Bulk update skipped %d of %d instances", len(skipped), len(ids))
    return BulkUpdateResult(updated=updated, skipped=skipped)
