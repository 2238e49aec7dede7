import logging
import uuid
from datetime import timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from billtrack.core.exceptions import InvalidSpecificationError, NotFoundError, ValidationError
from billtrack.core.pagination import PaginationParams, build_pagination_meta
from billtrack.instances.models import Instance
from billtrack.materializer.service import InstanceMaterializer
from billtrack.recurrence import engine
from billtrack.recurrence.spec import as_utc, parse
from billtrack.templates.models import RECURRENCE_FIELDS, Template
from billtrack.templates.schemas import (
    TemplateCreate,
    TemplateFilter,
    TemplateUpdate,
    UpcomingOccurrences,
)

logger = logging.getLogger(__name__)


def _normalize_rule(rrule: str | None) -> str | None:
    """Reject invalid rules with their specific message; store the canonical form."""
    if rrule is None:
        return None
    result = engine.validate(rrule)
    if not result.valid:
        raise InvalidSpecificationError(f"Invalid RRULE: {result.error}")
    return parse(rrule).to_rrule()


def _check_recurrence(template: Template) -> None:
    if template.is_recurring and not (template.rrule and template.dtstart):
        raise ValidationError("Recurring templates need both rrule and dtstart")
    if template.dtstart and template.dtend and as_utc(template.dtend) < as_utc(template.dtstart):
        raise ValidationError("dtend must not be before dtstart")


async def create_template(
    db: AsyncSession, materializer: InstanceMaterializer, data: TemplateCreate
) -> tuple[Template, list[Instance]]:
    values = data.model_dump()
    values["rrule"] = _normalize_rule(data.rrule)
    # Instants are stored in UTC; SQLite drops offsets.
    for key in ("dtstart", "dtend"):
        if values[key] is not None:
            values[key] = as_utc(values[key])

    template = Template(**values)
    db.add(template)
    await db.commit()
    await db.refresh(template)

    created: list[Instance] = []
    if template.is_materializable:
        created = await materializer.generate_from_template(template.id)
    return template, created


async def list_templates(
    db: AsyncSession, filters: TemplateFilter, pagination: PaginationParams
) -> tuple[list[Template], dict]:
    query = select(Template)

    if filters.search:
        term = f"%{filters.search}%"
        query = query.where(or_(Template.title.ilike(term), Template.description.ilike(term)))
    if filters.user_id is not None:
        query = query.where(Template.user_id == filters.user_id)
    if filters.kind is not None:
        query = query.where(Template.kind == filters.kind)
    if filters.is_active is not None:
        query = query.where(Template.is_active == filters.is_active)
    if filters.is_recurring is not None:
        query = query.where(Template.is_recurring == filters.is_recurring)

    count_q = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_q)).scalar() or 0

    query = query.order_by(Template.created_at.desc()).offset(pagination.offset).limit(pagination.page_size)
    result = await db.execute(query)
    templates = list(result.scalars().all())

    return templates, build_pagination_meta(total, pagination)


async def get_template(db: AsyncSession, template_id: uuid.UUID) -> Template:
    result = await db.execute(select(Template).where(Template.id == template_id))
    template = result.scalar_one_or_none()
    if template is None:
        raise NotFoundError("Template", str(template_id))
    return template


async def update_template(
    db: AsyncSession,
    materializer: InstanceMaterializer,
    template_id: uuid.UUID,
    data: TemplateUpdate,
) -> tuple[Template, list[Instance] | None]:
    """Apply an update; recurrence-relevant changes rebuild future instances.

    Returns the template and the regenerated instances, or None when no
    regeneration was needed.
    """
    template = await get_template(db, template_id)
    update_data = data.model_dump(exclude_unset=True)
    if "rrule" in update_data:
        update_data["rrule"] = _normalize_rule(update_data["rrule"])
    for key in ("dtstart", "dtend"):
        if update_data.get(key) is not None:
            update_data[key] = as_utc(update_data[key])

    changed = set()
    for key, value in update_data.items():
        current = getattr(template, key)
        if key in ("dtstart", "dtend") and current is not None:
            current = as_utc(current)
        if current != value:
            changed.add(key)
        setattr(template, key, value)

    _check_recurrence(template)
    await db.commit()
    await db.refresh(template)

    if not changed & RECURRENCE_FIELDS:
        return template, None
    logger.info(
        "Template %s changed %s, regenerating future instances",
        template.id,
        ", ".join(sorted(changed & RECURRENCE_FIELDS)),
    )
    regenerated = await materializer.regenerate_future_instances(template.id)
    return template, regenerated


async def delete_template(
    db: AsyncSession, materializer: InstanceMaterializer, template_id: uuid.UUID
) -> int:
    """Delete a template and its unsettled future instances.

    Past, paid and cancelled instances stay behind as history.

    Returns the number of instances removed.
    """
    async with materializer.locks.for_template(template_id):
        template = await get_template(db, template_id)
        removed = await materializer.store.delete_future_non_historical_instances(
            template_id, materializer.today()
        )
        await db.delete(template)
        await db.commit()
    logger.info("Deleted template %s and %d future instances", template_id, removed)
    return removed


async def get_upcoming(
    db: AsyncSession,
    materializer: InstanceMaterializer,
    template_id: uuid.UUID,
    days: int = 30,
) -> UpcomingOccurrences:
    """Preview the template's schedule without persisting anything."""
    template = await get_template(db, template_id)
    if not (template.rrule and template.dtstart):
        return UpcomingOccurrences(
            template_id=template.id, description=None, next_occurrence=None, occurrences=[]
        )

    today = materializer.today()
    start = max(as_utc(template.dtstart).date(), today)
    end = engine.window_end_utc(today + timedelta(days=days))
    if template.dtend is not None:
        end = min(end, as_utc(template.dtend))

    # An occurrence due today still counts as upcoming.
    after = engine.window_start_utc(today) - timedelta(microseconds=1)
    next_at = engine.next_occurrence(template.rrule, template.dtstart, after)
    if next_at is not None and template.dtend is not None and next_at > as_utc(template.dtend):
        next_at = None

    return UpcomingOccurrences(
        template_id=template.id,
        description=engine.describe(template.rrule, template.dtstart),
        next_occurrence=next_at,
        occurrences=engine.occurrence_dates_between(template.rrule, template.dtstart, start, end),
    )
