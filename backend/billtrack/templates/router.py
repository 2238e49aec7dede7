from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from billtrack.core.pagination import PaginationParams, get_pagination
from billtrack.dependencies import get_db, get_materializer
from billtrack.instances.schemas import InstanceListItem
from billtrack.materializer.service import InstanceMaterializer
from billtrack.recurrence import engine
from billtrack.templates import service
from billtrack.templates.models import TemplateKind
from billtrack.templates.schemas import (
    TemplateCreate,
    TemplateFilter,
    TemplateListItem,
    TemplateResponse,
    TemplateUpdate,
)

router = APIRouter()


def _to_response(template, schema=TemplateResponse) -> dict:
    """Serialize a template along with its human-readable schedule."""
    data = schema.model_validate(template).model_dump()
    data["recurrence_description"] = (
        engine.describe(template.rrule, template.dtstart) if template.rrule else None
    )
    return data


def _instances(instances) -> list[dict]:
    return [InstanceListItem.model_validate(i).model_dump() for i in instances]


@router.get("")
async def list_templates(
    db: Annotated[AsyncSession, Depends(get_db)],
    pagination: Annotated[PaginationParams, Depends(get_pagination)],
    user_id: uuid.UUID | None = Query(None),
    kind: TemplateKind | None = Query(None),
    is_active: bool | None = Query(None),
    is_recurring: bool | None = Query(None),
    search: str | None = Query(None),
) -> dict:
    filters = TemplateFilter(
        user_id=user_id,
        kind=kind,
        is_active=is_active,
        is_recurring=is_recurring,
        search=search,
    )
    templates, meta = await service.list_templates(db, filters, pagination)
    return {
        "data": [_to_response(t, TemplateListItem) for t in templates],
        "meta": meta,
    }


@router.post("", status_code=201)
async def create_template(
    data: TemplateCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    materializer: Annotated[InstanceMaterializer, Depends(get_materializer)],
) -> dict:
    template, created = await service.create_template(db, materializer, data)
    return {"data": _to_response(template), "meta": {"generated": len(created)}}


@router.get("/{template_id}")
async def get_template(
    template_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    template = await service.get_template(db, template_id)
    return {"data": _to_response(template)}


@router.put("/{template_id}")
async def update_template(
    template_id: uuid.UUID,
    data: TemplateUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    materializer: Annotated[InstanceMaterializer, Depends(get_materializer)],
) -> dict:
    template, regenerated = await service.update_template(db, materializer, template_id, data)
    meta = {"regenerated": regenerated is not None}
    if regenerated is not None:
        meta["generated"] = len(regenerated)
    return {"data": _to_response(template), "meta": meta}


@router.delete("/{template_id}")
async def delete_template(
    template_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    materializer: Annotated[InstanceMaterializer, Depends(get_materializer)],
) -> dict:
    removed = await service.delete_template(db, materializer, template_id)
    return {"data": {"message": "Template deleted", "instances_removed": removed}}


@router.post("/{template_id}/generate")
async def generate_instances(
    template_id: uuid.UUID,
    materializer: Annotated[InstanceMaterializer, Depends(get_materializer)],
) -> dict:
    created = await materializer.generate_from_template(template_id)
    return {"data": _instances(created), "meta": {"generated": len(created)}}


@router.post("/{template_id}/regenerate")
async def regenerate_instances(
    template_id: uuid.UUID,
    materializer: Annotated[InstanceMaterializer, Depends(get_materializer)],
) -> dict:
    created = await materializer.regenerate_future_instances(template_id)
    return {"data": _instances(created), "meta": {"generated": len(created)}}


@router.get("/{template_id}/upcoming")
async def upcoming_occurrences(
    template_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    materializer: Annotated[InstanceMaterializer, Depends(get_materializer)],
    days: int = Query(30, ge=1, le=366),
) -> dict:
    upcoming = await service.get_upcoming(db, materializer, template_id, days)
    return {"data": upcoming.model_dump()}
