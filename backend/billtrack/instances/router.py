from __future__ import annotations

import uuid
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from billtrack.core.pagination import PaginationParams, get_pagination
from billtrack.dependencies import get_db, get_today
from billtrack.instances import service
from billtrack.instances.models import InstanceStatus
from billtrack.instances.schemas import (
    BulkPaymentRequest,
    BulkUpdateRequest,
    InstanceCreate,
    InstanceFilter,
    InstanceListItem,
    InstanceResponse,
    InstanceUpdate,
    PaymentRequest,
)
from billtrack.templates.models import TemplateKind

router = APIRouter()


@router.get("")
async def list_instances(
    db: Annotated[AsyncSession, Depends(get_db)],
    pagination: Annotated[PaginationParams, Depends(get_pagination)],
    user_id: uuid.UUID | None = Query(None),
    template_id: uuid.UUID | None = Query(None),
    kind: TemplateKind | None = Query(None),
    status: InstanceStatus | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    include_historical: bool = Query(True),
    search: str | None = Query(None),
) -> dict:
    filters = InstanceFilter(
        user_id=user_id,
        template_id=template_id,
        kind=kind,
        status=status,
        date_from=date_from,
        date_to=date_to,
        include_historical=include_historical,
        search=search,
    )
    instances, meta = await service.list_instances(db, filters, pagination)
    return {
        "data": [InstanceListItem.model_validate(i).model_dump() for i in instances],
        "meta": meta,
    }


@router.post("", status_code=201)
async def create_instance(
    data: InstanceCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    instance = await service.create_instance(db, data)
    return {"data": InstanceResponse.model_validate(instance).model_dump()}


@router.post("/bulk-pay")
async def bulk_pay(
    data: BulkPaymentRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    result = await service.bulk_mark_paid(db, data)
    return {"data": result.model_dump()}


@router.post("/bulk-update")
async def bulk_update(
    data: BulkUpdateRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    today: Annotated[date, Depends(get_today)],
) -> dict:
    result = await service.bulk_update_instances(db, data, today)
    return {"data": result.model_dump()}


@router.get("/{instance_id}")
async def get_instance(
    instance_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    instance = await service.get_instance(db, instance_id)
    return {"data": InstanceResponse.model_validate(instance).model_dump()}


@router.put("/{instance_id}")
async def update_instance(
    instance_id: uuid.UUID,
    data: InstanceUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    today: Annotated[date, Depends(get_today)],
) -> dict:
    instance = await service.update_instance(db, instance_id, data, today)
    return {"data": InstanceResponse.model_validate(instance).model_dump()}


@router.delete("/{instance_id}")
async def delete_instance(
    instance_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    today: Annotated[date, Depends(get_today)],
) -> dict:
    await service.delete_instance(db, instance_id, today)
    return {"data": {"message": "Instance deleted"}}


@router.post("/{instance_id}/pay")
async def pay_instance(
    instance_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    data: PaymentRequest | None = None,
) -> dict:
    instance = await service.mark_paid(db, instance_id, data or PaymentRequest())
    return {"data": InstanceResponse.model_validate(instance).model_dump()}


@router.post("/{instance_id}/cancel")
async def cancel_instance(
    instance_id: uuid.UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    instance = await service.cancel_instance(db, instance_id)
    return {"data": InstanceResponse.model_validate(instance).model_dump()}
