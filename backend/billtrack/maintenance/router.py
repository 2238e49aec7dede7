from typing import Annotated

from fastapi import APIRouter, Depends

from billtrack.dependencies import get_materializer
from billtrack.materializer.service import InstanceMaterializer

router = APIRouter()


@router.post("/mark-overdue")
async def mark_overdue(
    materializer: Annotated[InstanceMaterializer, Depends(get_materializer)],
) -> dict:
    count = await materializer.mark_overdue()
    return {"data": {"updated": count}}


@router.post("/mark-historical")
async def mark_historical(
    materializer: Annotated[InstanceMaterializer, Depends(get_materializer)],
) -> dict:
    count = await materializer.mark_historical()
    return {"data": {"updated": count}}


@router.post("/materialize")
async def materialize_all(
    materializer: Annotated[InstanceMaterializer, Depends(get_materializer)],
) -> dict:
    results = await materializer.materialize_all()
    return {
        "data": {
            "templates": len(results),
            "generated": sum(results.values()),
            "by_template": {str(k): v for k, v in results.items()},
        }
    }
