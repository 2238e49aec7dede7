from datetime import date
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from billtrack.config import Settings
from billtrack.materializer.service import InstanceMaterializer, utc_today
from billtrack.materializer.store import SqlAlchemyStore


async def get_db(request: Request) -> AsyncSession:
    async with request.app.state.session_factory() as session:
        yield session


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _clock(request: Request):
    return getattr(request.app.state, "today", None) or utc_today


def get_today(request: Request) -> date:
    """Today's UTC date; tests pin it through ``app.state.today``."""
    return _clock(request)()


def get_materializer(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> InstanceMaterializer:
    """Materializer bound to the request's session.

    Locks are shared app-wide so that concurrent requests for one template
    are serialized.
    """
    return InstanceMaterializer(
        SqlAlchemyStore(db),
        locks=request.app.state.materialization_locks,
        default_days_ahead=settings.default_days_ahead,
        today=_clock(request),
    )
