import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from billtrack.config import Settings
from billtrack.core.exceptions import register_exception_handlers
from billtrack.database import build_engine, build_session_factory, create_all
from billtrack.materializer.service import MaterializationLocks

# Import all models so Base.metadata knows about them
import billtrack.templates.models  # noqa: F401
import billtrack.instances.models  # noqa: F401

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(application: FastAPI):
    settings = application.state.settings

    # Ensure the data directory exists before DB connection
    if settings.is_sqlite and not settings.is_memory_db:
        db_path = settings.database_url.split("///")[-1]
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    engine = build_engine(settings.database_url, echo=settings.database_echo)

    # Auto-create tables for SQLite; other databases are managed by Alembic
    if settings.is_sqlite:
        await create_all(engine)

    application.state.engine = engine
    application.state.session_factory = build_session_factory(engine)

    if settings.scheduler_enabled:
        from billtrack.core.scheduler import setup_scheduler

        setup_scheduler(
            application.state.session_factory,
            settings,
            application.state.materialization_locks,
        )

    yield

    if settings.scheduler_enabled:
        from billtrack.core.scheduler import shutdown_scheduler

        shutdown_scheduler()
    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    fastapi_app = FastAPI(
        title="Billtrack",
        description="Recurring bills and income with materialized instances",
        version="0.1.0",
        lifespan=lifespan,
    )
    fastapi_app.state.settings = settings
    fastapi_app.state.materialization_locks = MaterializationLocks()

    # CORS
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routers
    from billtrack.instances.router import router as instances_router
    from billtrack.maintenance.router import router as maintenance_router
    from billtrack.recurrence.router import router as recurrence_router
    from billtrack.templates.router import router as templates_router

    fastapi_app.include_router(recurrence_router, prefix="/api/recurrence", tags=["recurrence"])
    fastapi_app.include_router(templates_router, prefix="/api/templates", tags=["templates"])
    fastapi_app.include_router(instances_router, prefix="/api/instances", tags=["instances"])
    fastapi_app.include_router(maintenance_router, prefix="/api/maintenance", tags=["maintenance"])

    # System endpoints
    @fastapi_app.get("/api/system/health")
    async def health(request: Request):
        async with request.app.state.session_factory() as db:
            await db.execute(text("SELECT 1"))
        return {"data": {"status": "healthy"}}

    # Register exception handlers
    register_exception_handlers(fastapi_app)

    return fastapi_app


app = create_app()


def run() -> None:
    import uvicorn

    settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
