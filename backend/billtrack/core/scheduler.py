import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from billtrack.materializer.service import InstanceMaterializer, MaterializationLocks
from billtrack.materializer.store import SqlAlchemyStore

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()
_session_factory: Any = None
_settings: Any = None
_locks: MaterializationLocks | None = None


def _materializer(db) -> InstanceMaterializer:
    return InstanceMaterializer(
        SqlAlchemyStore(db),
        locks=_locks,
        default_days_ahead=_settings.default_days_ahead,
    )


async def _materialize_templates() -> None:
    """Job: extend every active template's instances to its rolling horizon."""
    try:
        async with _session_factory() as db:
            results = await _materializer(db).materialize_all()
            generated = sum(results.values())
            if generated > 0:
                logger.info("Materialized %d instances across %d templates", generated, len(results))
    except Exception:
        logger.exception("Error materializing recurring templates")


async def _run_maintenance() -> None:
    """Job: freeze past instances, then mark unpaid ones overdue."""
    try:
        async with _session_factory() as db:
            materializer = _materializer(db)
            await materializer.mark_historical()
            await materializer.mark_overdue()
    except Exception:
        logger.exception("Error running instance maintenance")


def setup_scheduler(session_factory: Any, settings: Any, locks: MaterializationLocks) -> None:
    """Register all periodic jobs and start the scheduler."""
    global _session_factory, _settings, _locks
    _session_factory = session_factory
    _settings = settings
    _locks = locks

    scheduler.add_job(
        _materialize_templates,
        CronTrigger(hour=settings.materialize_hour, minute=0),
        id="materialize_templates",
        replace_existing=True,
    )

    scheduler.add_job(
        _run_maintenance,
        CronTrigger(hour=settings.maintenance_hour, minute=0),
        id="instance_maintenance",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Background scheduler started with %d jobs", len(scheduler.get_jobs()))


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")
