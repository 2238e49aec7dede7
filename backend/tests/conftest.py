import uuid
from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

import billtrack.instances.models  # noqa: F401
import billtrack.templates.models  # noqa: F401
from billtrack.config import Settings
from billtrack.database import build_engine, build_session_factory, create_all
from billtrack.materializer.service import InstanceMaterializer, MaterializationLocks
from billtrack.materializer.store import SqlAlchemyStore
from billtrack.templates.models import Template, TemplateKind

MEMORY_DB = "sqlite+aiosqlite://"
TODAY = date(2025, 12, 1)
USER_ID = uuid.UUID("7f1d3c52-9a8e-4b61-8f0e-2c4d5e6f7a80")


class FixedClock:
    """Stand-in for ``utc_today`` that tests can move forward."""

    def __init__(self, today: date):
        self.current = today

    def __call__(self) -> date:
        return self.current


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(TODAY)


@pytest.fixture
async def engine():
    engine = build_engine(MEMORY_DB)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    async with build_session_factory(engine)() as session:
        yield session


@pytest.fixture
def store(db) -> SqlAlchemyStore:
    return SqlAlchemyStore(db)


@pytest.fixture
def materializer(store, clock) -> InstanceMaterializer:
    return InstanceMaterializer(store, locks=MaterializationLocks(), today=clock)


@pytest.fixture
def make_template(db):
    async def _make(**overrides) -> Template:
        values = {
            "user_id": USER_ID,
            "kind": TemplateKind.BILL,
            "title": "Rent",
            "amount": 1500.0,
            "currency": "USD",
            "is_recurring": True,
            "rrule": "FREQ=MONTHLY;BYMONTHDAY=1",
            "dtstart": datetime(2025, 12, 1, tzinfo=timezone.utc),
            "is_active": True,
            "auto_generate_days_ahead": 90,
        }
        values.update(overrides)
        template = Template(**values)
        db.add(template)
        await db.commit()
        await db.refresh(template)
        return template

    return _make


@pytest.fixture
def client(clock):
    from billtrack.main import create_app

    app = create_app(Settings(database_url=MEMORY_DB, scheduler_enabled=False))
    app.state.today = clock
    with TestClient(app) as test_client:
        yield test_client
