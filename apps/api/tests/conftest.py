import os
import sys
from pathlib import Path

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("CONSISTENCY_RECHECK_DELAY_SECONDS", "0")


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from hustl_api.app import create_app  # noqa: E402
from hustl_api.db.base import Base  # noqa: E402
from hustl_api.db.session import get_session  # noqa: E402
from hustl_api.observability.points import get_points_store  # noqa: E402
from hustl_api.observability.scheduler import get_job_scheduler_store  # noqa: E402
from hustl_api.services.notifications import InMemoryEventSink, get_event_publisher  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path: Path):
    """File-backed database so concurrent sessions get their own connections."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def ledger_events():
    publisher = get_event_publisher()
    previous = publisher.sinks
    sink = InMemoryEventSink()
    publisher.replace_sinks([sink])
    get_points_store().reset()
    get_job_scheduler_store().reset()
    try:
        yield sink
    finally:
        publisher.replace_sinks(previous)
