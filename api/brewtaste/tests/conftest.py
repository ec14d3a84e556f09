"""Shared pytest fixtures for API tests and database isolation."""

from __future__ import annotations

import os
import uuid

os.environ.setdefault("ENVIRONMENT", "test")

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.engine import make_url  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from brewtaste.api.deps import get_db  # noqa: E402
from brewtaste.core.config import settings  # noqa: E402
from brewtaste.db.base import Base  # noqa: E402
from brewtaste.main import app  # noqa: E402
from brewtaste.schema.updates import UpdateConfiguration  # noqa: E402
from brewtaste.services.update_scheduler import ProfileUpdateScheduler  # noqa: E402


@pytest_asyncio.fixture()
async def session_factory(tmp_path) -> async_sessionmaker[AsyncSession]:
    database_url = settings.test_database_url or f"sqlite+aiosqlite:///{tmp_path / 'brewtaste_test.db'}"
    url = make_url(database_url)
    schema_name: str | None = None
    engine = create_async_engine(database_url, future=True)
    if url.drivername.startswith("postgresql"):
        # Isolate each test run in its own schema for parallel-friendly cleanup.
        schema_name = f"test_{uuid.uuid4().hex}"
        engine = engine.execution_options(schema_translate_map={None: schema_name})
    async with engine.begin() as conn:
        if schema_name:
            await conn.exec_driver_sql(f'CREATE SCHEMA IF NOT EXISTS "{schema_name}"')
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    finally:
        async with engine.begin() as conn:
            if schema_name:
                await conn.exec_driver_sql(f'DROP SCHEMA IF EXISTS "{schema_name}" CASCADE')
            else:
                await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def scheduler(session_factory: async_sessionmaker[AsyncSession]) -> ProfileUpdateScheduler:
    config = UpdateConfiguration(debounce_ms=50, retry_delay_ms=10, max_retries=1)
    scheduler = ProfileUpdateScheduler(session_factory, config)
    try:
        yield scheduler
    finally:
        await scheduler.shutdown()


@pytest_asyncio.fixture()
async def client(session: AsyncSession, scheduler: ProfileUpdateScheduler) -> AsyncClient:
    async def _get_test_db():
        yield session

    app.dependency_overrides[get_db] = _get_test_db
    app.state.update_scheduler = scheduler
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as async_client:
        yield async_client
    app.dependency_overrides.pop(get_db, None)
    app.state.update_scheduler = None
