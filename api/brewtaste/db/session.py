"""Async engine and session factory bound to the configured database."""

from __future__ import annotations

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from brewtaste.core.config import settings

engine = create_async_engine(settings.database_url, future=True)
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def init_models() -> None:
    """Create missing tables on SQLite; Postgres deployments run ``alembic upgrade head``."""
    if engine.dialect.name != "sqlite":
        return
    from brewtaste.db.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
