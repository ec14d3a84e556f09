"""Read-only queries against the external rating and catalog stores."""

from __future__ import annotations

import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brewtaste.models.catalog import Coffee, Rating


async def fetch_rated_coffees(session: AsyncSession, user_id: uuid.UUID) -> list[tuple[Rating, Coffee]]:
    """Return every rating for a user joined with its coffee, newest first.

    Ratings whose coffee no longer exists in the catalog are dropped by the
    inner join.
    """
    result = await session.execute(
        select(Rating, Coffee)
        .join(Coffee, Coffee.id == Rating.coffee_id)
        .where(Rating.user_id == user_id)
        .order_by(Rating.created_at.desc(), Rating.id)
    )
    return [(rating, coffee) for rating, coffee in result.all()]


async def recent_ratings(session: AsyncSession, user_id: uuid.UUID, *, limit: int = 100) -> list[Rating]:
    result = await session.execute(
        select(Rating).where(Rating.user_id == user_id).order_by(Rating.created_at.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def get_coffee(session: AsyncSession, coffee_id: uuid.UUID) -> Coffee | None:
    return await session.get(Coffee, coffee_id)
