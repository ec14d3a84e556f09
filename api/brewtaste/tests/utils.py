"""Shared helpers for building catalog coffees and ratings in tests."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from brewtaste.models.catalog import Coffee, ProcessingMethod, Rating, RoastLevel
from brewtaste.utils.datetime import utcnow


def make_coffee(
    *,
    name: str = "House Blend",
    origin_country: str | None = None,
    origin_region: str | None = None,
    roast_level: RoastLevel | None = None,
    processing_method: ProcessingMethod | None = None,
    flavor_notes: list[str] | None = None,
) -> Coffee:
    return Coffee(
        id=uuid.uuid4(),
        name=name,
        origin_country=origin_country,
        origin_region=origin_region,
        roast_level=roast_level,
        processing_method=processing_method,
        flavor_notes=flavor_notes or [],
    )


def make_rating(
    user_id: uuid.UUID,
    coffee: Coffee,
    *,
    overall: int,
    created_at: datetime | None = None,
    **scores: int,
) -> Rating:
    """Build a rating; ``scores`` are attribute sub-scores such as ``acidity=5``."""
    return Rating(
        id=uuid.uuid4(),
        user_id=user_id,
        coffee_id=coffee.id,
        overall=overall,
        created_at=created_at or utcnow(),
        updated_at=created_at or utcnow(),
        **scores,
    )


FULL_SCORES = {
    "acidity": 5,
    "body": 5,
    "sweetness": 5,
    "aroma": 5,
    "flavor": 5,
    "aftertaste": 5,
    "balance": 5,
    "uniformity": 5,
    "clean_cup": 5,
}


def uniform_history(user_id: uuid.UUID, coffees: list[Coffee], *, count: int, overall: int = 5) -> list[Rating]:
    """Ratings with every sub-score equal, spread one minute apart in the past."""
    start = utcnow() - timedelta(days=2)
    scores = {name: overall for name in FULL_SCORES}
    return [
        make_rating(
            user_id,
            coffees[index % len(coffees)],
            overall=overall,
            created_at=start + timedelta(minutes=index),
            **scores,
        )
        for index in range(count)
    ]


async def seed(factory: async_sessionmaker[AsyncSession], *objects: object) -> None:
    """Persist objects in their own session so no transaction stays open."""
    async with factory() as session:
        session.add_all(objects)
        await session.commit()
