"""Background jobs that keep stored taste profiles in step with ratings."""

from __future__ import annotations

import asyncio
import logging
import uuid

from brewtaste.core.config import settings
from brewtaste.core.errors import parse_identifier
from brewtaste.db.session import async_session
from brewtaste.services import taste_profile_service

logger = logging.getLogger("brewtaste.jobs.taste_profiles")


def refresh_profiles_job(
    user_ids: list[str] | None = None,
    hours_threshold: int | None = None,
    requested_by: str | None = None,
) -> dict:
    """Re-aggregate the given profiles, or every stale one when no ids are passed."""
    parsed: list[uuid.UUID] | None = None
    if user_ids is not None:
        parsed = [parse_identifier(user_id) for user_id in user_ids]

    async def _run():
        async with async_session() as session:
            return await taste_profile_service.batch_update_profiles(
                session, parsed, hours_threshold=hours_threshold
            )

    result = asyncio.run(_run())
    logger.info(
        "Refreshed %d/%d taste profiles (%d failed, requested_by=%s)",
        result.updated,
        result.requested,
        result.failed,
        requested_by or "scheduler",
    )
    return result.model_dump(mode="json")


def refresh_stale_profiles_job() -> dict:
    """Scheduled sweep for profiles that lag behind their newest rating."""
    return refresh_profiles_job(hours_threshold=settings.taste_profile_stale_hours)
