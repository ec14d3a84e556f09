"""Taste profile endpoints: reads, recomputation, similarity, and update triggers."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from brewtaste.api.deps import get_db, get_update_scheduler
from brewtaste.models.taste_profile import TasteProfile
from brewtaste.schema.taste_profile import (
    AttributeChart,
    CoffeeAffinity,
    FlavorChart,
    SimilarUser,
    TasteProfileRead,
    TasteProfileRefresh,
    TasteProfileStats,
    TasteProfileSummary,
    UserAffinityRead,
)
from brewtaste.schema.updates import (
    BulkTriggerRequest,
    TriggerRequest,
    TriggerResult,
    UpdateHistoryPage,
)
from brewtaste.services import similarity_service, taste_profile_service
from brewtaste.services.update_scheduler import ProfileUpdateScheduler

router = APIRouter()


@router.post("/triggers/bulk", response_model=dict[uuid.UUID, TriggerResult])
async def trigger_bulk_updates(
    payload: BulkTriggerRequest,
    scheduler: ProfileUpdateScheduler = Depends(get_update_scheduler),
) -> dict[uuid.UUID, TriggerResult]:
    """Notify the scheduler about a rating operation touching several users."""
    return await scheduler.trigger_bulk(payload.user_ids, payload.trigger_type)


@router.get("/{user_id}", response_model=TasteProfileRead)
async def get_taste_profile(
    user_id: uuid.UUID,
    refresh: bool = Query(default=False),
    session: AsyncSession = Depends(get_db),
) -> TasteProfile:
    """Return the cached profile, rebuilding it when missing or older than the refresh window."""
    return await taste_profile_service.get_or_build_profile(session, user_id, force_refresh=refresh)


@router.post("/{user_id}/generate", response_model=TasteProfileRead)
async def generate_taste_profile(
    user_id: uuid.UUID,
    payload: TasteProfileRefresh | None = None,
    session: AsyncSession = Depends(get_db),
) -> TasteProfile:
    force = payload.force if payload else True
    if not force:
        return await taste_profile_service.get_or_build_profile(session, user_id)
    return await taste_profile_service.generate_profile(session, user_id)


async def _snapshot(session: AsyncSession, user_id: uuid.UUID):
    profile = await taste_profile_service.get_or_build_profile(session, user_id)
    return taste_profile_service.to_snapshot(profile)


@router.get("/{user_id}/summary", response_model=TasteProfileSummary)
async def get_taste_profile_summary(user_id: uuid.UUID, session: AsyncSession = Depends(get_db)) -> TasteProfileSummary:
    return taste_profile_service.build_summary(await _snapshot(session, user_id))


@router.get("/{user_id}/attributes", response_model=AttributeChart)
async def get_taste_profile_attributes(user_id: uuid.UUID, session: AsyncSession = Depends(get_db)) -> AttributeChart:
    return taste_profile_service.build_attribute_chart(await _snapshot(session, user_id))


@router.get("/{user_id}/flavors", response_model=FlavorChart)
async def get_taste_profile_flavors(
    user_id: uuid.UUID,
    limit: int = Query(default=10, ge=1, le=50),
    session: AsyncSession = Depends(get_db),
) -> FlavorChart:
    return taste_profile_service.build_flavor_chart(await _snapshot(session, user_id), limit=limit)


@router.get("/{user_id}/stats", response_model=TasteProfileStats)
async def get_taste_profile_stats(user_id: uuid.UUID, session: AsyncSession = Depends(get_db)) -> TasteProfileStats:
    return taste_profile_service.build_stats(await _snapshot(session, user_id))


@router.get("/{user_id}/affinity/users/{target_user_id}", response_model=UserAffinityRead)
async def get_user_affinity(
    user_id: uuid.UUID,
    target_user_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> UserAffinityRead:
    score = await similarity_service.user_affinity(session, user_id, target_user_id)
    return UserAffinityRead(user_id=user_id, target_user_id=target_user_id, affinity_score=score)


@router.get("/{user_id}/affinity/coffees/{coffee_id}", response_model=CoffeeAffinity)
async def get_coffee_affinity(
    user_id: uuid.UUID,
    coffee_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> CoffeeAffinity:
    return await similarity_service.coffee_affinity(session, user_id, coffee_id)


@router.get("/{user_id}/similar", response_model=list[SimilarUser])
async def get_similar_users(
    user_id: uuid.UUID,
    limit: int = Query(default=10, ge=1, le=100),
    session: AsyncSession = Depends(get_db),
) -> list[SimilarUser]:
    return await similarity_service.find_similar_users(session, user_id, limit=limit)


@router.post("/{user_id}/refine", response_model=TasteProfileRead)
async def refine_taste_profile(user_id: uuid.UUID, session: AsyncSession = Depends(get_db)) -> TasteProfile:
    """Blend the stored profile with similar users' preferences."""
    profile = await similarity_service.refine_with_collaborative_filtering(session, user_id)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Taste profile not found")
    return profile


@router.post("/{user_id}/triggers", response_model=TriggerResult, status_code=status.HTTP_202_ACCEPTED)
async def trigger_profile_update(
    user_id: uuid.UUID,
    payload: TriggerRequest,
    scheduler: ProfileUpdateScheduler = Depends(get_update_scheduler),
) -> TriggerResult:
    return await scheduler.trigger_update(user_id, payload.trigger_type, payload.rating_id, payload.metadata)


@router.get("/{user_id}/history", response_model=UpdateHistoryPage)
async def get_update_history(
    user_id: uuid.UUID,
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    scheduler: ProfileUpdateScheduler = Depends(get_update_scheduler),
) -> UpdateHistoryPage:
    return scheduler.get_update_history(user_id, limit=limit, offset=offset)
