from __future__ import annotations

import random

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from brewtaste.api.deps import get_db, get_update_scheduler, require_ops_token
from brewtaste.schema.taste_profile import ClusterResult
from brewtaste.schema.updates import (
    BatchUpdateRequest,
    BatchUpdateResult,
    ProcessPendingResult,
    QueueStatus,
    SchedulerStatistics,
    UpdateConfiguration,
    UpdateConfigurationPatch,
)
from brewtaste.services import similarity_service, taste_profile_service
from brewtaste.services.task_queue import task_queue
from brewtaste.services.update_scheduler import ProfileUpdateScheduler

router = APIRouter(dependencies=[Depends(require_ops_token)])


@router.get("/queues")
async def queue_health() -> dict:
    """
    Minimal operations dashboard for Redis/RQ health.

    Guarded by the ops token when one is configured.
    """

    return task_queue.snapshot()


@router.get("/taste-profiles/queue", response_model=QueueStatus)
async def get_update_queue(scheduler: ProfileUpdateScheduler = Depends(get_update_scheduler)) -> QueueStatus:
    return scheduler.get_queue_status()


@router.post("/taste-profiles/queue/process", response_model=ProcessPendingResult)
async def process_update_queue(
    scheduler: ProfileUpdateScheduler = Depends(get_update_scheduler),
) -> ProcessPendingResult:
    """Run every queued profile update now instead of waiting for its debounce timer."""
    return await scheduler.process_pending_updates()


@router.delete("/taste-profiles/queue")
async def clear_update_queue(scheduler: ProfileUpdateScheduler = Depends(get_update_scheduler)) -> dict:
    return {"cleared": scheduler.clear_queue()}


@router.get("/taste-profiles/config", response_model=UpdateConfiguration)
async def get_update_configuration(
    scheduler: ProfileUpdateScheduler = Depends(get_update_scheduler),
) -> UpdateConfiguration:
    return scheduler.get_configuration()


@router.patch("/taste-profiles/config", response_model=UpdateConfiguration)
async def patch_update_configuration(
    payload: UpdateConfigurationPatch,
    scheduler: ProfileUpdateScheduler = Depends(get_update_scheduler),
) -> UpdateConfiguration:
    return scheduler.update_configuration(payload)


@router.get("/taste-profiles/stats", response_model=SchedulerStatistics)
async def get_update_statistics(
    scheduler: ProfileUpdateScheduler = Depends(get_update_scheduler),
) -> SchedulerStatistics:
    return scheduler.get_statistics()


@router.get("/taste-profiles/stale")
async def list_stale_profiles(
    hours: int | None = Query(default=None, ge=0),
    session: AsyncSession = Depends(get_db),
) -> dict:
    user_ids = await taste_profile_service.get_stale_profiles(session, hours)
    return {"count": len(user_ids), "user_ids": [str(user_id) for user_id in user_ids]}


@router.post("/taste-profiles/stale/schedule")
async def schedule_stale_profiles(
    hours: int | None = Query(default=None, ge=0),
    session: AsyncSession = Depends(get_db),
    scheduler: ProfileUpdateScheduler = Depends(get_update_scheduler),
) -> dict:
    """Queue a scheduled update for every stale profile."""
    user_ids = await scheduler.schedule_stale_profiles(session, hours)
    return {"scheduled": len(user_ids), "user_ids": [str(user_id) for user_id in user_ids]}


@router.post("/taste-profiles/batch", response_model=BatchUpdateResult)
async def batch_update_profiles(
    payload: BatchUpdateRequest,
    session: AsyncSession = Depends(get_db),
) -> BatchUpdateResult:
    return await taste_profile_service.batch_update_profiles(
        session, payload.user_ids, hours_threshold=payload.hours_threshold
    )


@router.post("/taste-profiles/refresh-jobs")
async def dispatch_profile_refresh(payload: BatchUpdateRequest) -> dict:
    """Hand batch re-aggregation to the worker queue; runs inline when Redis is unavailable."""
    result = await task_queue.enqueue_profile_refresh(
        user_ids=payload.user_ids,
        hours_threshold=payload.hours_threshold,
        requested_by="ops",
    )
    return {"queued": task_queue.enabled, "result": result}


@router.get("/taste-profiles/clusters", response_model=list[ClusterResult])
async def get_taste_clusters(
    k: int = Query(default=5, ge=1, le=50),
    seed: int | None = Query(default=None),
    session: AsyncSession = Depends(get_db),
) -> list[ClusterResult]:
    rng = random.Random(seed) if seed is not None else None
    return await similarity_service.cluster_users_by_taste(session, k, rng=rng)
