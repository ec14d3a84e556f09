"""Hand batch profile refreshes to RQ workers, or run them inline without Redis."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Iterable

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue, Retry
from rq.registry import FailedJobRegistry, ScheduledJobRegistry, StartedJobRegistry
from rq.worker import Worker
from rq_scheduler import Scheduler

from brewtaste.core.config import settings
from brewtaste.utils.datetime import utcnow

logger = logging.getLogger("brewtaste.services.task_queue")

# Backoff for refreshes that hit a busy or restarting database.
REFRESH_RETRY = Retry(max=3, interval=[5, 15, 30])
REFRESH_TIMEOUT_SECONDS = 300


class TaskQueue:
    """RQ front door for profile refresh jobs.

    In the test environment, or when Redis cannot be reached at startup, jobs
    run in-process on a worker thread instead.
    """

    def __init__(self) -> None:
        self.queue_names: list[str] = settings.worker_queue_names or ["default"]
        self._connection: Redis | None = self._connect()

    @property
    def enabled(self) -> bool:
        return self._connection is not None

    @property
    def connection(self) -> Redis | None:
        return self._connection

    def _connect(self) -> Redis | None:
        if settings.environment.lower() == "test":
            logger.info("Task queue disabled in test environment")
            return None
        try:
            connection = Redis.from_url(settings.redis_url)
            connection.ping()
        except RedisError as exc:  # pragma: no cover - needs a live redis
            logger.warning("Redis unavailable, profile refreshes will run inline: %s", exc)
            return None
        logger.info("Task queue connected (queues: %s)", ", ".join(self.queue_names))
        return connection

    def queue_for(self, preferred: str) -> str:
        """Return ``preferred`` when a worker listens on it, else the first queue."""
        if preferred in self.queue_names:
            return preferred
        return self.queue_names[0] if self.queue_names else "default"

    async def enqueue_profile_refresh(
        self,
        *,
        user_ids: Iterable[uuid.UUID] | None = None,
        hours_threshold: int | None = None,
        requested_by: str | None = None,
    ) -> Any:
        """Re-aggregate the given profiles, or every stale one, on the profiles queue."""
        from brewtaste.jobs.taste_profiles import refresh_profiles_job

        ids = [str(user_id) for user_id in user_ids] if user_ids is not None else None
        return await self.enqueue_or_run(
            refresh_profiles_job,
            queue_name=self.queue_for("profiles"),
            description=f"profiles:refresh:{len(ids) if ids is not None else 'stale'}",
            user_ids=ids,
            hours_threshold=hours_threshold,
            requested_by=requested_by,
        )

    async def enqueue_or_run(
        self,
        func: Callable[..., Any],
        *,
        queue_name: str,
        description: str,
        timeout_seconds: int = REFRESH_TIMEOUT_SECONDS,
        **kwargs: Any,
    ) -> Any:
        """Run ``func`` on a worker and wait for its return value.

        ``func`` is a synchronous job entrypoint; inline runs go through
        ``asyncio.to_thread`` so the job can start its own event loop.
        """
        if self._connection is None:
            return await asyncio.to_thread(func, **kwargs)

        def _submit_and_wait() -> Any:
            job = Queue(queue_name, connection=self._connection).enqueue(
                func,
                kwargs=kwargs,
                job_timeout=timeout_seconds,
                description=description,
                retry=REFRESH_RETRY,
            )
            return job.latest_result(timeout=timeout_seconds)

        try:
            result = await asyncio.to_thread(_submit_and_wait)
        except RedisError as exc:  # pragma: no cover - needs a live redis
            logger.warning("Queue submit for %s failed, running inline: %s", description, exc)
            return await asyncio.to_thread(func, **kwargs)
        if result is None:
            logger.warning("Job %s did not finish within %ss", description, timeout_seconds)
            return None
        return result.return_value

    def snapshot(self) -> dict[str, Any]:
        """Queue depth, worker, and periodic schedule state for the ops dashboard."""
        if self._connection is None:
            return {"status": "offline", "queues": [], "workers": [], "redis_url": settings.redis_url}

        queues = []
        for name in self.queue_names:
            queue = Queue(name, connection=self._connection)
            queues.append(
                {
                    "name": name,
                    "size": queue.count,
                    "scheduled": len(ScheduledJobRegistry(queue=queue)),
                    "started": len(StartedJobRegistry(queue=queue)),
                    "failed": len(FailedJobRegistry(queue=queue)),
                }
            )

        warnings: list[str] = []
        try:
            workers = [
                {"name": worker.name, "state": worker.state, "queues": worker.queue_names()}
                for worker in Worker.all(connection=self._connection)
            ]
            scheduler = Scheduler(connection=self._connection, queue_name=self.queue_names[0])
            stale_sweep_registered = "profiles:refresh_stale" in scheduler
        except RedisError as exc:  # pragma: no cover - needs a live redis
            logger.warning("Unable to inspect workers or schedules: %s", exc)
            workers, stale_sweep_registered = [], False
            warnings.append("redis_unreachable")

        if not workers:
            warnings.append("no_workers")
        if not stale_sweep_registered and settings.taste_profile_stale_refresh_interval_seconds > 0:
            warnings.append("stale_sweep_not_scheduled")
        return {
            "status": "degraded" if warnings else "online",
            "queues": queues,
            "workers": workers,
            "stale_sweep_registered": stale_sweep_registered,
            "warnings": warnings,
            "checked_at": utcnow().isoformat(),
        }


task_queue = TaskQueue()
