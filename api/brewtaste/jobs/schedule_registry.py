from __future__ import annotations

import logging
from datetime import timedelta

from rq_scheduler import Scheduler

from brewtaste.core.config import settings
from brewtaste.jobs.taste_profiles import refresh_stale_profiles_job
from brewtaste.services.task_queue import task_queue
from brewtaste.utils.datetime import utcnow

logger = logging.getLogger("brewtaste.jobs.schedule_registry")


def _schedule_entries() -> list[dict]:
    entries: list[dict] = []
    if settings.taste_profile_stale_refresh_interval_seconds > 0:
        entries.append(
            {
                "id": "profiles:refresh_stale",
                "func": refresh_stale_profiles_job,
                "interval": max(300, settings.taste_profile_stale_refresh_interval_seconds),
                "repeat": None,
                "queue_name": task_queue.queue_for("maintenance"),
            }
        )
    return entries


def ensure_schedules() -> None:
    """Idempotently register periodic jobs with rq-scheduler."""
    if settings.environment.lower() == "test":
        return
    if not task_queue.connection:
        logger.info("Skipping scheduler bootstrap; queue connection is unavailable")
        return
    scheduler = Scheduler(connection=task_queue.connection, queue_name=task_queue.queue_names[0])
    for entry in _schedule_entries():
        if entry["id"] in scheduler:
            continue
        scheduler.schedule(
            scheduled_time=utcnow(),
            func=entry["func"],
            interval=entry["interval"],
            repeat=entry["repeat"],
            id=entry["id"],
            queue_name=entry["queue_name"],
            result_ttl=int(timedelta(hours=1).total_seconds()),
        )
        logger.info("Scheduled job %s every %ss on queue %s", entry["id"], entry["interval"], entry["queue_name"])
