"""Debounced, deduplicated taste profile recomputation driven by rating events."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections import deque
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brewtaste.core.errors import ProfileStoreError, TasteProfileError, parse_identifier
from brewtaste.models.catalog import Rating
from brewtaste.models.taste_profile import TasteProfile
from brewtaste.schema.updates import (
    PendingUpdateResult,
    ProcessPendingResult,
    QueueEntry,
    QueueStatus,
    SchedulerStatistics,
    TriggerResult,
    TriggerType,
    UpdateConfiguration,
    UpdateConfigurationPatch,
    UpdateHistoryEntry,
    UpdateHistoryPage,
    UpdateTrigger,
    UpdateType,
)
from brewtaste.services import rating_source, taste_profile_service
from brewtaste.utils.datetime import as_utc, hours_between, utcnow

logger = logging.getLogger("brewtaste.services.update_scheduler")

SessionFactory = Callable[[], AsyncSession]


def classify_update(
    profile: TasteProfile | None,
    recent: Sequence[Rating],
    config: UpdateConfiguration,
    *,
    now: datetime,
) -> tuple[UpdateType, list[Rating]]:
    """Decide how much work a trigger needs and return the ratings it covers.

    Ratings newer than ``last_calculated`` count as new. A profile that has
    never counted a rating treats any new rating as a full refresh.
    """
    if profile is None:
        return UpdateType.FULL, list(recent)
    last_calculated = as_utc(profile.last_calculated)
    new_ratings = [
        rating
        for rating in recent
        if last_calculated is None or as_utc(rating.created_at) > last_calculated
    ]
    if not new_ratings:
        return UpdateType.SKIPPED, []
    if not profile.total_ratings:
        return UpdateType.FULL, new_ratings
    ratio = len(new_ratings) / profile.total_ratings
    if ratio > config.full_refresh_ratio:
        return UpdateType.FULL, new_ratings
    if last_calculated is None or hours_between(last_calculated, now) > config.full_refresh_hours:
        return UpdateType.FULL, new_ratings
    return UpdateType.PARTIAL, new_ratings


def incremental_average(current_average: float, current_count: int, new_ratings: Iterable[Rating]) -> float:
    scores = [rating.overall for rating in new_ratings]
    if not scores:
        return current_average
    return (current_average * current_count + sum(scores)) / (current_count + len(scores))


async def apply_partial_update(
    session: AsyncSession, profile: TasteProfile, new_ratings: Sequence[Rating], *, now: datetime
) -> dict[str, Any]:
    """Patch counters and the running average; preference sections stay as they were."""
    previous_total = profile.total_ratings or 0
    patterns = dict(profile.rating_patterns or {})
    average = incremental_average(float(patterns.get("average_overall_rating", 0)), previous_total, new_ratings)
    patterns["average_overall_rating"] = average
    newest = max(new_ratings, key=lambda rating: as_utc(rating.created_at))

    profile.total_ratings = previous_total + len(new_ratings)
    profile.last_rating_date = as_utc(newest.created_at)
    profile.last_calculated = now
    # JSON columns only persist on reassignment.
    profile.rating_patterns = patterns
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise ProfileStoreError("partial_update", profile.user_id, exc) from exc
    return {
        "new_ratings": len(new_ratings),
        "total_ratings": profile.total_ratings,
        "average_overall_rating": average,
    }


class ProfileUpdateScheduler:
    """Own the per-user trigger queue, debounce timers, and update history.

    Triggers that bypass debounce run inline and raise failures to the caller.
    Everything else waits out the debounce window, collapsing repeated
    triggers for the same user into one recomputation.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        config: UpdateConfiguration | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or UpdateConfiguration()
        self._pending: dict[uuid.UUID, UpdateTrigger] = {}
        self._timers: dict[uuid.UUID, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._processing: set[uuid.UUID] = set()
        self._history: dict[uuid.UUID, deque[UpdateHistoryEntry]] = {}
        self._lock = asyncio.Lock()

    @property
    def config(self) -> UpdateConfiguration:
        return self._config

    def _log(self, level: int, event: str, **payload: Any) -> None:
        logger.log(level, json.dumps({"event": event, **payload}, default=str))

    async def trigger_update(
        self,
        user_id: uuid.UUID | str,
        trigger_type: TriggerType,
        rating_id: uuid.UUID | str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TriggerResult:
        """Register a rating event and either run it now or debounce it."""
        user_id = parse_identifier(user_id)
        if rating_id is not None:
            rating_id = parse_identifier(rating_id, kind="rating")
        trigger = UpdateTrigger(user_id=user_id, trigger_type=trigger_type, rating_id=rating_id, metadata=metadata)

        if not self._config.enable_realtime_updates and trigger_type is not TriggerType.MANUAL:
            return TriggerResult(queued=False, immediate=False, reason="Real-time updates disabled")

        if not trigger_type.bypasses_debounce:
            async with self._lock:
                self._pending[user_id] = trigger
                self._arm_timer(user_id)
            self._log(
                logging.DEBUG,
                "profile_update_queued",
                user_id=str(user_id),
                trigger=trigger_type.value,
                debounce_ms=self._config.debounce_ms,
            )
            return TriggerResult(
                queued=True,
                immediate=False,
                reason=f"Update queued with {self._config.debounce_ms}ms debounce",
            )

        async with self._lock:
            self._cancel_timer(user_id)
            self._pending.pop(user_id, None)
            busy = user_id in self._processing
            if busy:
                self._pending[user_id] = trigger
                self._arm_timer(user_id)
            else:
                self._processing.add(user_id)
        if busy:
            self._log(logging.INFO, "profile_update_requeued", user_id=str(user_id), trigger=trigger_type.value)
            return TriggerResult(queued=True, immediate=False, reason="Update in progress, queued for next cycle")

        try:
            await self._execute(trigger)
        finally:
            async with self._lock:
                self._processing.discard(user_id)
        return TriggerResult(queued=False, immediate=True, reason=f"Immediate update for {trigger_type.value}")

    async def trigger_bulk(
        self, user_ids: Iterable[uuid.UUID | str], trigger_type: TriggerType = TriggerType.RATING_UPDATED
    ) -> dict[uuid.UUID, TriggerResult]:
        """Trigger every user touched by a multi-user rating operation."""
        results: dict[uuid.UUID, TriggerResult] = {}
        for raw_id in dict.fromkeys(user_ids):
            user_id = parse_identifier(raw_id)
            try:
                results[user_id] = await self.trigger_update(user_id, trigger_type)
            except TasteProfileError as exc:
                results[user_id] = TriggerResult(queued=False, immediate=True, reason=f"Update failed: {exc}")
        return results

    def _arm_timer(self, user_id: uuid.UUID) -> None:
        self._cancel_timer(user_id)
        delay = self._config.debounce_ms / 1000
        task = asyncio.create_task(self._fire_after(user_id, delay), name=f"profile-debounce:{user_id}")
        self._timers[user_id] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timer(self, user_id: uuid.UUID) -> None:
        task = self._timers.pop(user_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def _fire_after(self, user_id: uuid.UUID, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self._lock:
            if self._timers.get(user_id) is not asyncio.current_task():
                return
            del self._timers[user_id]
            trigger = self._pending.get(user_id)
            if trigger is None:
                return
            if user_id in self._processing:
                self._arm_timer(user_id)
                requeued = True
            else:
                del self._pending[user_id]
                self._processing.add(user_id)
                requeued = False
        if requeued:
            self._log(logging.INFO, "profile_update_requeued", user_id=str(user_id), trigger=trigger.trigger_type.value)
            return
        try:
            await self._run_with_retries(trigger)
        finally:
            async with self._lock:
                self._processing.discard(user_id)

    async def _run_with_retries(self, trigger: UpdateTrigger) -> UpdateType:
        attempts = self._config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._execute(trigger)
            except ProfileStoreError as exc:
                if attempt >= attempts:
                    self._log(
                        logging.ERROR,
                        "profile_update_gave_up",
                        user_id=str(trigger.user_id),
                        attempts=attempt,
                        error=str(exc),
                    )
                    return UpdateType.FAILED
                self._log(
                    logging.WARNING,
                    "profile_update_retry",
                    user_id=str(trigger.user_id),
                    attempt=attempt,
                    retry_delay_ms=self._config.retry_delay_ms,
                    error=str(exc),
                )
                await asyncio.sleep(self._config.retry_delay_ms / 1000)
            except Exception:  # noqa: BLE001
                # Unexpected failures are already in the history; nothing awaits this task.
                logger.exception("Debounced profile update failed for user %s", trigger.user_id)
                return UpdateType.FAILED
        return UpdateType.FAILED

    async def _execute(self, trigger: UpdateTrigger) -> UpdateType:
        """Classify and apply one update, recording the outcome in history."""
        start = time.perf_counter()
        try:
            async with self._session_factory() as session:
                update_type, details = await self._apply_update(session, trigger.user_id)
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            await self._record(
                UpdateHistoryEntry(
                    trigger=trigger,
                    update_type=UpdateType.FAILED,
                    result="error",
                    error=str(exc),
                    duration_ms=duration_ms,
                )
            )
            self._log(
                logging.WARNING,
                "profile_update_failed",
                user_id=str(trigger.user_id),
                trigger=trigger.trigger_type.value,
                error=str(exc),
                duration_ms=round(duration_ms, 2),
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        await self._record(
            UpdateHistoryEntry(
                trigger=trigger,
                update_type=update_type,
                result="success",
                details=details,
                duration_ms=duration_ms,
            )
        )
        self._log(
            logging.INFO,
            "profile_update_completed",
            user_id=str(trigger.user_id),
            trigger=trigger.trigger_type.value,
            update_type=update_type.value,
            duration_ms=round(duration_ms, 2),
        )
        return update_type

    async def _apply_update(self, session: AsyncSession, user_id: uuid.UUID) -> tuple[UpdateType, dict[str, Any]]:
        profile = await taste_profile_service.get_profile(session, user_id)
        try:
            recent = await rating_source.recent_ratings(
                session, user_id, limit=self._config.recent_ratings_limit
            )
        except SQLAlchemyError as exc:
            raise ProfileStoreError("recent_ratings", user_id, exc) from exc

        now = utcnow()
        update_type, new_ratings = classify_update(profile, recent, self._config, now=now)
        match update_type:
            case UpdateType.FULL:
                profile = await taste_profile_service.generate_profile(session, user_id)
                details = {
                    "total_ratings": profile.total_ratings,
                    "profile_confidence": profile.profile_confidence,
                }
            case UpdateType.PARTIAL:
                details = await apply_partial_update(session, profile, new_ratings, now=now)
            case _:
                details = {"reason": "No new ratings since last calculation"}
        return update_type, details

    async def _record(self, entry: UpdateHistoryEntry) -> None:
        async with self._lock:
            history = self._history.get(entry.trigger.user_id)
            if history is None:
                history = deque(maxlen=self._config.history_limit)
                self._history[entry.trigger.user_id] = history
            history.append(entry)

    async def process_pending_updates(self) -> ProcessPendingResult:
        """Run every queued trigger now, in chunks of ``batch_size``."""
        if not self._config.enable_batch_updates:
            return ProcessPendingResult(processed=0, failed=0)

        async with self._lock:
            claimed: list[UpdateTrigger] = []
            for user_id in list(self._pending):
                if user_id in self._processing:
                    continue
                self._cancel_timer(user_id)
                claimed.append(self._pending.pop(user_id))
                self._processing.add(user_id)

        results: list[PendingUpdateResult] = []
        batch_size = self._config.batch_size
        for offset in range(0, len(claimed), batch_size):
            chunk = claimed[offset:offset + batch_size]
            outcomes = await asyncio.gather(*(self._execute(trigger) for trigger in chunk), return_exceptions=True)
            for trigger, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    results.append(PendingUpdateResult(user_id=trigger.user_id, success=False, error=str(outcome)))
                else:
                    results.append(PendingUpdateResult(user_id=trigger.user_id, success=True, update_type=outcome))
            async with self._lock:
                for trigger in chunk:
                    self._processing.discard(trigger.user_id)

        failed = sum(1 for result in results if not result.success)
        self._log(logging.INFO, "profile_updates_drained", processed=len(results) - failed, failed=failed)
        return ProcessPendingResult(processed=len(results) - failed, failed=failed, results=results)

    async def schedule_stale_profiles(self, session: AsyncSession, hours_threshold: int | None = None) -> list[uuid.UUID]:
        """Queue a scheduled trigger for every user whose profile lags their ratings."""
        stale = await taste_profile_service.get_stale_profiles(session, hours_threshold)
        for user_id in stale:
            await self.trigger_update(user_id, TriggerType.SCHEDULED)
        return stale

    def is_pending(self, user_id: uuid.UUID | str) -> bool:
        return parse_identifier(user_id) in self._pending

    def get_update_history(self, user_id: uuid.UUID | str, limit: int = 10, offset: int = 0) -> UpdateHistoryPage:
        """Return a page of a user's history, most recent first."""
        user_id = parse_identifier(user_id)
        entries = list(reversed(self._history.get(user_id, ())))
        page = entries[offset:offset + limit]
        return UpdateHistoryPage(updates=page, total=len(entries), has_more=offset + limit < len(entries))

    def get_queue_status(self) -> QueueStatus:
        return QueueStatus(
            queue_size=len(self._pending),
            processing_count=len(self._processing),
            queue_details=[
                QueueEntry(
                    user_id=user_id,
                    trigger_type=trigger.trigger_type,
                    scheduled_at=trigger.timestamp,
                    rating_id=trigger.rating_id,
                )
                for user_id, trigger in self._pending.items()
            ],
            configuration=self._config,
        )

    def get_configuration(self) -> UpdateConfiguration:
        return self._config.model_copy()

    def update_configuration(self, patch: UpdateConfigurationPatch) -> UpdateConfiguration:
        """Apply a partial configuration change; new timers pick it up."""
        changes = patch.model_dump(exclude_none=True)
        self._config = self._config.model_copy(update=changes)
        if "history_limit" in changes:
            self._history = {
                user_id: deque(entries, maxlen=self._config.history_limit)
                for user_id, entries in self._history.items()
            }
        self._log(logging.INFO, "profile_scheduler_reconfigured", changes=changes)
        return self.get_configuration()

    def clear_queue(self) -> int:
        """Drop every queued trigger without running it."""
        cleared = len(self._pending)
        for user_id in list(self._timers):
            self._cancel_timer(user_id)
        self._pending.clear()
        self._log(logging.INFO, "profile_queue_cleared", cleared=cleared)
        return cleared

    def get_statistics(self) -> SchedulerStatistics:
        entries = [entry for history in self._history.values() for entry in history]
        durations = [entry.duration_ms for entry in entries if entry.duration_ms is not None]
        errors = sum(1 for entry in entries if entry.result == "error")
        return SchedulerStatistics(
            total_updates_processed=len(entries),
            average_processing_time_ms=sum(durations) / len(durations) if durations else 0.0,
            error_rate=errors / len(entries) * 100 if entries else 0.0,
            active_users=len(self._history),
        )

    async def join(self) -> None:
        """Wait until every armed timer has fired and its update has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timers.clear()
        self._pending.clear()
        self._processing.clear()
