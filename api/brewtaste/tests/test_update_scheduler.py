"""Update scheduler tests: debounce, classification, retries, and queue control."""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from brewtaste.core.errors import ProfileStoreError
from brewtaste.models.taste_profile import TasteProfile
from brewtaste.schema.updates import TriggerType, UpdateConfiguration, UpdateConfigurationPatch, UpdateType
from brewtaste.services import rating_source, taste_profile_service
from brewtaste.services.update_scheduler import apply_partial_update, classify_update
from brewtaste.tests.utils import make_coffee, make_rating, seed, uniform_history
from brewtaste.utils.datetime import utcnow


async def _rated_user(session_factory, *, count: int = 10, overall: int = 5) -> uuid.UUID:
    user_id = uuid.uuid4()
    coffee = make_coffee(flavor_notes=["caramel"])
    await seed(session_factory, coffee, *uniform_history(user_id, [coffee], count=count, overall=overall))
    return user_id


async def _stored_profile(session_factory, user_id):
    async with session_factory() as session:
        return await taste_profile_service.get_profile(session, user_id)


async def _add_ratings(session_factory, user_id, count: int, *, overall: int):
    coffee = make_coffee()
    later = utcnow() + timedelta(seconds=1)
    await seed(
        session_factory,
        coffee,
        *(make_rating(user_id, coffee, overall=overall, created_at=later + timedelta(seconds=i)) for i in range(count)),
    )


@pytest.mark.asyncio
async def test_repeated_triggers_collapse_into_one_run(scheduler, session_factory):
    user_id = await _rated_user(session_factory)

    for _ in range(5):
        result = await scheduler.trigger_update(user_id, TriggerType.RATING_ADDED)
        assert result.queued is True
        assert result.immediate is False

    status = scheduler.get_queue_status()
    assert status.queue_size == 1
    assert status.queue_details[0].user_id == user_id
    assert scheduler.is_pending(user_id)

    await scheduler.join()

    history = scheduler.get_update_history(user_id)
    assert history.total == 1
    assert history.updates[0].update_type is UpdateType.FULL
    assert not scheduler.is_pending(user_id)
    profile = await _stored_profile(session_factory, user_id)
    assert profile.total_ratings == 10


@pytest.mark.asyncio
async def test_manual_trigger_runs_immediately_and_supersedes_queue(scheduler, session_factory):
    user_id = await _rated_user(session_factory)

    await scheduler.trigger_update(user_id, TriggerType.RATING_ADDED)
    result = await scheduler.trigger_update(user_id, TriggerType.MANUAL)

    assert result.immediate is True
    assert result.queued is False
    assert not scheduler.is_pending(user_id)
    await scheduler.join()
    assert scheduler.get_update_history(user_id).total == 1


@pytest.mark.asyncio
async def test_rating_deleted_bypasses_debounce(scheduler, session_factory):
    user_id = await _rated_user(session_factory)

    result = await scheduler.trigger_update(user_id, TriggerType.RATING_DELETED)

    assert result.immediate is True
    assert scheduler.get_update_history(user_id).updates[0].trigger.trigger_type is TriggerType.RATING_DELETED


@pytest.mark.asyncio
async def test_update_without_new_ratings_is_skipped(scheduler, session_factory, session):
    user_id = await _rated_user(session_factory)
    await taste_profile_service.generate_profile(session, user_id)

    await scheduler.trigger_update(user_id, TriggerType.MANUAL)

    entry = scheduler.get_update_history(user_id).updates[0]
    assert entry.update_type is UpdateType.SKIPPED
    assert entry.result == "success"


@pytest.mark.asyncio
async def test_few_new_ratings_patch_profile_incrementally(scheduler, session_factory, session):
    user_id = await _rated_user(session_factory, count=10, overall=5)
    await taste_profile_service.generate_profile(session, user_id)
    await _add_ratings(session_factory, user_id, 1, overall=1)

    await scheduler.trigger_update(user_id, TriggerType.MANUAL)

    entry = scheduler.get_update_history(user_id).updates[0]
    assert entry.update_type is UpdateType.PARTIAL
    profile = await _stored_profile(session_factory, user_id)
    assert profile.total_ratings == 11
    assert profile.rating_patterns["average_overall_rating"] == pytest.approx(51 / 11)
    # Preference sections are left as computed by the last full run.
    assert profile.rating_patterns["rating_variance"] == 0


@pytest.mark.asyncio
async def test_many_new_ratings_trigger_full_recompute(scheduler, session_factory, session):
    user_id = await _rated_user(session_factory, count=2, overall=5)
    await taste_profile_service.generate_profile(session, user_id)
    await _add_ratings(session_factory, user_id, 2, overall=3)

    await scheduler.trigger_update(user_id, TriggerType.MANUAL)

    assert scheduler.get_update_history(user_id).updates[0].update_type is UpdateType.FULL
    profile = await _stored_profile(session_factory, user_id)
    assert profile.total_ratings == 4
    assert profile.rating_patterns["rating_variance"] == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_realtime_toggle_only_lets_manual_through(scheduler, session_factory):
    user_id = await _rated_user(session_factory)
    scheduler.update_configuration(UpdateConfigurationPatch(enable_realtime_updates=False))

    blocked = await scheduler.trigger_update(user_id, TriggerType.RATING_ADDED)
    manual = await scheduler.trigger_update(user_id, TriggerType.MANUAL)

    assert (blocked.queued, blocked.immediate) == (False, False)
    assert blocked.reason == "Real-time updates disabled"
    assert manual.immediate is True


@pytest.mark.asyncio
async def test_immediate_failure_propagates_and_is_recorded(scheduler, session_factory, monkeypatch):
    user_id = await _rated_user(session_factory)

    async def _broken(session, user_id):
        raise ProfileStoreError("generate_profile", user_id, RuntimeError("database unavailable"))

    monkeypatch.setattr(taste_profile_service, "generate_profile", _broken)

    with pytest.raises(ProfileStoreError):
        await scheduler.trigger_update(user_id, TriggerType.MANUAL)

    entry = scheduler.get_update_history(user_id).updates[0]
    assert entry.result == "error"
    assert entry.update_type is UpdateType.FAILED
    assert "database unavailable" in entry.error
    assert scheduler.get_queue_status().processing_count == 0


@pytest.mark.asyncio
async def test_debounced_failure_is_retried_then_recorded(scheduler, session_factory, monkeypatch):
    user_id = await _rated_user(session_factory)
    attempts = 0

    async def _broken(session, user_id):
        nonlocal attempts
        attempts += 1
        raise ProfileStoreError("generate_profile", user_id, RuntimeError("database unavailable"))

    monkeypatch.setattr(taste_profile_service, "generate_profile", _broken)

    await scheduler.trigger_update(user_id, TriggerType.RATING_ADDED)
    await scheduler.join()

    assert attempts == 2
    history = scheduler.get_update_history(user_id)
    assert history.total == 2
    assert {entry.result for entry in history.updates} == {"error"}
    stats = scheduler.get_statistics()
    assert stats.error_rate == 100.0
    assert stats.active_users == 1


@pytest.mark.asyncio
async def test_trigger_during_processing_is_requeued(scheduler, session_factory, monkeypatch):
    user_id = await _rated_user(session_factory)
    started = asyncio.Event()
    gate = asyncio.Event()
    original = taste_profile_service.generate_profile

    async def _slow(session, user_id):
        started.set()
        await gate.wait()
        return await original(session, user_id)

    monkeypatch.setattr(taste_profile_service, "generate_profile", _slow)

    first = asyncio.create_task(scheduler.trigger_update(user_id, TriggerType.MANUAL))
    await asyncio.wait_for(started.wait(), timeout=5)
    assert scheduler.get_queue_status().processing_count == 1

    second = await scheduler.trigger_update(user_id, TriggerType.MANUAL)
    assert second.queued is True
    assert second.immediate is False
    assert scheduler.is_pending(user_id)

    gate.set()
    assert (await first).immediate is True
    await scheduler.join()

    history = scheduler.get_update_history(user_id)
    assert history.total == 2
    assert [entry.update_type for entry in history.updates] == [UpdateType.SKIPPED, UpdateType.FULL]


@pytest.mark.asyncio
async def test_process_pending_updates_drains_queue(scheduler, session_factory):
    scheduler.update_configuration(UpdateConfigurationPatch(debounce_ms=60_000, batch_size=2))
    users = [await _rated_user(session_factory) for _ in range(3)]
    for user_id in users:
        await scheduler.trigger_update(user_id, TriggerType.RATING_UPDATED)

    result = await scheduler.process_pending_updates()

    assert result.processed == 3
    assert result.failed == 0
    assert {item.user_id for item in result.results} == set(users)
    assert scheduler.get_queue_status().queue_size == 0
    await scheduler.join()


@pytest.mark.asyncio
async def test_process_pending_updates_respects_batch_toggle(scheduler, session_factory):
    scheduler.update_configuration(UpdateConfigurationPatch(debounce_ms=60_000, enable_batch_updates=False))
    user_id = await _rated_user(session_factory)
    await scheduler.trigger_update(user_id, TriggerType.RATING_ADDED)

    result = await scheduler.process_pending_updates()

    assert (result.processed, result.failed) == (0, 0)
    assert scheduler.is_pending(user_id)
    assert scheduler.clear_queue() == 1
    assert not scheduler.is_pending(user_id)


@pytest.mark.asyncio
async def test_history_is_paginated_most_recent_first(scheduler, session_factory):
    user_id = await _rated_user(session_factory)
    for trigger_type in (TriggerType.MANUAL, TriggerType.RATING_DELETED, TriggerType.MANUAL):
        await scheduler.trigger_update(user_id, trigger_type)

    page = scheduler.get_update_history(user_id, limit=2)
    assert page.total == 3
    assert page.has_more is True
    assert page.updates[0].update_type is UpdateType.SKIPPED
    assert page.updates[1].trigger.trigger_type is TriggerType.RATING_DELETED

    tail = scheduler.get_update_history(user_id, limit=2, offset=2)
    assert tail.has_more is False
    assert tail.updates[0].update_type is UpdateType.FULL

    scheduler.update_configuration(UpdateConfigurationPatch(history_limit=1))
    assert scheduler.get_update_history(user_id).total == 1


@pytest.mark.asyncio
async def test_schedule_stale_profiles_queues_scheduled_triggers(scheduler, session_factory, session):
    scheduler.update_configuration(UpdateConfigurationPatch(debounce_ms=60_000))
    user_id = await _rated_user(session_factory)

    scheduled = await scheduler.schedule_stale_profiles(session)

    assert scheduled == [user_id]
    entry = scheduler.get_queue_status().queue_details[0]
    assert entry.trigger_type is TriggerType.SCHEDULED


@pytest.mark.asyncio
async def test_bulk_trigger_deduplicates_users(scheduler, session_factory):
    first = await _rated_user(session_factory)
    second = await _rated_user(session_factory)

    results = await scheduler.trigger_bulk([first, second, first], TriggerType.RATING_UPDATED)

    assert set(results) == {first, second}
    assert all(result.queued for result in results.values())
    assert scheduler.get_queue_status().queue_size == 2
    await scheduler.join()


@pytest.mark.asyncio
async def test_statistics_report_error_rate_as_percentage(scheduler, session_factory, monkeypatch):
    healthy = await _rated_user(session_factory)
    await scheduler.trigger_update(healthy, TriggerType.MANUAL)
    broken_user = await _rated_user(session_factory)

    async def _broken(session, user_id):
        raise ProfileStoreError("generate_profile", user_id, RuntimeError("database unavailable"))

    monkeypatch.setattr(taste_profile_service, "generate_profile", _broken)
    with pytest.raises(ProfileStoreError):
        await scheduler.trigger_update(broken_user, TriggerType.MANUAL)

    stats = scheduler.get_statistics()
    assert stats.total_updates_processed == 2
    assert stats.error_rate == pytest.approx(50.0)
    assert stats.active_users == 2


def _counted_profile(user_id, *, total: int, hours_ago: float) -> TasteProfile:
    return TasteProfile(
        user_id=user_id,
        total_ratings=total,
        rating_patterns={"average_overall_rating": 4.0},
        last_calculated=utcnow() - timedelta(hours=hours_ago),
    )


def test_old_profile_with_one_new_rating_gets_full_refresh():
    user_id = uuid.uuid4()
    coffee = make_coffee()
    fresh = make_rating(user_id, coffee, overall=4, created_at=utcnow() - timedelta(hours=1))
    config = UpdateConfiguration(full_refresh_hours=168, full_refresh_ratio=0.2)

    update_type, new_ratings = classify_update(
        _counted_profile(user_id, total=50, hours_ago=200), [fresh], config, now=utcnow()
    )

    assert update_type is UpdateType.FULL
    assert new_ratings == [fresh]


def test_recent_profile_with_one_new_rating_is_patched():
    user_id = uuid.uuid4()
    coffee = make_coffee()
    fresh = make_rating(user_id, coffee, overall=4, created_at=utcnow() - timedelta(hours=1))
    config = UpdateConfiguration(full_refresh_hours=168, full_refresh_ratio=0.2)

    update_type, _ = classify_update(_counted_profile(user_id, total=50, hours_ago=10), [fresh], config, now=utcnow())

    assert update_type is UpdateType.PARTIAL


@pytest.mark.asyncio
async def test_partial_update_commit_failure_leaves_stored_profile(session_factory, session, monkeypatch):
    user_id = await _rated_user(session_factory, count=10, overall=5)
    await taste_profile_service.generate_profile(session, user_id)
    await _add_ratings(session_factory, user_id, 1, overall=1)

    async with session_factory() as work:
        profile = await taste_profile_service.get_profile(work, user_id)
        recent = await rating_source.recent_ratings(work, user_id)
        update_type, new_ratings = classify_update(profile, recent, UpdateConfiguration(), now=utcnow())
        assert update_type is UpdateType.PARTIAL

        async def _failing_commit(self):
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(AsyncSession, "commit", _failing_commit)
        with pytest.raises(ProfileStoreError) as excinfo:
            await apply_partial_update(work, profile, new_ratings, now=utcnow())
    assert excinfo.value.operation == "partial_update"

    stored = await _stored_profile(session_factory, user_id)
    assert stored.total_ratings == 10
    assert stored.rating_patterns["average_overall_rating"] == pytest.approx(5.0)
