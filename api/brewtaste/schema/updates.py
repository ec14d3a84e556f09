"""Schemas for profile update triggers, scheduler state, and batch results."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from brewtaste.core.config import settings
from brewtaste.utils.datetime import utcnow


class TriggerType(str, enum.Enum):
    """Why a profile recomputation was requested."""
    RATING_ADDED = "rating_added"
    RATING_UPDATED = "rating_updated"
    RATING_DELETED = "rating_deleted"
    MANUAL = "manual"
    SCHEDULED = "scheduled"

    @property
    def bypasses_debounce(self) -> bool:
        return self in (TriggerType.MANUAL, TriggerType.RATING_DELETED)


class UpdateType(str, enum.Enum):
    """Resolved kind of work performed for a trigger."""
    FULL = "full"
    PARTIAL = "partial"
    SKIPPED = "skipped"
    FAILED = "failed"


class UpdateTrigger(BaseModel):
    user_id: UUID
    trigger_type: TriggerType
    rating_id: UUID | None = None
    metadata: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class TriggerResult(BaseModel):
    """Tells the rating layer whether work already ran or was scheduled."""
    queued: bool
    immediate: bool
    reason: str


class TriggerRequest(BaseModel):
    trigger_type: TriggerType = TriggerType.MANUAL
    rating_id: UUID | None = None
    metadata: dict[str, Any] | None = None


class BulkTriggerRequest(BaseModel):
    """Payload sent after a rating operation touching several users."""
    user_ids: list[UUID] = Field(min_length=1)
    trigger_type: TriggerType = TriggerType.RATING_UPDATED
    operation: str | None = None


class UpdateHistoryEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    trigger: UpdateTrigger
    update_type: UpdateType
    result: Literal["success", "error"]
    details: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None


class UpdateHistoryPage(BaseModel):
    updates: list[UpdateHistoryEntry]
    total: int
    has_more: bool


class UpdateConfiguration(BaseModel):
    """Runtime-tunable scheduler policy, seeded from settings."""
    debounce_ms: int = Field(default_factory=lambda: settings.taste_profile_debounce_ms, ge=0)
    batch_size: int = Field(default_factory=lambda: settings.taste_profile_batch_size, ge=1)
    max_retries: int = Field(default_factory=lambda: settings.taste_profile_max_retries, ge=0)
    retry_delay_ms: int = Field(default_factory=lambda: settings.taste_profile_retry_delay_ms, ge=0)
    enable_realtime_updates: bool = Field(default_factory=lambda: settings.taste_profile_realtime_updates)
    enable_batch_updates: bool = Field(default_factory=lambda: settings.taste_profile_batch_updates)
    full_refresh_ratio: float = Field(default_factory=lambda: settings.taste_profile_full_refresh_ratio, ge=0)
    full_refresh_hours: float = Field(default_factory=lambda: settings.taste_profile_full_refresh_hours, ge=0)
    recent_ratings_limit: int = Field(default_factory=lambda: settings.taste_profile_recent_ratings_limit, ge=1)
    history_limit: int = Field(default_factory=lambda: settings.taste_profile_history_limit, ge=1)


class UpdateConfigurationPatch(BaseModel):
    """Partial configuration update; unset fields keep their current value."""
    debounce_ms: int | None = Field(default=None, ge=0)
    batch_size: int | None = Field(default=None, ge=1)
    max_retries: int | None = Field(default=None, ge=0)
    retry_delay_ms: int | None = Field(default=None, ge=0)
    enable_realtime_updates: bool | None = None
    enable_batch_updates: bool | None = None
    full_refresh_ratio: float | None = Field(default=None, ge=0)
    full_refresh_hours: float | None = Field(default=None, ge=0)
    recent_ratings_limit: int | None = Field(default=None, ge=1)
    history_limit: int | None = Field(default=None, ge=1)


class QueueEntry(BaseModel):
    user_id: UUID
    trigger_type: TriggerType
    scheduled_at: datetime
    rating_id: UUID | None = None


class QueueStatus(BaseModel):
    queue_size: int
    processing_count: int
    queue_details: list[QueueEntry]
    configuration: UpdateConfiguration


class PendingUpdateResult(BaseModel):
    user_id: UUID
    success: bool
    update_type: UpdateType | None = None
    error: str | None = None


class ProcessPendingResult(BaseModel):
    processed: int
    failed: int
    results: list[PendingUpdateResult] = Field(default_factory=list)


class SchedulerStatistics(BaseModel):
    total_updates_processed: int
    average_processing_time_ms: float
    # Percentage of recorded runs that ended in an error, 0-100.
    error_rate: float
    active_users: int


class BatchUpdateItem(BaseModel):
    user_id: UUID
    success: bool
    error: str | None = None


class BatchUpdateResult(BaseModel):
    """Outcome of re-aggregating several profiles in one call."""
    requested: int
    updated: int
    failed: int
    results: list[BatchUpdateItem] = Field(default_factory=list)


class BatchUpdateRequest(BaseModel):
    user_ids: list[UUID] | None = None
    hours_threshold: int | None = Field(default=None, ge=0)
