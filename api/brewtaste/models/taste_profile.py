"""Materialized taste profile owned by the aggregation engine."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from brewtaste.db.base_class import Base
from brewtaste.utils.datetime import utcnow

JSON_COMPATIBLE = JSON().with_variant(JSONB, "postgresql")


class TasteProfile(Base):
    """One row per user; every computed section is stored as a JSON document."""
    __tablename__ = "taste_profiles"
    __table_args__ = (UniqueConstraint("user_id", name="uq_taste_profile_user"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    preferred_attributes: Mapped[list[dict]] = mapped_column(JSON_COMPATIBLE, default=list)
    preferred_flavor_profiles: Mapped[list[dict]] = mapped_column(JSON_COMPATIBLE, default=list)
    preferred_characteristics: Mapped[dict] = mapped_column(JSON_COMPATIBLE, default=dict)
    rating_patterns: Mapped[dict] = mapped_column(JSON_COMPATIBLE, default=dict)
    total_ratings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_rating_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    profile_confidence: Mapped[int] = mapped_column(Integer, default=0, nullable=False, index=True)
    last_calculated: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
