"""Taste profile schemas for computed preferences and similarity results."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from brewtaste.models.catalog import ATTRIBUTE_ORDER, CoffeeAttribute
from brewtaste.schema.base import ORMModel
from brewtaste.utils.datetime import as_utc

NEUTRAL_PREFERENCE = 50.0


class PreferredAttribute(BaseModel):
    """Preference and supporting evidence for one sensory attribute."""
    attribute: CoffeeAttribute
    preference_score: float = Field(default=NEUTRAL_PREFERENCE, ge=0, le=100)
    confidence: float = Field(default=0, ge=0, le=100)
    average_rating: float = 0
    rating_count: int = 0

    @classmethod
    def neutral(cls, attribute: CoffeeAttribute) -> "PreferredAttribute":
        return cls(attribute=attribute)


class PreferredFlavorProfile(BaseModel):
    """A flavor note seen on rated coffees and how the user scored them."""
    flavor_note: str
    frequency: int = 0
    preference_score: float = Field(default=0, ge=0, le=100)
    average_rating: float = 0


class RoastLevelPreference(BaseModel):
    level: str
    frequency: int
    average_rating: float


class OriginPreference(BaseModel):
    country: str
    region: str | None = None
    frequency: int
    average_rating: float


class ProcessingMethodPreference(BaseModel):
    method: str
    frequency: int
    average_rating: float


class PreferredCharacteristics(BaseModel):
    """Roast, origin, and processing preferences sorted by average rating."""
    roast_levels: list[RoastLevelPreference] = Field(default_factory=list)
    origins: list[OriginPreference] = Field(default_factory=list)
    processing_methods: list[ProcessingMethodPreference] = Field(default_factory=list)


class RatingDistributionEntry(BaseModel):
    rating: int
    count: int
    percentage: float


class RatingTrend(BaseModel):
    period: Literal["week", "month", "quarter"]
    average_rating: float
    rating_count: int


class RatingPatterns(BaseModel):
    """Behavioral statistics over a user's overall scores."""
    overall_rating_distribution: list[RatingDistributionEntry] = Field(default_factory=list)
    average_overall_rating: float = 0
    rating_variance: float = 0
    most_active_time_of_day: int | None = Field(default=None, ge=0, le=23)
    most_active_day: int | None = Field(default=None, ge=1, le=7)
    rating_trends: list[RatingTrend] = Field(default_factory=list)


def neutral_attributes() -> list[PreferredAttribute]:
    return [PreferredAttribute.neutral(attribute) for attribute in ATTRIBUTE_ORDER]


class TasteProfileSnapshot(ORMModel):
    """Complete computed profile document, as stored and as returned."""
    user_id: UUID
    preferred_attributes: list[PreferredAttribute] = Field(default_factory=neutral_attributes)
    preferred_flavor_profiles: list[PreferredFlavorProfile] = Field(default_factory=list)
    preferred_characteristics: PreferredCharacteristics = Field(default_factory=PreferredCharacteristics)
    rating_patterns: RatingPatterns = Field(default_factory=RatingPatterns)
    total_ratings: int = 0
    last_rating_date: datetime | None = None
    profile_confidence: int = Field(default=0, ge=0, le=100)
    last_calculated: datetime | None = None

    @field_validator("last_rating_date", "last_calculated")
    @classmethod
    def _tag_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    def attribute(self, attribute: CoffeeAttribute) -> PreferredAttribute | None:
        for entry in self.preferred_attributes:
            if entry.attribute is attribute:
                return entry
        return None

    def attribute_vector(self) -> list[float]:
        """Preference scores in canonical attribute order, neutral when missing."""
        vector: list[float] = []
        for attribute in ATTRIBUTE_ORDER:
            entry = self.attribute(attribute)
            vector.append(entry.preference_score if entry else NEUTRAL_PREFERENCE)
        return vector


class TasteProfileRead(TasteProfileSnapshot):
    """Stored taste profile including record bookkeeping."""
    id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _tag_record_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class TopAttribute(BaseModel):
    attribute: CoffeeAttribute
    score: float
    confidence: float
    average_rating: float


class TopFlavor(BaseModel):
    flavor: str
    score: float
    frequency: int
    average_rating: float


class TasteProfileSummary(BaseModel):
    """Condensed profile for dashboards."""
    profile_confidence: int
    total_ratings: int
    last_updated: datetime | None
    top_attributes: list[TopAttribute]
    top_flavors: list[TopFlavor]
    preferred_roast_level: RoastLevelPreference | None = None
    preferred_origin: OriginPreference | None = None
    preferred_processing: ProcessingMethodPreference | None = None
    average_rating: float
    rating_consistency: float
    most_active_time: int | None = None
    most_active_day: int | None = None


class AttributeView(BaseModel):
    """Attribute entry scaled for radar-chart rendering."""
    name: CoffeeAttribute
    value: float
    confidence: float
    average_rating: float
    rating_count: int
    normalized_value: float


class AttributeChart(BaseModel):
    attributes: list[AttributeView]
    profile_confidence: int
    total_ratings: int
    last_updated: datetime | None


class FlavorView(BaseModel):
    name: str
    preference_score: float
    frequency: int
    average_rating: float
    intensity: float


class FlavorChart(BaseModel):
    flavors: list[FlavorView]
    total_flavors: int
    profile_confidence: int


class TasteProfileStats(BaseModel):
    """Full statistics view grouped by overview, preferences, and behavior."""
    overview: dict
    rating_distribution: list[RatingDistributionEntry]
    preferences: PreferredCharacteristics
    behavior: dict


class UserAffinityRead(BaseModel):
    user_id: UUID
    target_user_id: UUID
    affinity_score: float = Field(ge=0, le=1)


class CoffeeAffinity(BaseModel):
    """How well a catalog coffee matches a user's profile."""
    coffee_id: UUID
    affinity_score: float = Field(default=0, ge=0, le=1)
    matching_factors: list[str] = Field(default_factory=list)
    confidence: float = 0


class SimilarUser(BaseModel):
    user_id: UUID
    affinity_score: float
    shared_attributes: list[CoffeeAttribute] = Field(default_factory=list)
    confidence: float = 0


class ClusterCharacteristics(BaseModel):
    dominant_flavors: list[str] = Field(default_factory=list)
    preferred_origins: list[str] = Field(default_factory=list)
    roast_level_preferences: list[str] = Field(default_factory=list)


class ClusterResult(BaseModel):
    """One non-empty taste cluster from a clustering run."""
    cluster_id: str
    users: list[UUID]
    centroid: list[PreferredAttribute]
    cohesion: float = Field(ge=0, le=1)
    characteristics: ClusterCharacteristics


class TasteProfileRefresh(BaseModel):
    """Payload for on-demand taste profile refresh."""
    force: bool = True
