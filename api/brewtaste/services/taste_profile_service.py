"""Taste profile aggregation service.

Turns a user's ratings (joined with catalog metadata) into a complete
``TasteProfileSnapshot`` and upserts it as a single write. The pure
``build_*`` helpers carry the statistics so they can be exercised without a
database.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brewtaste.core.config import settings
from brewtaste.core.errors import ProfileStoreError, parse_identifier
from brewtaste.models.catalog import ATTRIBUTE_ORDER, Coffee, CoffeeAttribute, Rating
from brewtaste.models.taste_profile import TasteProfile
from brewtaste.schema.taste_profile import (
    AttributeChart,
    AttributeView,
    FlavorChart,
    FlavorView,
    OriginPreference,
    PreferredAttribute,
    PreferredCharacteristics,
    PreferredFlavorProfile,
    ProcessingMethodPreference,
    RatingDistributionEntry,
    RatingPatterns,
    RatingTrend,
    RoastLevelPreference,
    TasteProfileSnapshot,
    TasteProfileStats,
    TasteProfileSummary,
    TopAttribute,
    TopFlavor,
    neutral_attributes,
)
from brewtaste.schema.updates import BatchUpdateItem, BatchUpdateResult
from brewtaste.services import rating_source
from brewtaste.utils.datetime import as_utc, day_of_week, utcnow
from brewtaste.utils.rounding import round_half_up

logger = logging.getLogger("brewtaste.services.taste_profile")

DEFAULT_REFRESH_HOURS = 24
FLAVOR_LIMIT = 20
TREND_WINDOWS: tuple[tuple[str, int], ...] = (("week", 7), ("month", 30), ("quarter", 90))
PROFILE_SECTIONS = {
    "preferred_attributes",
    "preferred_flavor_profiles",
    "preferred_characteristics",
    "rating_patterns",
}

RatedCoffee = tuple[Rating, Coffee]


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _variance(values: Sequence[float], mean: float) -> float:
    return sum((value - mean) ** 2 for value in values) / len(values)


def build_attribute_preferences(rated: Iterable[RatedCoffee]) -> list[PreferredAttribute]:
    """Score each sensory attribute from (sub-score, overall) pairs.

    Attributes nobody scored keep the neutral default so the list always has
    one entry per attribute.
    """
    rated = list(rated)
    preferences: list[PreferredAttribute] = []
    for attribute in ATTRIBUTE_ORDER:
        pairs = [
            (score, rating.overall)
            for rating, _ in rated
            if (score := rating.score_for(attribute)) is not None
        ]
        if not pairs:
            preferences.append(PreferredAttribute.neutral(attribute))
            continue
        preferences.append(_attribute_stats(attribute, pairs))
    return preferences


def _attribute_stats(attribute: CoffeeAttribute, pairs: list[tuple[int, int]]) -> PreferredAttribute:
    sub_scores = [float(sub) for sub, _ in pairs]
    overall_scores = [float(overall) for _, overall in pairs]
    count = len(pairs)
    average = _mean(sub_scores)
    average_overall = _mean(overall_scores)
    variance = _variance(sub_scores, average)

    preference = _clamp((average - 1) * 25 + (average_overall - 3) * 10)
    # Volume earns up to 50 points, consistency the other 50.
    confidence = _clamp(min(50, count * 2) + max(0.0, 50 - variance * 10))
    return PreferredAttribute(
        attribute=attribute,
        preference_score=preference,
        confidence=confidence,
        average_rating=average,
        rating_count=count,
    )


def build_flavor_preferences(rated: Iterable[RatedCoffee], *, limit: int = FLAVOR_LIMIT) -> list[PreferredFlavorProfile]:
    scores: dict[str, list[int]] = {}
    for rating, coffee in rated:
        for note in coffee.flavor_notes or []:
            scores.setdefault(note, []).append(rating.overall)

    flavors: list[PreferredFlavorProfile] = []
    for note, overall_scores in scores.items():
        frequency = len(overall_scores)
        average = _mean(overall_scores)
        preference = _clamp((average - 1) * 20 + min(30, frequency * 3))
        flavors.append(
            PreferredFlavorProfile(
                flavor_note=note,
                frequency=frequency,
                preference_score=preference,
                average_rating=average,
            )
        )
    flavors.sort(key=lambda flavor: flavor.preference_score, reverse=True)
    return flavors[:limit]


def build_characteristic_preferences(rated: Iterable[RatedCoffee]) -> PreferredCharacteristics:
    roasts: dict[str, list[int]] = {}
    origins: dict[str, list[int]] = {}
    regions: dict[str, set[str]] = {}
    methods: dict[str, list[int]] = {}

    for rating, coffee in rated:
        if coffee.roast_level:
            roasts.setdefault(coffee.roast_level.value, []).append(rating.overall)
        if coffee.origin_country:
            origins.setdefault(coffee.origin_country, []).append(rating.overall)
            seen = regions.setdefault(coffee.origin_country, set())
            if coffee.origin_region:
                seen.add(coffee.origin_region)
        if coffee.processing_method:
            methods.setdefault(coffee.processing_method.value, []).append(rating.overall)

    roast_levels = [
        RoastLevelPreference(level=level, frequency=len(values), average_rating=_mean(values))
        for level, values in roasts.items()
    ]
    origin_entries = [
        OriginPreference(
            country=country,
            # A region is only meaningful when every rated coffee agrees on it.
            region=next(iter(regions[country])) if len(regions[country]) == 1 else None,
            frequency=len(values),
            average_rating=_mean(values),
        )
        for country, values in origins.items()
    ]
    processing = [
        ProcessingMethodPreference(method=method, frequency=len(values), average_rating=_mean(values))
        for method, values in methods.items()
    ]
    for entries in (roast_levels, origin_entries, processing):
        entries.sort(key=lambda entry: entry.average_rating, reverse=True)
    return PreferredCharacteristics(
        roast_levels=roast_levels,
        origins=origin_entries,
        processing_methods=processing,
    )


def _modal(values: Iterable[int]) -> int | None:
    counts = Counter(values)
    if not counts:
        return None
    # Counter keeps first-seen order, and max() returns the first maximum.
    return max(counts, key=counts.__getitem__)


def build_rating_patterns(ratings: Sequence[Rating], *, now: datetime) -> RatingPatterns:
    if not ratings:
        return RatingPatterns()
    now = as_utc(now)
    overall = [float(rating.overall) for rating in ratings]
    total = len(overall)
    histogram = Counter(rating.overall for rating in ratings)
    distribution = [
        RatingDistributionEntry(rating=value, count=count, percentage=count / total * 100)
        for value, count in sorted(histogram.items())
    ]
    average = _mean(overall)
    variance = _variance(overall, average)

    timestamps = [as_utc(rating.created_at) for rating in ratings]
    trends: list[RatingTrend] = []
    for period, days in TREND_WINDOWS:
        cutoff = now - timedelta(days=days)
        window = [rating.overall for rating, ts in zip(ratings, timestamps) if ts >= cutoff]
        if window:
            trends.append(RatingTrend(period=period, average_rating=_mean(window), rating_count=len(window)))

    return RatingPatterns(
        overall_rating_distribution=distribution,
        average_overall_rating=average,
        rating_variance=variance,
        most_active_time_of_day=_modal(ts.hour for ts in timestamps),
        most_active_day=_modal(day_of_week(ts) for ts in timestamps),
        rating_trends=trends,
    )


def build_profile_confidence(
    total_ratings: int, attributes: Sequence[PreferredAttribute], patterns: RatingPatterns
) -> int:
    volume = min(40, total_ratings * 2)
    average_attribute_confidence = (
        sum(entry.confidence for entry in attributes) / len(attributes) if attributes else 0.0
    )
    attribute_points = average_attribute_confidence / 100 * 30
    consistency = max(0.0, 30 - patterns.rating_variance * 15)
    return int(_clamp(round_half_up(volume + attribute_points + consistency)))


def empty_snapshot(user_id: uuid.UUID, *, now: datetime) -> TasteProfileSnapshot:
    return TasteProfileSnapshot(
        user_id=user_id,
        preferred_attributes=neutral_attributes(),
        total_ratings=0,
        profile_confidence=0,
        last_calculated=now,
    )


def build_snapshot(user_id: uuid.UUID, rated: Sequence[RatedCoffee], *, now: datetime) -> TasteProfileSnapshot:
    """Compute a full profile from ratings joined with their coffees (newest first)."""
    now = as_utc(now)
    if not rated:
        return empty_snapshot(user_id, now=now)
    ratings = [rating for rating, _ in rated]
    attributes = build_attribute_preferences(rated)
    patterns = build_rating_patterns(ratings, now=now)
    return TasteProfileSnapshot(
        user_id=user_id,
        preferred_attributes=attributes,
        preferred_flavor_profiles=build_flavor_preferences(rated),
        preferred_characteristics=build_characteristic_preferences(rated),
        rating_patterns=patterns,
        total_ratings=len(ratings),
        last_rating_date=max(as_utc(rating.created_at) for rating in ratings),
        profile_confidence=build_profile_confidence(len(ratings), attributes, patterns),
        last_calculated=now,
    )


def apply_snapshot(profile: TasteProfile, snapshot: TasteProfileSnapshot) -> None:
    """Copy every computed field onto the ORM row (assignment, not mutation)."""
    document = snapshot.model_dump(mode="json", include=PROFILE_SECTIONS)
    profile.preferred_attributes = document["preferred_attributes"]
    profile.preferred_flavor_profiles = document["preferred_flavor_profiles"]
    profile.preferred_characteristics = document["preferred_characteristics"]
    profile.rating_patterns = document["rating_patterns"]
    profile.total_ratings = snapshot.total_ratings
    profile.last_rating_date = snapshot.last_rating_date
    profile.profile_confidence = snapshot.profile_confidence
    profile.last_calculated = snapshot.last_calculated or utcnow()


def to_snapshot(profile: TasteProfile) -> TasteProfileSnapshot:
    return TasteProfileSnapshot.model_validate(profile)


async def get_profile(session: AsyncSession, user_id: uuid.UUID | str) -> TasteProfile | None:
    """Return the stored profile for a user, if one was ever generated."""
    user_id = parse_identifier(user_id)
    try:
        result = await session.execute(select(TasteProfile).where(TasteProfile.user_id == user_id))
    except SQLAlchemyError as exc:
        logger.exception("Taste profile lookup failed for user %s", user_id)
        raise ProfileStoreError("get_profile", user_id, exc) from exc
    return result.scalar_one_or_none()


async def generate_profile(session: AsyncSession, user_id: uuid.UUID | str) -> TasteProfile:
    """Recompute a user's profile from all of their ratings and upsert it."""
    user_id = parse_identifier(user_id)
    logger.info("Generating taste profile for user %s", user_id)
    try:
        rated = await rating_source.fetch_rated_coffees(session, user_id)
        if not rated:
            logger.info("No ratings found for user %s, storing empty profile", user_id)
        snapshot = build_snapshot(user_id, rated, now=utcnow())
        result = await session.execute(select(TasteProfile).where(TasteProfile.user_id == user_id))
        profile = result.scalar_one_or_none()
        if profile is None:
            profile = TasteProfile(user_id=user_id)
            session.add(profile)
        apply_snapshot(profile, snapshot)
        await session.commit()
        await session.refresh(profile)
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("Taste profile generation failed for user %s", user_id)
        raise ProfileStoreError("generate_profile", user_id, exc) from exc

    logger.info(
        "Generated taste profile for user %s from %d ratings with confidence %d%%",
        user_id,
        profile.total_ratings,
        profile.profile_confidence,
    )
    return profile


async def get_or_build_profile(
    session: AsyncSession, user_id: uuid.UUID | str, *, force_refresh: bool = False
) -> TasteProfile:
    """Return a cached taste profile or refresh it."""
    profile = await get_profile(session, user_id)
    refresh_hours = getattr(settings, "taste_profile_refresh_hours", DEFAULT_REFRESH_HOURS)
    if profile and not force_refresh:
        if refresh_hours <= 0:
            return profile
        cutoff = utcnow() - timedelta(hours=refresh_hours)
        if profile.last_calculated and as_utc(profile.last_calculated) >= cutoff:
            return profile
    return await generate_profile(session, user_id)


async def get_stale_profiles(session: AsyncSession, hours_threshold: int | None = None) -> list[uuid.UUID]:
    """List users whose profile is missing, behind their ratings, or too old."""
    hours = settings.taste_profile_stale_hours if hours_threshold is None else hours_threshold
    threshold = utcnow() - timedelta(hours=hours)
    last_ratings = (
        select(Rating.user_id.label("user_id"), func.max(Rating.created_at).label("last_rating"))
        .group_by(Rating.user_id)
        .subquery()
    )
    stmt = (
        select(last_ratings.c.user_id)
        .select_from(last_ratings)
        .outerjoin(TasteProfile, TasteProfile.user_id == last_ratings.c.user_id)
        .where(
            or_(
                TasteProfile.id.is_(None),
                last_ratings.c.last_rating > TasteProfile.last_calculated,
                TasteProfile.last_calculated < threshold,
            )
        )
        .order_by(last_ratings.c.user_id)
    )
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as exc:
        logger.exception("Stale profile discovery failed")
        raise ProfileStoreError("get_stale_profiles", None, exc) from exc
    return list(result.scalars().all())


async def batch_update_profiles(
    session: AsyncSession,
    user_ids: Sequence[uuid.UUID | str] | None = None,
    *,
    hours_threshold: int | None = None,
) -> BatchUpdateResult:
    """Regenerate several profiles, isolating failures per user.

    When ``user_ids`` is omitted the stale set is used.
    """
    if user_ids is None:
        targets = await get_stale_profiles(session, hours_threshold)
    else:
        targets = [parse_identifier(user_id) for user_id in user_ids]

    results: list[BatchUpdateItem] = []
    updated = 0
    for user_id in targets:
        try:
            await generate_profile(session, user_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Batch update failed for user %s: %s", user_id, exc)
            results.append(BatchUpdateItem(user_id=user_id, success=False, error=str(exc)))
            continue
        updated += 1
        results.append(BatchUpdateItem(user_id=user_id, success=True))

    logger.info("Batch updated %d out of %d taste profiles", updated, len(targets))
    return BatchUpdateResult(
        requested=len(targets),
        updated=updated,
        failed=len(targets) - updated,
        results=results,
    )


def build_summary(snapshot: TasteProfileSnapshot) -> TasteProfileSummary:
    """Condense a profile into the dashboard summary."""
    attributes = sorted(
        (entry for entry in snapshot.preferred_attributes if entry.confidence > 20),
        key=lambda entry: entry.preference_score,
        reverse=True,
    )[:5]
    flavors = sorted(snapshot.preferred_flavor_profiles, key=lambda f: f.preference_score, reverse=True)[:5]
    characteristics = snapshot.preferred_characteristics
    patterns = snapshot.rating_patterns
    return TasteProfileSummary(
        profile_confidence=snapshot.profile_confidence,
        total_ratings=snapshot.total_ratings,
        last_updated=snapshot.last_calculated,
        top_attributes=[
            TopAttribute(
                attribute=entry.attribute,
                score=entry.preference_score,
                confidence=entry.confidence,
                average_rating=entry.average_rating,
            )
            for entry in attributes
        ],
        top_flavors=[
            TopFlavor(
                flavor=flavor.flavor_note,
                score=flavor.preference_score,
                frequency=flavor.frequency,
                average_rating=flavor.average_rating,
            )
            for flavor in flavors
        ],
        preferred_roast_level=characteristics.roast_levels[0] if characteristics.roast_levels else None,
        preferred_origin=characteristics.origins[0] if characteristics.origins else None,
        preferred_processing=characteristics.processing_methods[0] if characteristics.processing_methods else None,
        average_rating=patterns.average_overall_rating,
        rating_consistency=max(0.0, 100 - patterns.rating_variance * 20),
        most_active_time=patterns.most_active_time_of_day,
        most_active_day=patterns.most_active_day,
    )


def build_attribute_chart(snapshot: TasteProfileSnapshot) -> AttributeChart:
    return AttributeChart(
        attributes=[
            AttributeView(
                name=entry.attribute,
                value=entry.preference_score,
                confidence=entry.confidence,
                average_rating=entry.average_rating,
                rating_count=entry.rating_count,
                normalized_value=entry.preference_score / 100 * 5,
            )
            for entry in snapshot.preferred_attributes
        ],
        profile_confidence=snapshot.profile_confidence,
        total_ratings=snapshot.total_ratings,
        last_updated=snapshot.last_calculated,
    )


def build_flavor_chart(snapshot: TasteProfileSnapshot, *, limit: int = 10) -> FlavorChart:
    flavors = sorted(snapshot.preferred_flavor_profiles, key=lambda f: f.preference_score, reverse=True)
    return FlavorChart(
        flavors=[
            FlavorView(
                name=flavor.flavor_note,
                preference_score=flavor.preference_score,
                frequency=flavor.frequency,
                average_rating=flavor.average_rating,
                intensity=flavor.preference_score / 100 * 10,
            )
            for flavor in flavors[:limit]
        ],
        total_flavors=len(snapshot.preferred_flavor_profiles),
        profile_confidence=snapshot.profile_confidence,
    )


def build_stats(snapshot: TasteProfileSnapshot) -> TasteProfileStats:
    patterns = snapshot.rating_patterns
    return TasteProfileStats(
        overview={
            "total_ratings": snapshot.total_ratings,
            "profile_confidence": snapshot.profile_confidence,
            "average_rating": patterns.average_overall_rating,
            "rating_variance": patterns.rating_variance,
            "last_rating_date": snapshot.last_rating_date,
            "last_calculated": snapshot.last_calculated,
        },
        rating_distribution=patterns.overall_rating_distribution,
        preferences=snapshot.preferred_characteristics,
        behavior={
            "most_active_time_of_day": patterns.most_active_time_of_day,
            "most_active_day": patterns.most_active_day,
            "rating_trends": [trend.model_dump() for trend in patterns.rating_trends],
        },
    )
