"""Cross-user similarity, coffee matching, clustering, and collaborative refinement."""

from __future__ import annotations

import logging
import random
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brewtaste.core.config import settings
from brewtaste.core.errors import ProfileStoreError, parse_identifier
from brewtaste.models.taste_profile import TasteProfile
from brewtaste.schema.taste_profile import (
    ClusterResult,
    CoffeeAffinity,
    SimilarUser,
    TasteProfileSnapshot,
)
from brewtaste.services import rating_source, taste_algorithms
from brewtaste.services.taste_profile_service import get_profile, to_snapshot
from brewtaste.utils.datetime import utcnow

logger = logging.getLogger("brewtaste.services.similarity")

SIMILAR_MIN_CONFIDENCE = 30
SIMILAR_MIN_RATINGS = 5
SIMILAR_CANDIDATE_LIMIT = 100
SIMILAR_MIN_AFFINITY = 0.1
CLUSTER_MIN_CONFIDENCE = 40
CLUSTER_MIN_RATINGS = 10
REFINE_NEIGHBOR_LIMIT = 20


async def _candidate_profiles(
    session: AsyncSession,
    *,
    min_confidence: int,
    min_ratings: int,
    exclude: uuid.UUID | None = None,
    limit: int | None = None,
) -> list[TasteProfileSnapshot]:
    stmt = select(TasteProfile).where(
        TasteProfile.profile_confidence >= min_confidence,
        TasteProfile.total_ratings >= min_ratings,
    )
    if exclude is not None:
        stmt = stmt.where(TasteProfile.user_id != exclude)
    stmt = stmt.order_by(TasteProfile.profile_confidence.desc(), TasteProfile.user_id)
    if limit is not None:
        stmt = stmt.limit(limit)
    try:
        result = await session.execute(stmt)
    except SQLAlchemyError as exc:
        logger.exception("Candidate profile query failed")
        raise ProfileStoreError("candidate_profiles", exclude, exc) from exc
    return [to_snapshot(profile) for profile in result.scalars().all()]


async def user_affinity(session: AsyncSession, user_id1: uuid.UUID | str, user_id2: uuid.UUID | str) -> float:
    """Symmetric affinity in [0, 1]; 0 when either user has no stored profile."""
    user_id1 = parse_identifier(user_id1)
    user_id2 = parse_identifier(user_id2)
    profile1 = await get_profile(session, user_id1)
    profile2 = await get_profile(session, user_id2)
    if profile1 is None or profile2 is None:
        return 0.0
    return taste_algorithms.user_affinity(to_snapshot(profile1), to_snapshot(profile2))


async def coffee_affinity(
    session: AsyncSession, user_id: uuid.UUID | str, coffee_id: uuid.UUID | str
) -> CoffeeAffinity:
    user_id = parse_identifier(user_id)
    coffee_id = parse_identifier(coffee_id, kind="coffee")
    profile = await get_profile(session, user_id)
    try:
        coffee = await rating_source.get_coffee(session, coffee_id)
    except SQLAlchemyError as exc:
        logger.exception("Coffee lookup failed for %s", coffee_id)
        raise ProfileStoreError("get_coffee", user_id, exc) from exc
    if profile is None or coffee is None:
        return CoffeeAffinity(coffee_id=coffee_id)

    snapshot = to_snapshot(profile)
    match = taste_algorithms.coffee_match(snapshot, coffee)
    return CoffeeAffinity(
        coffee_id=coffee_id,
        affinity_score=match.score,
        matching_factors=match.factors,
        confidence=min(100, snapshot.profile_confidence + match.matched * 10),
    )


async def _similar_users(
    session: AsyncSession, target: TasteProfileSnapshot, limit: int
) -> list[tuple[TasteProfileSnapshot, float]]:
    candidates = await _candidate_profiles(
        session,
        min_confidence=SIMILAR_MIN_CONFIDENCE,
        min_ratings=SIMILAR_MIN_RATINGS,
        exclude=target.user_id,
        limit=SIMILAR_CANDIDATE_LIMIT,
    )
    scored = [(candidate, taste_algorithms.user_affinity(target, candidate)) for candidate in candidates]
    scored = [(candidate, affinity) for candidate, affinity in scored if affinity > SIMILAR_MIN_AFFINITY]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[:limit]


async def find_similar_users(session: AsyncSession, user_id: uuid.UUID | str, limit: int = 10) -> list[SimilarUser]:
    """Rank other qualified users by affinity with the given user."""
    user_id = parse_identifier(user_id)
    profile = await get_profile(session, user_id)
    if profile is None:
        return []
    target = to_snapshot(profile)
    neighbors = await _similar_users(session, target, limit)
    return [
        SimilarUser(
            user_id=candidate.user_id,
            affinity_score=affinity,
            shared_attributes=taste_algorithms.shared_attributes(target, candidate),
            confidence=min(target.profile_confidence, candidate.profile_confidence),
        )
        for candidate, affinity in neighbors
    ]


async def cluster_users_by_taste(
    session: AsyncSession,
    k: int = 5,
    *,
    rng: random.Random | None = None,
    max_iterations: int | None = None,
) -> list[ClusterResult]:
    """Partition qualified users into at most ``k`` taste clusters.

    Pass a seeded ``rng`` for reproducible centroids. Returns an empty list when
    fewer than ``k`` users qualify.
    """
    if k < 1:
        return []
    population = await _candidate_profiles(
        session, min_confidence=CLUSTER_MIN_CONFIDENCE, min_ratings=CLUSTER_MIN_RATINGS
    )
    if len(population) < k:
        logger.info("Not enough qualified profiles to cluster: %d < %d", len(population), k)
        return []

    vectors = [profile.attribute_vector() for profile in population]
    outcome = taste_algorithms.kmeans(
        vectors,
        k,
        rng=rng or random.Random(),
        max_iterations=max_iterations or settings.taste_profile_cluster_max_iterations,
    )
    logger.info(
        "Clustered %d profiles into %d groups after %d iterations (converged=%s)",
        len(population),
        k,
        outcome.iterations,
        outcome.converged,
    )

    clusters: list[ClusterResult] = []
    for index, members in enumerate(outcome.clusters):
        if not members:
            continue
        centroid = outcome.centroids[index]
        member_profiles = [population[m] for m in members]
        clusters.append(
            ClusterResult(
                cluster_id=f"cluster_{index}",
                users=[profile.user_id for profile in member_profiles],
                centroid=taste_algorithms.vector_to_attributes(centroid),
                cohesion=taste_algorithms.cluster_cohesion([vectors[m] for m in members], centroid),
                characteristics=taste_algorithms.cluster_characteristics(member_profiles),
            )
        )
    return clusters


async def refine_with_collaborative_filtering(
    session: AsyncSession, user_id: uuid.UUID | str
) -> TasteProfile | None:
    """Blend a stored profile with its nearest neighbors and persist the result."""
    user_id = parse_identifier(user_id)
    profile = await get_profile(session, user_id)
    if profile is None:
        return None
    snapshot = to_snapshot(profile)
    neighbors = await _similar_users(session, snapshot, REFINE_NEIGHBOR_LIMIT)
    if not neighbors:
        logger.info("No similar users found for %s, profile left unchanged", user_id)
        return profile

    attributes = taste_algorithms.refine_attributes(snapshot.preferred_attributes, neighbors)
    flavors = taste_algorithms.refine_flavors(snapshot.preferred_flavor_profiles, neighbors)
    try:
        profile.preferred_attributes = [entry.model_dump(mode="json") for entry in attributes]
        profile.preferred_flavor_profiles = [entry.model_dump(mode="json") for entry in flavors]
        profile.last_calculated = utcnow()
        await session.commit()
        await session.refresh(profile)
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("Collaborative refinement failed for user %s", user_id)
        raise ProfileStoreError("refine_profile", user_id, exc) from exc

    logger.info("Refined taste profile for user %s with %d similar users", user_id, len(neighbors))
    return profile
