"""Similarity, clustering, and blending math over taste profile snapshots.

Everything here is pure: inputs are ``TasteProfileSnapshot`` objects and plain
vectors, so the database-backed similarity service and the tests share one
implementation.
"""

from __future__ import annotations

import math
import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Hashable, Iterable, Sequence

from brewtaste.models.catalog import ATTRIBUTE_ORDER, Coffee, CoffeeAttribute
from brewtaste.schema.taste_profile import (
    NEUTRAL_PREFERENCE,
    ClusterCharacteristics,
    PreferredAttribute,
    PreferredCharacteristics,
    PreferredFlavorProfile,
    TasteProfileSnapshot,
)
from brewtaste.utils.rounding import round_half_up

ATTRIBUTE_WEIGHT = 0.40
FLAVOR_WEIGHT = 0.35
CHARACTERISTIC_WEIGHT = 0.25

ROAST_FACTOR_WEIGHT = 0.30
ORIGIN_FACTOR_WEIGHT = 0.25
FLAVOR_FACTOR_WEIGHT = 0.35
PROCESSING_FACTOR_WEIGHT = 0.10

SHARED_ATTRIBUTE_TOLERANCE = 20
CENTROID_CONFIDENCE = 70
CONVERGENCE_THRESHOLD = 1.0

OWN_PREFERENCE_WEIGHT = 0.6
NEIGHBOR_PREFERENCE_WEIGHT = 0.4
NEW_FLAVOR_MIN_SCORE = 70
REFINED_FLAVOR_MIN_SCORE = 30
REFINED_FLAVOR_LIMIT = 25


def cosine_similarity(vector1: Sequence[float], vector2: Sequence[float]) -> float:
    if len(vector1) != len(vector2):
        return 0.0
    dot = sum(a * b for a, b in zip(vector1, vector2))
    norm1 = math.sqrt(sum(a * a for a in vector1))
    norm2 = math.sqrt(sum(b * b for b in vector2))
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return dot / (norm1 * norm2)


def jaccard_similarity(set1: set[Hashable], set2: set[Hashable]) -> float:
    union = set1 | set2
    if not union:
        return 0.0
    return len(set1 & set2) / len(union)


def euclidean_distance(vector1: Sequence[float], vector2: Sequence[float]) -> float:
    return math.sqrt(sum((a - b) ** 2 for a, b in zip(vector1, vector2)))


def attribute_affinity(profile1: TasteProfileSnapshot, profile2: TasteProfileSnapshot) -> float:
    if not profile1.preferred_attributes or not profile2.preferred_attributes:
        return 0.0
    return cosine_similarity(profile1.attribute_vector(), profile2.attribute_vector())


def flavor_affinity(flavors1: Sequence[PreferredFlavorProfile], flavors2: Sequence[PreferredFlavorProfile]) -> float:
    if not flavors1 or not flavors2:
        return 0.0
    return jaccard_similarity({f.flavor_note for f in flavors1}, {f.flavor_note for f in flavors2})


def characteristic_affinity(char1: PreferredCharacteristics, char2: PreferredCharacteristics) -> float:
    """Average the Jaccard similarity of each characteristic both sides have data for."""
    components: list[float] = []
    if char1.roast_levels and char2.roast_levels:
        components.append(
            jaccard_similarity({r.level for r in char1.roast_levels}, {r.level for r in char2.roast_levels})
        )
    if char1.origins and char2.origins:
        components.append(jaccard_similarity({o.country for o in char1.origins}, {o.country for o in char2.origins}))
    if char1.processing_methods and char2.processing_methods:
        components.append(
            jaccard_similarity(
                {p.method for p in char1.processing_methods},
                {p.method for p in char2.processing_methods},
            )
        )
    return sum(components) / len(components) if components else 0.0


def user_affinity(profile1: TasteProfileSnapshot, profile2: TasteProfileSnapshot) -> float:
    """Weighted attribute/flavor/characteristic similarity scaled by the weaker confidence."""
    combined = (
        attribute_affinity(profile1, profile2) * ATTRIBUTE_WEIGHT
        + flavor_affinity(profile1.preferred_flavor_profiles, profile2.preferred_flavor_profiles) * FLAVOR_WEIGHT
        + characteristic_affinity(profile1.preferred_characteristics, profile2.preferred_characteristics)
        * CHARACTERISTIC_WEIGHT
    )
    confidence_weight = min(profile1.profile_confidence, profile2.profile_confidence) / 100
    return max(0.0, min(1.0, combined * confidence_weight))


@dataclass
class CoffeeMatch:
    score: float = 0.0
    factors: list[str] = field(default_factory=list)

    @property
    def matched(self) -> int:
        return len(self.factors)


def coffee_match(profile: TasteProfileSnapshot, coffee: Coffee) -> CoffeeMatch:
    """Score a coffee against the roast, origin, flavor, and processing preferences."""
    match = CoffeeMatch()
    characteristics = profile.preferred_characteristics

    if coffee.roast_level and characteristics.roast_levels:
        roast = next((r for r in characteristics.roast_levels if r.level == coffee.roast_level.value), None)
        if roast:
            match.score += roast.average_rating / 5 * ROAST_FACTOR_WEIGHT
            match.factors.append(f"Preferred roast level: {coffee.roast_level.value}")

    if coffee.origin_country and characteristics.origins:
        origin = next((o for o in characteristics.origins if o.country == coffee.origin_country), None)
        if origin:
            match.score += origin.average_rating / 5 * ORIGIN_FACTOR_WEIGHT
            match.factors.append(f"Preferred origin: {coffee.origin_country}")

    if coffee.flavor_notes and profile.preferred_flavor_profiles:
        preferred = {flavor.flavor_note: flavor for flavor in profile.preferred_flavor_profiles}
        matched_notes = [note for note in coffee.flavor_notes if note in preferred]
        if matched_notes:
            flavor_score = sum(preferred[note].preference_score / 100 for note in matched_notes) / len(matched_notes)
            match.score += flavor_score * FLAVOR_FACTOR_WEIGHT
            match.factors.append(f"Matching flavors: {', '.join(matched_notes)}")

    if coffee.processing_method and characteristics.processing_methods:
        method = next(
            (p for p in characteristics.processing_methods if p.method == coffee.processing_method.value),
            None,
        )
        if method:
            match.score += method.average_rating / 5 * PROCESSING_FACTOR_WEIGHT
            match.factors.append(f"Preferred processing: {coffee.processing_method.value}")

    if not match.matched:
        match.score = 0.0
    match.score = max(0.0, min(1.0, match.score))
    return match


def shared_attributes(profile1: TasteProfileSnapshot, profile2: TasteProfileSnapshot) -> list[CoffeeAttribute]:
    shared: list[CoffeeAttribute] = []
    for entry in profile1.preferred_attributes:
        other = profile2.attribute(entry.attribute)
        if other and abs(entry.preference_score - other.preference_score) < SHARED_ATTRIBUTE_TOLERANCE:
            shared.append(entry.attribute)
    return shared


@dataclass
class KMeansResult:
    """Final centroids and the member indices assigned to each of them."""
    centroids: list[list[float]]
    clusters: list[list[int]]
    iterations: int
    converged: bool


def _neutral_vector(dimensions: int) -> list[float]:
    return [NEUTRAL_PREFERENCE] * dimensions


def kmeans(
    vectors: Sequence[Sequence[float]],
    k: int,
    *,
    rng: random.Random,
    max_iterations: int = 50,
    threshold: float = CONVERGENCE_THRESHOLD,
) -> KMeansResult:
    """Lloyd iterations from uniformly random centroids in [0, 100].

    Empty clusters fall back to the neutral vector. Iteration stops when no
    centroid moves further than ``threshold`` or after ``max_iterations``.
    """
    dimensions = len(vectors[0])
    centroids = [[rng.uniform(0, 100) for _ in range(dimensions)] for _ in range(k)]
    clusters: list[list[int]] = [[] for _ in range(k)]
    iterations = 0
    converged = False

    while not converged and iterations < max_iterations:
        clusters = [[] for _ in range(k)]
        for index, vector in enumerate(vectors):
            nearest = min(range(k), key=lambda c: euclidean_distance(vector, centroids[c]))
            clusters[nearest].append(index)

        updated: list[list[float]] = []
        for members in clusters:
            if not members:
                updated.append(_neutral_vector(dimensions))
                continue
            updated.append([sum(vectors[m][d] for m in members) / len(members) for d in range(dimensions)])

        converged = all(
            euclidean_distance(old, new) <= threshold for old, new in zip(centroids, updated)
        )
        centroids = updated
        iterations += 1

    return KMeansResult(centroids=centroids, clusters=clusters, iterations=iterations, converged=converged)


def cluster_cohesion(members: Sequence[Sequence[float]], centroid: Sequence[float]) -> float:
    if not members:
        return 0.0
    average = sum(euclidean_distance(vector, centroid) for vector in members) / len(members)
    return max(0.0, 1 - average / 100)


def vector_to_attributes(vector: Sequence[float]) -> list[PreferredAttribute]:
    return [
        PreferredAttribute(
            attribute=attribute,
            preference_score=max(0.0, min(100.0, value)),
            confidence=CENTROID_CONFIDENCE,
            average_rating=value / 20,
            rating_count=0,
        )
        for attribute, value in zip(ATTRIBUTE_ORDER, vector)
    ]


def most_frequent(items: Iterable[str], limit: int) -> list[str]:
    return [item for item, _ in Counter(items).most_common(limit)]


def cluster_characteristics(profiles: Sequence[TasteProfileSnapshot]) -> ClusterCharacteristics:
    flavors = [f.flavor_note for p in profiles for f in p.preferred_flavor_profiles]
    origins = [o.country for p in profiles for o in p.preferred_characteristics.origins]
    roasts = [r.level for p in profiles for r in p.preferred_characteristics.roast_levels]
    return ClusterCharacteristics(
        dominant_flavors=most_frequent(flavors, 5),
        preferred_origins=most_frequent(origins, 5),
        roast_level_preferences=most_frequent(roasts, 3),
    )


def refine_attributes(
    own: Sequence[PreferredAttribute],
    neighbors: Sequence[tuple[TasteProfileSnapshot, float]],
) -> list[PreferredAttribute]:
    """Blend each attribute with affinity-weighted neighbor scores."""
    refined: list[PreferredAttribute] = []
    for entry in own:
        weighted_sum = entry.preference_score * OWN_PREFERENCE_WEIGHT
        total_weight = OWN_PREFERENCE_WEIGHT
        for neighbor, affinity in neighbors:
            theirs = neighbor.attribute(entry.attribute)
            if theirs is None:
                continue
            weight = affinity * NEIGHBOR_PREFERENCE_WEIGHT
            weighted_sum += theirs.preference_score * weight
            total_weight += weight
        score = weighted_sum / total_weight if total_weight > 0 else entry.preference_score
        refined.append(
            entry.model_copy(
                update={
                    "preference_score": float(round_half_up(score)),
                    "confidence": min(100.0, entry.confidence + 10),
                }
            )
        )
    return refined


def refine_flavors(
    own: Sequence[PreferredFlavorProfile],
    neighbors: Sequence[tuple[TasteProfileSnapshot, float]],
) -> list[PreferredFlavorProfile]:
    """Discount the user's own flavors, then boost or introduce neighbor flavors."""
    blended: dict[str, dict[str, float]] = {
        flavor.flavor_note: {
            "score": flavor.preference_score * OWN_PREFERENCE_WEIGHT,
            "frequency": float(flavor.frequency),
            "rating": flavor.average_rating,
        }
        for flavor in own
    }
    for neighbor, affinity in neighbors:
        weight = affinity * NEIGHBOR_PREFERENCE_WEIGHT
        for flavor in neighbor.preferred_flavor_profiles:
            existing = blended.get(flavor.flavor_note)
            if existing is not None:
                existing["score"] += flavor.preference_score * weight
                existing["frequency"] += flavor.frequency * weight
                existing["rating"] = (existing["rating"] + flavor.average_rating) / 2
            elif flavor.preference_score > NEW_FLAVOR_MIN_SCORE:
                blended[flavor.flavor_note] = {
                    "score": flavor.preference_score * weight,
                    "frequency": flavor.frequency * weight,
                    "rating": flavor.average_rating,
                }

    refined = [
        PreferredFlavorProfile(
            flavor_note=note,
            # Summed boosts can pass 100; keep the score on the profile scale.
            preference_score=float(min(100, round_half_up(data["score"]))),
            frequency=round_half_up(data["frequency"]),
            average_rating=data["rating"],
        )
        for note, data in blended.items()
    ]
    refined = [flavor for flavor in refined if flavor.preference_score > REFINED_FLAVOR_MIN_SCORE]
    refined.sort(key=lambda flavor: flavor.preference_score, reverse=True)
    return refined[:REFINED_FLAVOR_LIMIT]
