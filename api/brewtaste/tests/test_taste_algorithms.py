from __future__ import annotations

import random
import uuid

import pytest

from brewtaste.models.catalog import ATTRIBUTE_ORDER, CoffeeAttribute, ProcessingMethod, RoastLevel
from brewtaste.schema.taste_profile import (
    OriginPreference,
    PreferredAttribute,
    PreferredCharacteristics,
    PreferredFlavorProfile,
    ProcessingMethodPreference,
    RoastLevelPreference,
    TasteProfileSnapshot,
)
from brewtaste.services import taste_algorithms
from brewtaste.tests.utils import make_coffee


def _profile(
    scores: dict[CoffeeAttribute, float] | None = None,
    *,
    flavors: list[tuple[str, float]] | None = None,
    roasts: list[str] | None = None,
    origins: list[str] | None = None,
    confidence: int = 100,
) -> TasteProfileSnapshot:
    scores = scores or {}
    return TasteProfileSnapshot(
        user_id=uuid.uuid4(),
        preferred_attributes=[
            PreferredAttribute(attribute=attribute, preference_score=scores.get(attribute, 50), confidence=60)
            for attribute in ATTRIBUTE_ORDER
        ],
        preferred_flavor_profiles=[
            PreferredFlavorProfile(flavor_note=note, frequency=2, preference_score=score, average_rating=4)
            for note, score in (flavors or [])
        ],
        preferred_characteristics=PreferredCharacteristics(
            roast_levels=[RoastLevelPreference(level=level, frequency=1, average_rating=4) for level in roasts or []],
            origins=[OriginPreference(country=country, frequency=1, average_rating=5) for country in origins or []],
        ),
        profile_confidence=confidence,
        total_ratings=20,
    )


def test_cosine_and_jaccard_edge_cases():
    assert taste_algorithms.cosine_similarity([1, 2], [1, 2, 3]) == 0
    assert taste_algorithms.cosine_similarity([0, 0], [1, 1]) == 0
    assert taste_algorithms.cosine_similarity([3, 4], [6, 8]) == pytest.approx(1.0)
    assert taste_algorithms.jaccard_similarity(set(), set()) == 0
    assert taste_algorithms.jaccard_similarity({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)


def test_user_affinity_is_symmetric_and_bounded():
    first = _profile(
        {CoffeeAttribute.ACIDITY: 90, CoffeeAttribute.BODY: 20},
        flavors=[("citrus", 80), ("floral", 60)],
        roasts=["light"],
        origins=["Ethiopia", "Kenya"],
        confidence=80,
    )
    second = _profile(
        {CoffeeAttribute.ACIDITY: 30, CoffeeAttribute.BODY: 85},
        flavors=[("chocolate", 70), ("citrus", 40)],
        roasts=["dark", "light"],
        origins=["Brazil"],
        confidence=55,
    )

    forward = taste_algorithms.user_affinity(first, second)
    backward = taste_algorithms.user_affinity(second, first)

    assert forward == pytest.approx(backward)
    assert 0 <= forward <= 1


def test_user_affinity_scales_with_weaker_confidence():
    template = {"flavors": [("citrus", 80)], "roasts": ["light"], "origins": ["Kenya"]}
    confident = _profile(confidence=100, **template)
    unsure = _profile(confidence=25, **template)

    assert taste_algorithms.user_affinity(confident, _profile(confidence=100, **template)) == pytest.approx(1.0)
    assert taste_algorithms.user_affinity(confident, unsure) == pytest.approx(0.25)


def test_empty_flavor_list_contributes_nothing():
    with_flavors = _profile(flavors=[("citrus", 80)])
    without_flavors = _profile()

    assert taste_algorithms.flavor_affinity(
        with_flavors.preferred_flavor_profiles, without_flavors.preferred_flavor_profiles
    ) == 0
    # Attribute vectors match exactly; characteristics are empty on both sides.
    assert taste_algorithms.user_affinity(with_flavors, without_flavors) == pytest.approx(0.40)


def test_characteristic_affinity_only_averages_populated_sections():
    first = PreferredCharacteristics(
        roast_levels=[RoastLevelPreference(level="light", frequency=1, average_rating=4)],
        processing_methods=[ProcessingMethodPreference(method="washed", frequency=1, average_rating=4)],
    )
    second = PreferredCharacteristics(
        roast_levels=[
            RoastLevelPreference(level="light", frequency=1, average_rating=4),
            RoastLevelPreference(level="dark", frequency=1, average_rating=2),
        ],
    )

    assert taste_algorithms.characteristic_affinity(first, second) == pytest.approx(0.5)
    assert taste_algorithms.characteristic_affinity(PreferredCharacteristics(), second) == 0


def test_coffee_match_scores_each_factor():
    profile = _profile(flavors=[("citrus", 80), ("floral", 60)], roasts=["light"], origins=["Ethiopia"])
    coffee = make_coffee(
        origin_country="Ethiopia",
        roast_level=RoastLevel.LIGHT,
        processing_method=ProcessingMethod.NATURAL,
        flavor_notes=["citrus", "floral", "berry"],
    )

    match = taste_algorithms.coffee_match(profile, coffee)

    # roast 0.30 * 4/5 + origin 0.25 * 5/5 + flavor 0.35 * 0.7
    assert match.score == pytest.approx(0.24 + 0.25 + 0.245)
    assert match.matched == 3
    assert "Matching flavors: citrus, floral" in match.factors


def test_coffee_match_without_overlap_is_zero():
    profile = _profile(roasts=["dark"])
    coffee = make_coffee(roast_level=RoastLevel.LIGHT, flavor_notes=["citrus"])

    match = taste_algorithms.coffee_match(profile, coffee)

    assert match.score == 0
    assert match.factors == []


def test_shared_attributes_use_strict_tolerance():
    first = _profile({CoffeeAttribute.ACIDITY: 80, CoffeeAttribute.BODY: 80})
    second = _profile({CoffeeAttribute.ACIDITY: 61, CoffeeAttribute.BODY: 60})

    shared = taste_algorithms.shared_attributes(first, second)

    assert CoffeeAttribute.ACIDITY in shared
    assert CoffeeAttribute.BODY not in shared
    assert CoffeeAttribute.SWEETNESS in shared


def test_kmeans_is_reproducible_and_bounded():
    rng = random.Random(7)
    vectors = [[rng.uniform(0, 100) for _ in range(9)] for _ in range(10)]

    first = taste_algorithms.kmeans(vectors, 5, rng=random.Random(42), max_iterations=50)
    second = taste_algorithms.kmeans(vectors, 5, rng=random.Random(42), max_iterations=50)

    assert first.clusters == second.clusters
    assert first.iterations <= 50
    assert sorted(member for cluster in first.clusters for member in cluster) == list(range(10))


def test_kmeans_respects_iteration_cap():
    vectors = [[float(index * 10)] * 9 for index in range(10)]

    outcome = taste_algorithms.kmeans(vectors, 3, rng=random.Random(1), max_iterations=1)

    assert outcome.iterations == 1


def test_kmeans_separates_obvious_groups():
    low = [[10.0] * 9, [12.0] * 9, [11.0] * 9]
    high = [[90.0] * 9, [88.0] * 9, [91.0] * 9]

    outcome = taste_algorithms.kmeans(low + high, 2, rng=random.Random(3))
    groups = [set(cluster) for cluster in outcome.clusters if cluster]

    assert {0, 1, 2} in groups
    assert {3, 4, 5} in groups
    assert outcome.converged


def test_cluster_cohesion_and_centroid_attributes():
    centroid = [50.0] * 9
    assert taste_algorithms.cluster_cohesion([centroid], centroid) == pytest.approx(1.0)
    assert taste_algorithms.cluster_cohesion([[0.0] * 9], [100.0] * 9) == 0
    assert taste_algorithms.cluster_cohesion([], centroid) == 0

    attributes = taste_algorithms.vector_to_attributes([60.0] * 9)
    assert {entry.confidence for entry in attributes} == {70}
    assert attributes[0].average_rating == pytest.approx(3.0)
    assert attributes[0].rating_count == 0


def test_refine_attributes_blends_toward_neighbors():
    own = _profile({CoffeeAttribute.ACIDITY: 40})
    neighbor = _profile({CoffeeAttribute.ACIDITY: 90})

    refined = taste_algorithms.refine_attributes(own.preferred_attributes, [(neighbor, 0.5)])
    acidity = refined[0]

    # (0.6 * 40 + 0.2 * 90) / 0.8 = 52.5, rounded half up
    assert acidity.preference_score == 53
    assert acidity.confidence == 70


def test_refine_flavors_introduces_only_strong_neighbor_notes():
    own = _profile(flavors=[("citrus", 80), ("earthy", 45)])
    neighbor = _profile(flavors=[("citrus", 90), ("jasmine", 95), ("smoky", 60)])

    refined = taste_algorithms.refine_flavors(own.preferred_flavor_profiles, [(neighbor, 1.0)])
    by_note = {flavor.flavor_note: flavor for flavor in refined}

    # citrus: 80 * 0.6 + 90 * 0.4
    assert by_note["citrus"].preference_score == 84
    # earthy drops to 27 and falls under the floor
    assert "earthy" not in by_note
    assert "smoky" not in by_note
    assert by_note["jasmine"].preference_score == 38
    assert [flavor.flavor_note for flavor in refined] == ["citrus", "jasmine"]


def test_refined_flavor_scores_are_capped():
    own = _profile(flavors=[("citrus", 100)])
    neighbors = [(_profile(flavors=[("citrus", 100)]), 1.0) for _ in range(3)]

    refined = taste_algorithms.refine_flavors(own.preferred_flavor_profiles, neighbors)

    assert refined[0].preference_score == 100
