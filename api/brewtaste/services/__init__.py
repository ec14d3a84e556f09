from . import (
    rating_source,
    similarity_service,
    taste_algorithms,
    taste_profile_service,
    update_scheduler,
)

__all__ = [
    "rating_source",
    "similarity_service",
    "taste_algorithms",
    "taste_profile_service",
    "update_scheduler",
]
"""Service-layer helpers for API operations."""
