from brewtaste.models.catalog import Coffee, CoffeeAttribute, ProcessingMethod, Rating, RoastLevel
from brewtaste.models.taste_profile import TasteProfile

__all__ = [
    "Coffee",
    "CoffeeAttribute",
    "ProcessingMethod",
    "Rating",
    "RoastLevel",
    "TasteProfile",
]
"""SQLAlchemy ORM models for the Brewtaste engine."""
