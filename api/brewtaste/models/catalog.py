"""Catalog and rating records supplied by the external coffee stores.

These tables are owned by the catalog/rating services; the engine only reads
them. They are mapped here so aggregation can join ratings to coffee metadata.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, DateTime, Enum, SmallInteger, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from brewtaste.db.base_class import Base
from brewtaste.utils.datetime import utcnow

JSON_COMPATIBLE = JSON().with_variant(JSONB, "postgresql")


class CoffeeAttribute(str, enum.Enum):
    """Sensory dimensions a rating can score on a 1-5 scale."""
    ACIDITY = "acidity"
    BODY = "body"
    SWEETNESS = "sweetness"
    AROMA = "aroma"
    FLAVOR = "flavor"
    AFTERTASTE = "aftertaste"
    BALANCE = "balance"
    UNIFORMITY = "uniformity"
    CLEAN_CUP = "clean_cup"


class RoastLevel(str, enum.Enum):
    """Roast levels recorded on catalog coffees."""
    LIGHT = "light"
    MEDIUM_LIGHT = "medium-light"
    MEDIUM = "medium"
    MEDIUM_DARK = "medium-dark"
    DARK = "dark"
    EXTRA_DARK = "extra-dark"


class ProcessingMethod(str, enum.Enum):
    """Post-harvest processing methods recorded on catalog coffees."""
    WASHED = "washed"
    NATURAL = "natural"
    HONEY = "honey"
    WET_HULLED = "wet-hulled"
    ANAEROBIC = "anaerobic"
    OTHER = "other"


class Coffee(Base):
    """Catalog coffee with the metadata aggregation joins against."""
    __tablename__ = "coffees"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    origin_country: Mapped[str | None] = mapped_column(String(120), index=True)
    origin_region: Mapped[str | None] = mapped_column(String(120))
    # Persist the enum values (lowercase, hyphenated) instead of member names
    roast_level: Mapped[RoastLevel | None] = mapped_column(
        Enum(RoastLevel, name="roast_level", values_callable=lambda enum_cls: [e.value for e in enum_cls])
    )
    processing_method: Mapped[ProcessingMethod | None] = mapped_column(
        Enum(
            ProcessingMethod,
            name="processing_method",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        )
    )
    flavor_notes: Mapped[list[str]] = mapped_column(JSON_COMPATIBLE, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Rating(Base):
    """A user's multi-dimensional rating of a catalog coffee."""
    __tablename__ = "ratings"
    __table_args__ = (
        CheckConstraint("overall >= 1 AND overall <= 5", name="overall_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    # No foreign key: the catalog lives in another store and may lose items.
    coffee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), index=True, nullable=False)
    overall: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    acidity: Mapped[int | None] = mapped_column(SmallInteger)
    body: Mapped[int | None] = mapped_column(SmallInteger)
    sweetness: Mapped[int | None] = mapped_column(SmallInteger)
    aroma: Mapped[int | None] = mapped_column(SmallInteger)
    flavor: Mapped[int | None] = mapped_column(SmallInteger)
    aftertaste: Mapped[int | None] = mapped_column(SmallInteger)
    balance: Mapped[int | None] = mapped_column(SmallInteger)
    uniformity: Mapped[int | None] = mapped_column(SmallInteger)
    clean_cup: Mapped[int | None] = mapped_column(SmallInteger)
    comment: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def score_for(self, attribute: CoffeeAttribute) -> int | None:
        """Return the sub-score recorded for ``attribute`` (None when unrated)."""
        match attribute:
            case CoffeeAttribute.ACIDITY:
                return self.acidity
            case CoffeeAttribute.BODY:
                return self.body
            case CoffeeAttribute.SWEETNESS:
                return self.sweetness
            case CoffeeAttribute.AROMA:
                return self.aroma
            case CoffeeAttribute.FLAVOR:
                return self.flavor
            case CoffeeAttribute.AFTERTASTE:
                return self.aftertaste
            case CoffeeAttribute.BALANCE:
                return self.balance
            case CoffeeAttribute.UNIFORMITY:
                return self.uniformity
            case CoffeeAttribute.CLEAN_CUP:
                return self.clean_cup
        raise ValueError(f"Unknown attribute {attribute!r}")


ATTRIBUTE_ORDER: tuple[CoffeeAttribute, ...] = tuple(CoffeeAttribute)

__all__ = [
    "ATTRIBUTE_ORDER",
    "Coffee",
    "CoffeeAttribute",
    "ProcessingMethod",
    "Rating",
    "RoastLevel",
]
