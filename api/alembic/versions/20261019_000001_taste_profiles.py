"""Create catalog mirror, ratings, and taste profile tables.

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 00:00:01
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


roast_level_enum = postgresql.ENUM(
    "light",
    "medium-light",
    "medium",
    "medium-dark",
    "dark",
    "extra-dark",
    name="roast_level",
    create_type=False,
)

processing_method_enum = postgresql.ENUM(
    "washed",
    "natural",
    "honey",
    "wet-hulled",
    "anaerobic",
    "other",
    name="processing_method",
    create_type=False,
)

SUB_SCORES = (
    "acidity",
    "body",
    "sweetness",
    "aroma",
    "flavor",
    "aftertaste",
    "balance",
    "uniformity",
    "clean_cup",
)


def upgrade() -> None:
    """Create coffees, ratings, and taste_profiles."""
    roast_level_enum.create(op.get_bind(), checkfirst=True)
    processing_method_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "coffees",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("origin_country", sa.String(length=120), nullable=True),
        sa.Column("origin_region", sa.String(length=120), nullable=True),
        sa.Column("roast_level", roast_level_enum, nullable=True),
        sa.Column("processing_method", processing_method_enum, nullable=True),
        sa.Column("flavor_notes", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_coffees"),
    )
    op.create_index("ix_coffees_origin_country", "coffees", ["origin_country"])

    op.create_table(
        "ratings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("coffee_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("overall", sa.SmallInteger(), nullable=False),
        *(sa.Column(name, sa.SmallInteger(), nullable=True) for name in SUB_SCORES),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("overall >= 1 AND overall <= 5", name="ck_ratings_overall_range"),
        sa.PrimaryKeyConstraint("id", name="pk_ratings"),
    )
    op.create_index("ix_ratings_user_id", "ratings", ["user_id"])
    op.create_index("ix_ratings_coffee_id", "ratings", ["coffee_id"])
    op.create_index("ix_ratings_created_at", "ratings", ["created_at"])

    op.create_table(
        "taste_profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "preferred_attributes",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "preferred_flavor_profiles",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "preferred_characteristics",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("rating_patterns", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb")),
        sa.Column("total_ratings", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_rating_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("profile_confidence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_calculated", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_taste_profiles"),
        sa.UniqueConstraint("user_id", name="uq_taste_profile_user"),
    )
    op.create_index("ix_taste_profiles_user_id", "taste_profiles", ["user_id"])
    op.create_index("ix_taste_profiles_profile_confidence", "taste_profiles", ["profile_confidence"])
    op.create_index("ix_taste_profiles_last_calculated", "taste_profiles", ["last_calculated"])


def downgrade() -> None:
    """Drop profile, rating, and catalog tables."""
    op.drop_index("ix_taste_profiles_last_calculated", table_name="taste_profiles")
    op.drop_index("ix_taste_profiles_profile_confidence", table_name="taste_profiles")
    op.drop_index("ix_taste_profiles_user_id", table_name="taste_profiles")
    op.drop_table("taste_profiles")
    op.drop_index("ix_ratings_created_at", table_name="ratings")
    op.drop_index("ix_ratings_coffee_id", table_name="ratings")
    op.drop_index("ix_ratings_user_id", table_name="ratings")
    op.drop_table("ratings")
    op.drop_index("ix_coffees_origin_country", table_name="coffees")
    op.drop_table("coffees")
    processing_method_enum.drop(op.get_bind(), checkfirst=True)
    roast_level_enum.drop(op.get_bind(), checkfirst=True)
