"""Import all models here for Alembic autogenerate and SQLite bootstrap."""

from brewtaste.db.base_class import Base
from brewtaste.models import catalog, taste_profile  # noqa: F401

__all__ = ["Base"]
