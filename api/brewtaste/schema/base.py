"""Shared schema base classes for engine payloads and API responses."""

from pydantic import BaseModel


class ORMModel(BaseModel):
    """Base model that reads attributes straight off SQLAlchemy rows."""

    model_config = {"from_attributes": True}
