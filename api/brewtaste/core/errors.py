"""Exception types raised by the taste-profile engine."""

from __future__ import annotations

import uuid


class TasteProfileError(Exception):
    """Base class for engine failures surfaced to callers."""


class InvalidIdentifierError(TasteProfileError, ValueError):
    """Raised when a user or coffee identifier cannot be parsed."""

    def __init__(self, kind: str, value: object) -> None:
        super().__init__(f"Invalid {kind} id: {value!r}")
        self.kind = kind
        self.value = value


class ProfileStoreError(TasteProfileError):
    """Raised when the rating, catalog, or profile store fails a read or write."""

    def __init__(self, operation: str, user_id: uuid.UUID | None, cause: Exception) -> None:
        target = f" for user {user_id}" if user_id else ""
        super().__init__(f"{operation} failed{target}: {cause}")
        self.operation = operation
        self.user_id = user_id
        self.cause = cause


def parse_identifier(value: str | uuid.UUID, *, kind: str = "user") -> uuid.UUID:
    """Coerce a path/queue identifier into a UUID."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError, AttributeError) as exc:
        raise InvalidIdentifierError(kind, value) from exc
