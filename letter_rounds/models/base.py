"""SQLAlchemy base, document model base, and helper utilities."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for the remote document store tables."""

    pass


class CacheBase(DeclarativeBase):
    """Base class for the local cache tables (separate SQLite file)."""

    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class DocumentModel(BaseModel):
    """Base class for everything persisted as a document.

    Documents are stored with camelCase keys and without null placeholders,
    so a field that is unset is simply absent from the stored JSON.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the JSON-safe, camelCase document shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, data: dict[str, Any]):
        """Build the model from a stored document (camelCase or snake_case keys)."""
        return cls.model_validate(data)


def normalize_member_id(member_id: str) -> str:
    """Normalize a participant identifier (email) for matching.

    "Alice@Example.com " == "alice@example.com"
    """
    return member_id.strip().lower()
