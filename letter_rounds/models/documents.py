"""Storage tables for the remote document store and the local cache."""

from datetime import datetime
from typing import Any

from sqlalchemy import Integer, String, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, CacheBase, TimestampMixin


class StoredDocument(Base, TimestampMixin):
    """One document of the remote store.

    Documents are addressed by (environment_id, collection, doc_id), e.g.
    ("env-1", "rounds", "A") or ("env-1", "preferences", "alice@example.com").
    """

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("environment_id", "collection", "doc_id", name="uq_documents_address"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    environment_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    collection: Mapped[str] = mapped_column(String(64), nullable=False)
    doc_id: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StoredDocument(env='{self.environment_id}', "
            f"collection='{self.collection}', doc_id='{self.doc_id}')>"
        )


class CacheEntry(CacheBase):
    """Key-value row of the local cache."""

    __tablename__ = "cache_entries"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<CacheEntry(key='{self.key}')>"
