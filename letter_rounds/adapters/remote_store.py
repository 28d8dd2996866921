"""Remote Store Adapter: document store organized by environment.

Every environment exposes sub-collections (rounds, settings, preferences,
aiProfile, savedIdeas) plus its own root document. Any call may fail or
be slow; callers are expected to handle exceptions.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod

from sqlalchemy import select

from ..database import SessionFactory, session_scope
from ..models import StoredDocument

logger = logging.getLogger(__name__)

# Collection names
ENVIRONMENT = "environment"
ROUNDS = "rounds"
SETTINGS = "settings"
PREFERENCES = "preferences"
AI_PROFILE = "aiProfile"
SAVED_IDEAS = "savedIdeas"

# Document id of single-document collections (environment, settings, aiProfile)
CURRENT = "current"


class RemoteStore(ABC):
    """Asynchronous document store interface."""

    @abstractmethod
    async def get(self, environment_id: str, collection: str, doc_id: str) -> dict | None:
        """Return one document, or ``None`` if it does not exist."""

    @abstractmethod
    async def get_all(self, environment_id: str, collection: str) -> list[dict]:
        """Return every document of a collection (unordered)."""

    @abstractmethod
    async def set(self, environment_id: str, collection: str, doc_id: str, data: dict) -> None:
        """Insert or replace one document."""

    @abstractmethod
    async def batch_set(self, environment_id: str, collection: str, documents: dict[str, dict]) -> None:
        """Insert or replace several documents atomically (all or nothing)."""

    @abstractmethod
    async def delete(self, environment_id: str, collection: str, doc_id: str) -> bool:
        """Remove one document. Returns ``True`` if it existed."""


class SqlRemoteStore(RemoteStore):
    """Document store on a SQLAlchemy ``documents`` table."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _find(db, environment_id: str, collection: str, doc_id: str) -> StoredDocument | None:
        return db.execute(
            select(StoredDocument).where(
                StoredDocument.environment_id == environment_id,
                StoredDocument.collection == collection,
                StoredDocument.doc_id == doc_id,
            )
        ).scalar_one_or_none()

    @classmethod
    def _upsert(cls, db, environment_id: str, collection: str, doc_id: str, data: dict) -> None:
        row = cls._find(db, environment_id, collection, doc_id)
        if row is None:
            db.add(StoredDocument(
                environment_id=environment_id,
                collection=collection,
                doc_id=doc_id,
                data=data,
            ))
        else:
            # Assign a new object so the JSON column is flagged dirty
            row.data = copy.deepcopy(data)

    def _get_sync(self, environment_id: str, collection: str, doc_id: str) -> dict | None:
        with session_scope(self._session_factory) as db:
            row = self._find(db, environment_id, collection, doc_id)
            return copy.deepcopy(row.data) if row else None

    def _get_all_sync(self, environment_id: str, collection: str) -> list[dict]:
        with session_scope(self._session_factory) as db:
            rows = db.execute(
                select(StoredDocument).where(
                    StoredDocument.environment_id == environment_id,
                    StoredDocument.collection == collection,
                )
            ).scalars().all()
            return [copy.deepcopy(row.data) for row in rows]

    def _set_sync(self, environment_id: str, collection: str, doc_id: str, data: dict) -> None:
        with session_scope(self._session_factory) as db:
            self._upsert(db, environment_id, collection, doc_id, data)

    def _batch_set_sync(self, environment_id: str, collection: str, documents: dict[str, dict]) -> None:
        # One session == one transaction; any failure rolls back every document
        with session_scope(self._session_factory) as db:
            for doc_id, data in documents.items():
                self._upsert(db, environment_id, collection, doc_id, data)

    def _delete_sync(self, environment_id: str, collection: str, doc_id: str) -> bool:
        with session_scope(self._session_factory) as db:
            row = self._find(db, environment_id, collection, doc_id)
            if row is None:
                return False
            db.delete(row)
            return True

    async def get(self, environment_id: str, collection: str, doc_id: str) -> dict | None:
        return await asyncio.to_thread(self._get_sync, environment_id, collection, doc_id)

    async def get_all(self, environment_id: str, collection: str) -> list[dict]:
        return await asyncio.to_thread(self._get_all_sync, environment_id, collection)

    async def set(self, environment_id: str, collection: str, doc_id: str, data: dict) -> None:
        await asyncio.to_thread(self._set_sync, environment_id, collection, doc_id, data)

    async def batch_set(self, environment_id: str, collection: str, documents: dict[str, dict]) -> None:
        await asyncio.to_thread(self._batch_set_sync, environment_id, collection, documents)

    async def delete(self, environment_id: str, collection: str, doc_id: str) -> bool:
        return await asyncio.to_thread(self._delete_sync, environment_id, collection, doc_id)


class MemoryRemoteStore(RemoteStore):
    """In-process document store for tests and offline runs.

    Schema::

        {
            ("<environment_id>", "<collection>"): {"<doc_id>": {...document...}}
        }
    """

    def __init__(self) -> None:
        self.data: dict[tuple[str, str], dict[str, dict]] = {}

    def _collection(self, environment_id: str, collection: str) -> dict[str, dict]:
        return self.data.setdefault((environment_id, collection), {})

    async def get(self, environment_id: str, collection: str, doc_id: str) -> dict | None:
        return copy.deepcopy(self._collection(environment_id, collection).get(doc_id))

    async def get_all(self, environment_id: str, collection: str) -> list[dict]:
        return copy.deepcopy(list(self._collection(environment_id, collection).values()))

    async def set(self, environment_id: str, collection: str, doc_id: str, data: dict) -> None:
        self._collection(environment_id, collection)[doc_id] = copy.deepcopy(data)

    async def batch_set(self, environment_id: str, collection: str, documents: dict[str, dict]) -> None:
        staged = dict(self._collection(environment_id, collection))
        for doc_id, data in documents.items():
            staged[doc_id] = copy.deepcopy(data)
        self.data[(environment_id, collection)] = staged

    async def delete(self, environment_id: str, collection: str, doc_id: str) -> bool:
        return self._collection(environment_id, collection).pop(doc_id, None) is not None
