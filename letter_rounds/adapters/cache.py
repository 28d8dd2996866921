"""Cache Adapter: local, durable key-value persistence.

Values are JSON-compatible (dicts, lists, scalars). No network dependency
and no transactional guarantees beyond single-key writes.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any

from ..database import SessionFactory, session_scope
from ..models import CacheEntry

logger = logging.getLogger(__name__)


class CacheAdapter(ABC):
    """Asynchronous get/set by string key."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value for *key*, or ``None``."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store *value* under *key*, replacing any previous value."""


class SqlCache(CacheAdapter):
    """Cache backed by a local SQLite file, durable across restarts."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def _get_sync(self, key: str) -> Any | None:
        with session_scope(self._session_factory) as db:
            entry = db.get(CacheEntry, key)
            return copy.deepcopy(entry.value) if entry else None

    def _set_sync(self, key: str, value: Any) -> None:
        with session_scope(self._session_factory) as db:
            db.merge(CacheEntry(key=key, value=value))

    async def get(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._set_sync, key, value)


class MemoryCache(CacheAdapter):
    """In-process cache for tests and ephemeral runs."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        return copy.deepcopy(self.data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self.data[key] = copy.deepcopy(value)
