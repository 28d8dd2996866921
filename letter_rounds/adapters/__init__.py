"""Storage adapters for the local cache and the remote document store."""

from .cache import CacheAdapter, SqlCache, MemoryCache
from .remote_store import RemoteStore, SqlRemoteStore, MemoryRemoteStore

__all__ = [
    "CacheAdapter",
    "SqlCache",
    "MemoryCache",
    "RemoteStore",
    "SqlRemoteStore",
    "MemoryRemoteStore",
]
