"""Persistence package: SQLAlchemy base, session helpers and the key-value store."""

from .base import Base  # noqa: F401
from .session import dispose_engines, get_session_maker  # noqa: F401
from . import models  # noqa: F401
from .store import JSONFileStore, KeyValueStore, KeyValueStoreError, SQLKeyValueStore, load_list  # noqa: F401

__all__ = [
    "Base",
    "JSONFileStore",
    "KeyValueStore",
    "KeyValueStoreError",
    "SQLKeyValueStore",
    "dispose_engines",
    "get_session_maker",
    "load_list",
    "models",
]
