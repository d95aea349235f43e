"""Persistence layer for stepchain process status."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StepChainConfig, load_config
from .inmemory import InMemoryStatusStore
from .repository import BaseStatusStore, StatusStore, StoreSession, normalize_path
from .sqlite import SQLiteStatusStore

_store_instance: StatusStore | None = None


def get_store(
    database_url: Optional[str] = None, config: Optional[StepChainConfig] = None
) -> StatusStore:
    """Factory function to obtain a status store.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``STEPCHAIN_DATABASE_URL``, or from
    loaded configuration. When no database is configured, an in-memory store
    is returned.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("STEPCHAIN_DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _store_instance = InMemoryStatusStore()
        return _store_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _store_instance = SQLiteStatusStore(path)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _store_instance


__all__ = [
    "BaseStatusStore",
    "InMemoryStatusStore",
    "SQLiteStatusStore",
    "StatusStore",
    "StoreSession",
    "get_store",
    "normalize_path",
]
