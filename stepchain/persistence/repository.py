"""Status store abstraction for process status and failure records."""

from __future__ import annotations

import abc
import logging
import posixpath
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from ..contracts import Principal
from ..errors import PersistenceError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def normalize_path(path: str) -> str:
    """Return an absolute, slash separated path without a trailing slash."""
    if not path:
        raise ValueError("Store path must not be empty")
    normalized = posixpath.normpath("/" + path.strip("/"))
    return normalized


def parent_path(path: str) -> Optional[str]:
    path = normalize_path(path)
    if path == "/":
        return None
    return posixpath.dirname(path)


class StoreSession:
    """A scoped unit of work against a status store.

    Writes are buffered until :meth:`commit`. Reads see buffered writes.
    """

    def __init__(self, store: "BaseStatusStore", principal: Principal) -> None:
        self._store = store
        self.principal = principal
        self._pending: Dict[str, Record] = {}

    @property
    def has_changes(self) -> bool:
        return bool(self._pending)

    async def get(self, path: str) -> Optional[Record]:
        path = normalize_path(path)
        if path in self._pending:
            return dict(self._pending[path])
        return await self._store._read(path)

    async def ensure_path(self, path: str) -> Record:
        """Return the record at ``path``, creating it and its ancestors if absent."""
        path = normalize_path(path)
        missing: List[str] = []
        current: Optional[str] = path
        while current is not None and current != "/":
            if await self.get(current) is not None:
                break
            missing.append(current)
            current = parent_path(current)
        for created in reversed(missing):
            self._pending[created] = {}
        return await self.get(path) or {}

    async def save(self, path: str, record: Record) -> None:
        """Replace the record at ``path``; missing ancestors are created."""
        path = normalize_path(path)
        parent = parent_path(path)
        if parent is not None and parent != "/":
            await self.ensure_path(parent)
        self._pending[path] = dict(record)

    async def list_children(self, path: str) -> List[str]:
        path = normalize_path(path)
        children = set(await self._store._children(path))
        children.update(p for p in self._pending if parent_path(p) == path)
        return sorted(children)

    async def commit(self) -> None:
        if not self._pending:
            return
        pending, self._pending = self._pending, {}
        try:
            await self._store._write(pending, self.principal)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Commit failed: {e}") from e

    def rollback(self) -> None:
        self._pending.clear()


class StatusStore(Protocol):
    """Protocol for status persistence backends."""

    def session(self, principal: Principal) -> Any:
        """Async context manager yielding a :class:`StoreSession`."""


class BaseStatusStore(metaclass=abc.ABCMeta):
    """Implements scoped session handling on top of three storage primitives."""

    @asynccontextmanager
    async def session(self, principal: Principal) -> AsyncIterator[StoreSession]:
        """Acquire a session, commit it if dirty, and always release it."""
        await self._acquire(principal)
        session = StoreSession(self, principal)
        try:
            yield session
            if session.has_changes:
                await session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            await self._release(principal)

    async def _acquire(self, principal: Principal) -> None:
        """Hook for backends that open a connection per session."""

    async def _release(self, principal: Principal) -> None:
        """Hook for backends that close a connection per session."""

    @abc.abstractmethod
    async def _read(self, path: str) -> Optional[Record]:
        raise NotImplementedError

    @abc.abstractmethod
    async def _children(self, path: str) -> List[str]:
        raise NotImplementedError

    @abc.abstractmethod
    async def _write(self, records: Dict[str, Record], principal: Principal) -> None:
        raise NotImplementedError
