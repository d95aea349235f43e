"""In-memory implementation of the status store."""

from __future__ import annotations

from typing import Dict, List, Optional

from ..contracts import Principal
from .repository import BaseStatusStore, Record, parent_path


class InMemoryStatusStore(BaseStatusStore):
    """Store status records in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. ``modified_by`` keeps the principal
    of the last commit that touched each path.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Record] = {}
        self.modified_by: Dict[str, str] = {}
        self.commit_count = 0
        self.sessions_opened = 0

    async def _acquire(self, principal: Principal) -> None:
        self.sessions_opened += 1

    async def _read(self, path: str) -> Optional[Record]:
        record = self._records.get(path)
        return dict(record) if record is not None else None

    async def _children(self, path: str) -> List[str]:
        return [p for p in self._records if parent_path(p) == path]

    async def _write(self, records: Dict[str, Record], principal: Principal) -> None:
        for path, record in records.items():
            self._records[path] = dict(record)
            self.modified_by[path] = principal.user_id
        self.commit_count += 1

    def paths(self) -> List[str]:
        return sorted(self._records)
