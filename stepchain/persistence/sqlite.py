"""SQLite implementation of the status store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..contracts import Principal
from ..errors import PersistenceError
from .repository import BaseStatusStore, Record, parent_path


class SQLiteStatusStore(BaseStatusStore):
    """Persist status records as JSON documents keyed by path."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = asyncio.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS nodes (
                path TEXT PRIMARY KEY,
                parent TEXT,
                record TEXT NOT NULL,
                modified_by TEXT,
                modified_at TEXT
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS nodes_parent ON nodes (parent)")
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _write_all(self, records: Dict[str, Record], principal: Principal) -> None:
        now = datetime.utcnow().isoformat()
        try:
            with self._conn:
                self._conn.executemany(
                    """
                    INSERT INTO nodes (path, parent, record, modified_by, modified_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(path) DO UPDATE SET
                        record = excluded.record,
                        modified_by = excluded.modified_by,
                        modified_at = excluded.modified_at
                    """,
                    [
                        (path, parent_path(path), json.dumps(record, default=str), principal.user_id, now)
                        for path, record in records.items()
                    ],
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"SQLite commit failed: {e}") from e

    # ------------------------------------------------------------------
    # Store primitives
    async def _read(self, path: str) -> Optional[Record]:
        async with self._lock:
            row = await asyncio.to_thread(
                self._fetchone, "SELECT record FROM nodes WHERE path = ?", path
            )
        if not row:
            return None
        return json.loads(row["record"])

    async def _children(self, path: str) -> List[str]:
        async with self._lock:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT path FROM nodes WHERE parent = ? ORDER BY path",
                path,
            )
        return [r["path"] for r in rows]

    async def _write(self, records: Dict[str, Record], principal: Principal) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write_all, records, principal)

    async def modified_by(self, path: str) -> Optional[str]:
        async with self._lock:
            row = await asyncio.to_thread(
                self._fetchone, "SELECT modified_by FROM nodes WHERE path = ?", path
            )
        return row["modified_by"] if row else None

    def close(self) -> None:
        self._conn.close()
