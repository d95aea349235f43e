"""Synchronous task engine for testing."""

from __future__ import annotations

import inspect
from collections import deque
from typing import Deque, Optional, Tuple

from .base import TaskEngine, UnitOfWork


class ImmediateTaskEngine(TaskEngine):
    """Runs every unit inline, on the thread that submitted it.

    Units submitted from inside a running unit are queued and drained before
    the outer ``submit`` returns, so completion callbacks fire exactly once
    after the whole batch. Coroutine functions are not supported.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._pending: Deque[Tuple[UnitOfWork, Optional[str]]] = deque()
        self._draining = False

    def submit(self, unit: UnitOfWork, path: Optional[str] = None) -> None:
        if inspect.iscoroutinefunction(unit):
            raise TypeError("ImmediateTaskEngine cannot run coroutine functions")
        self._mark_added()
        self._pending.append((unit, path))
        if self._draining:
            return
        self._draining = True
        try:
            while self._pending:
                next_unit, next_path = self._pending.popleft()
                try:
                    next_unit()
                except Exception as exc:
                    self._mark_done(next_path, exc)
                else:
                    self._mark_done(next_path, None)
        finally:
            self._draining = False
