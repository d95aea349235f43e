"""Asyncio-backed task engine."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Optional, Set

from .base import TaskEngine, UnitOfWork

logger = logging.getLogger(__name__)


class AsyncTaskEngine(TaskEngine):
    """Run units of work as tasks on an asyncio loop.

    Coroutine functions are awaited on the loop; plain callables run in the
    default thread pool through ``asyncio.to_thread``. At most
    ``concurrency`` units run at once. ``submit`` may be called from a worker
    thread (for instance by a builder adding more work); the unit is then
    handed to the loop with ``call_soon_threadsafe``.
    """

    def __init__(
        self, *args, loop: Optional[asyncio.AbstractEventLoop] = None, **kwargs
    ) -> None:
        super().__init__(*args, **kwargs)
        self._loop = loop
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, unit: UnitOfWork, path: Optional[str] = None) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if self._loop is None:
            if running is None:
                raise RuntimeError(
                    f"Task engine '{self.label}' has no event loop to run on"
                )
            self._loop = running

        self._mark_added()
        if running is self._loop:
            self._spawn(unit, path)
        else:
            self._loop.call_soon_threadsafe(self._spawn, unit, path)

    def _spawn(self, unit: UnitOfWork, path: Optional[str]) -> None:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.concurrency)
        task = self._loop.create_task(self._run_unit(unit, path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_unit(self, unit: UnitOfWork, path: Optional[str]) -> None:
        async with self._semaphore:
            try:
                if inspect.iscoroutinefunction(unit):
                    await unit()
                else:
                    result = await asyncio.to_thread(unit)
                    if inspect.isawaitable(result):
                        await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.debug(f"Unit of work failed in '{self.label}': {exc}")
                self._mark_done(path, exc)
            else:
                self._mark_done(path, None)

    def close(self) -> None:
        super().close()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
