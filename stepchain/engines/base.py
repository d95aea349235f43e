"""Base task engine interface for stepchain steps."""

from __future__ import annotations

import abc
import logging
import threading
from typing import Any, Callable, List, Optional

from ..contracts import Failure, Principal

logger = logging.getLogger(__name__)

UnitOfWork = Callable[[], Any]
SuccessCallback = Callable[[], None]
FailureCallback = Callable[[List[Failure]], None]
FinishCallback = Callable[[], None]


class TaskEngine(metaclass=abc.ABCMeta):
    """Executes the units of work of one step and reports their outcome.

    Counters are updated from whichever thread finishes a unit, so they are
    guarded by a lock. Once every submitted unit has completed the engine
    fires ``on_failure`` callbacks (when any unit failed) or ``on_success``
    callbacks (when none did), followed by ``on_finish`` callbacks.
    """

    def __init__(
        self,
        label: str,
        principal: Optional[Principal] = None,
        concurrency: int = 1,
    ) -> None:
        self.label = label
        self.principal = principal
        self.concurrency = max(1, concurrency)
        self._lock = threading.Lock()
        self._added = 0
        self._completed = 0
        self._success = 0
        self._errors = 0
        self._failures: List[Failure] = []
        self._finished = False
        self._closed = False
        self._on_success: List[SuccessCallback] = []
        self._on_failure: List[FailureCallback] = []
        self._on_finish: List[FinishCallback] = []

    # ------------------------------------------------------------------
    # Counters
    @property
    def added_count(self) -> int:
        return self._added

    @property
    def completed_count(self) -> int:
        return self._completed

    @property
    def success_count(self) -> int:
        return self._success

    @property
    def error_count(self) -> int:
        return self._errors

    def is_complete(self) -> bool:
        with self._lock:
            return self._added > 0 and self._completed >= self._added

    def failures(self) -> List[Failure]:
        with self._lock:
            return list(self._failures)

    # ------------------------------------------------------------------
    # Callback registration
    def on_success(self, callback: SuccessCallback) -> None:
        self._on_success.append(callback)

    def on_failure(self, callback: FailureCallback) -> None:
        self._on_failure.append(callback)

    def on_finish(self, callback: FinishCallback) -> None:
        self._on_finish.append(callback)

    # ------------------------------------------------------------------
    @abc.abstractmethod
    def submit(self, unit: UnitOfWork, path: Optional[str] = None) -> None:
        """Queue ``unit`` for execution. ``path`` is attached to its failure."""
        raise NotImplementedError

    def close(self) -> None:
        """Drop callbacks and refuse further work."""
        self._closed = True
        self._on_success.clear()
        self._on_failure.clear()
        self._on_finish.clear()

    # ------------------------------------------------------------------
    # Helpers for implementations
    def _mark_added(self) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Task engine '{self.label}' is closed")
            self._added += 1
            self._finished = False

    def _mark_done(self, path: Optional[str], exc: Optional[BaseException]) -> None:
        with self._lock:
            if exc is None:
                self._success += 1
            else:
                self._errors += 1
                self._failures.append(Failure.from_exception(exc, node_path=path))
            self._completed += 1
            fire = not self._finished and self._completed >= self._added
            if fire:
                self._finished = True
            failures = list(self._failures)
        if fire:
            self._fire_callbacks(failures)

    def _fire_callbacks(self, failures: List[Failure]) -> None:
        if failures:
            for failure_cb in list(self._on_failure):
                self._invoke(failure_cb, failures)
        else:
            for success_cb in list(self._on_success):
                self._invoke(success_cb)
        for finish_cb in list(self._on_finish):
            self._invoke(finish_cb)

    def _invoke(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Completion callback failed for task engine '{self.label}'")
