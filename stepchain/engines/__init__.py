"""Task engine factory and initialization."""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Type

from ..config import StepChainConfig, load_config
from ..contracts import Principal
from .async_engine import AsyncTaskEngine
from .base import TaskEngine, UnitOfWork
from .inmemory import ImmediateTaskEngine

logger = logging.getLogger(__name__)

_ENGINE_BACKENDS = {
    "asyncio": AsyncTaskEngine,
    "immediate": ImmediateTaskEngine,
}


class TaskEngineFactory:
    """Creates one engine per step and releases them when a process halts."""

    def __init__(
        self,
        engine_cls: Type[TaskEngine] = AsyncTaskEngine,
        default_concurrency: int = 1,
    ) -> None:
        self.engine_cls = engine_cls
        self.default_concurrency = default_concurrency
        self._engines: List[TaskEngine] = []

    def create(
        self,
        label: str,
        principal: Optional[Principal] = None,
        concurrency: Optional[int] = None,
    ) -> TaskEngine:
        engine = self.engine_cls(
            label,
            principal=principal,
            concurrency=concurrency or self.default_concurrency,
        )
        self._engines.append(engine)
        logger.debug(f"Created task engine '{label}'")
        return engine

    def release(self, engine: TaskEngine) -> None:
        """Close ``engine``. Releasing an unknown engine is a no-op."""
        if engine not in self._engines:
            return
        self._engines.remove(engine)
        engine.close()
        logger.debug(f"Released task engine '{engine.label}'")

    def active_engines(self) -> List[TaskEngine]:
        return list(self._engines)


def get_engine_factory(
    backend: Optional[str] = None, config: Optional[StepChainConfig] = None
) -> TaskEngineFactory:
    """Factory function to get the configured task engine factory."""

    config = config or load_config()
    backend = (backend or os.getenv("STEPCHAIN_ENGINE") or "asyncio").lower()

    engine_cls = _ENGINE_BACKENDS.get(backend)
    if engine_cls is None:
        raise ValueError(f"Unsupported task engine backend: {backend}")
    return TaskEngineFactory(engine_cls, default_concurrency=config.engine.concurrency)


__all__ = [
    "AsyncTaskEngine",
    "ImmediateTaskEngine",
    "TaskEngine",
    "TaskEngineFactory",
    "UnitOfWork",
    "get_engine_factory",
]
