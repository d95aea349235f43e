"""Step-chain orchestration for a single process instance.

A :class:`ProcessInstance` owns an ordered list of steps, each backed by its
own task engine. Steps run strictly one after another: the instance submits
a step's builder to the step's engine and waits for the engine's completion
callbacks, which arrive as :class:`StepEvent` objects on an asyncio queue.
The event that ends a step decides, together with the step's critical flag,
whether the chain moves on or halts.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .config import StepChainConfig, load_config
from .contracts import (
    PRE_EXECUTION_STEP,
    STATUS_ABORTED,
    STATUS_COMPLETED,
    STATUS_WAITING,
    Failure,
    Principal,
    StatusRecord,
    StepBuilder,
    StepDefinition,
    now_millis,
)
from .definition import ProcessDefinition
from .engines import TaskEngine, TaskEngineFactory, get_engine_factory
from .errors import BUILD_ERRORS, ProcessStateError
from .persistence import StatusStore, StoreSession, get_store
from .statistics import StatisticsSnapshot, build_snapshot
from .utils.ids import IdGenerator, random_id_generator

logger = logging.getLogger(__name__)


class ProcessState(str, Enum):
    PENDING = "pending"
    BUILDING = "building"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class StepEventKind(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    FINISHED = "finished"


@dataclass(frozen=True)
class StepEvent:
    """Completion signal raised by the engine of step ``step_index``."""

    kind: StepEventKind
    step_index: int
    failures: Tuple[Failure, ...] = ()


class ProcessInstance:
    """Drives one run of a :class:`ProcessDefinition` through its steps."""

    def __init__(
        self,
        definition: ProcessDefinition,
        description: Optional[str] = None,
        *,
        store: Optional[StatusStore] = None,
        engine_factory: Optional[TaskEngineFactory] = None,
        id_generator: Optional[IdGenerator] = None,
        config: Optional[StepChainConfig] = None,
    ) -> None:
        self.definition = definition
        self.store = store or get_store(config=config)
        config = config or load_config()
        self.engine_factory = engine_factory or get_engine_factory(config=config)
        self.service_principal = Principal.service(config.service_principal)
        self.concurrency = config.engine.concurrency
        self.base_path = config.base_path.rstrip("/")

        self.id = (id_generator or random_id_generator())()
        self.path = f"{self.base_path}/{self.id}"
        self.info = StatusRecord(
            name=definition.name,
            description=description or "No description",
        )

        self._steps: List[StepDefinition] = []
        self._state = ProcessState.PENDING
        self._current_step: Optional[int] = None
        self._completed_normally = False
        self._halted = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._events: Optional[asyncio.Queue] = None
        # open service session while the definition stores its report
        self.report_session: Optional[StoreSession] = None

    # ------------------------------------------------------------------
    # Introspection
    @property
    def name(self) -> str:
        return f"{self.definition.name}: {self.info.description}"

    @property
    def steps(self) -> Tuple[StepDefinition, ...]:
        return tuple(self._steps)

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def current_step(self) -> Optional[int]:
        return self._current_step

    @property
    def completed_normally(self) -> bool:
        return self._completed_normally

    @property
    def is_halted(self) -> bool:
        return self._halted

    # ------------------------------------------------------------------
    # Construction phase
    def init(self, params: Dict[str, Any]) -> None:
        """Record request inputs and let the definition parse them."""
        self.info.request_inputs = dict(params)
        self.definition.parse_inputs(params)

    def define_action(
        self, name: str, builder: StepBuilder, principal: Optional[Principal] = None
    ) -> TaskEngine:
        """Register a non-critical step; its failures do not stop the chain."""
        return self._define(name, builder, principal, critical=False)

    def define_critical_action(
        self, name: str, builder: StepBuilder, principal: Optional[Principal] = None
    ) -> TaskEngine:
        """Register a critical step; a failure aborts all remaining steps."""
        return self._define(name, builder, principal, critical=True)

    def _define(
        self,
        name: str,
        builder: StepBuilder,
        principal: Optional[Principal],
        critical: bool,
    ) -> TaskEngine:
        if self._state not in (ProcessState.PENDING, ProcessState.BUILDING):
            raise ProcessStateError(
                f"Cannot add step '{name}' once execution has started",
                process_id=self.id,
            )
        engine = self.engine_factory.create(
            f"{self.name}: {name}", principal, self.concurrency
        )
        self._steps.append(
            StepDefinition(name=name, engine=engine, builder=builder, critical=critical)
        )
        return engine

    # ------------------------------------------------------------------
    # Execution
    async def run(self, principal: Principal) -> StatusRecord:
        """Build the chain and drive it until the instance halts."""
        if self._state is not ProcessState.PENDING:
            raise ProcessStateError(
                f"Process {self.id} has already been run", process_id=self.id
            )
        self._loop = asyncio.get_running_loop()
        self._events = asyncio.Queue()
        self.info.requester = principal.user_id
        self.info.start_time = now_millis()
        self._state = ProcessState.BUILDING

        try:
            await self.definition.build_process(self, principal)
        except BUILD_ERRORS as e:
            logger.error(f"Error starting managed process {self.name}: {e}")
            failure = Failure.from_exception(e, node_path=self.path)
            await self.record_errors(PRE_EXECUTION_STEP, [failure])
            await self.halt()
            return self.info

        logger.info(f"Process {self.id} started with {len(self._steps)} steps")
        self.info.is_running = True
        await self.advance(0)

        while not self._halted:
            event = await self._events.get()
            # None is the wake-up that halt() posts
            if event is not None:
                await self._handle(event)
        return self.info

    async def advance(self, step_index: int) -> None:
        """Make ``step_index`` the active step, or finish past the last one."""
        if step_index >= len(self._steps):
            self._completed_normally = True
            await self.halt()
            return

        step = self._steps[step_index]
        self._state = ProcessState.RUNNING
        self._current_step = step_index
        self.update_progress()
        self.info.current_step = f"Step {step_index + 1}: {step.name}"
        await self._as_service(self._persist_status)

        logger.info(
            f"Process {self.id} running step {step_index + 1}/{len(self._steps)}: "
            f"{step.name}{' (critical)' if step.critical else ''}"
        )
        engine = step.engine
        if step.critical:
            engine.on_success(
                lambda: self.notify(StepEvent(StepEventKind.SUCCEEDED, step_index))
            )
        else:
            engine.on_finish(
                lambda: self.notify(StepEvent(StepEventKind.FINISHED, step_index))
            )
        engine.on_failure(
            lambda failures: self.notify(
                StepEvent(StepEventKind.FAILED, step_index, tuple(failures))
            )
        )
        engine.submit(functools.partial(step.builder, engine), path=self.path)

    def notify(self, event: StepEvent) -> None:
        """Deliver ``event`` to the instance. Safe to call from any thread."""
        if self._loop is None or self._events is None:
            raise ProcessStateError(
                f"Process {self.id} is not running", process_id=self.id
            )
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._events.put_nowait(event)
        else:
            self._loop.call_soon_threadsafe(self._events.put_nowait, event)

    async def _handle(self, event: StepEvent) -> None:
        if self._halted or event.step_index != self._current_step:
            logger.debug(
                f"Process {self.id} ignoring {event.kind.value} event for step "
                f"{event.step_index + 1}"
            )
            return

        step = self._steps[event.step_index]
        if event.kind is StepEventKind.FAILED:
            await self.record_errors(event.step_index, list(event.failures))
            if step.critical:
                logger.warning(
                    f"Critical step '{step.name}' of process {self.id} failed, aborting"
                )
                await self.halt()
        elif event.kind is StepEventKind.SUCCEEDED and step.critical:
            await self.advance(event.step_index + 1)
        elif event.kind is StepEventKind.FINISHED and not step.critical:
            await self.advance(event.step_index + 1)

    async def halt(self) -> None:
        """Finalize the instance. Only the first call has any effect."""
        if self._halted:
            logger.warning(f"Process {self.id} already halted")
            return
        self._halted = True
        if self._events is not None:
            self._events.put_nowait(None)

        self.info.stop_time = max(now_millis(), self.info.start_time)
        self.info.is_running = False
        if self._completed_normally:
            self._state = ProcessState.COMPLETED
            self.info.status = STATUS_COMPLETED
            self.info.progress = 1.0
        else:
            self._state = ProcessState.ABORTED
            self.info.status = STATUS_ABORTED
        logger.info(
            f"Process {self.id} {self.info.status.lower()} after {self.info.runtime()} ms "
            f"with {len(self.info.reported_errors)} errors"
        )

        await self._as_service(self._persist_final)

        for step in self._steps:
            self.engine_factory.release(step.engine)

    # ------------------------------------------------------------------
    # Progress and failures
    def compute_progress(self) -> float:
        """Equal-weighted completion across all steps, in [0, 1]."""
        if not self._steps:
            return 0.0
        done = sum(
            step.engine.completed_count / step.engine.added_count
            for step in self._steps
            if step.engine.added_count > 0
        )
        return min(1.0, done / len(self._steps))

    def update_progress(self) -> float:
        progress = self.compute_progress()
        self.info.progress = progress
        self.info.status = next(
            (s.name for s in self._steps if not s.engine.is_complete()), STATUS_WAITING
        )
        self.info.tasks_completed = sum(s.engine.completed_count for s in self._steps)
        for step in self._steps:
            self._append_errors(step.engine.failures())
        return progress

    def _append_errors(self, failures: List[Failure]) -> int:
        known = {id(f) for f in self.info.reported_errors}
        added = 0
        for failure in failures:
            if id(failure) not in known:
                self.info.reported_errors.append(failure)
                known.add(id(failure))
                added += 1
        return added

    async def record_errors(
        self,
        step_index: int,
        failures: List[Failure],
        principal: Optional[Principal] = None,
    ) -> None:
        """Log ``failures`` in memory and persist them under the step's folder."""
        if not failures:
            return
        for failure in failures:
            if failure.step_index is None:
                failure.step_index = step_index
        self._append_errors(failures)

        folder = f"{self.path}/failures/step{step_index + 1}"

        async def _store(session: StoreSession) -> None:
            await session.ensure_path(folder)
            offset = len(await session.list_children(folder))
            for i, failure in enumerate(failures):
                await session.save(f"{folder}/err{offset + i}", failure.to_record())

        await self._as_service(_store, principal)

    # ------------------------------------------------------------------
    # Persistence glue
    async def _as_service(
        self,
        action: Callable[[StoreSession], Awaitable[None]],
        principal: Optional[Principal] = None,
    ) -> None:
        try:
            async with self.store.session(principal or self.service_principal) as session:
                await action(session)
        except Exception:
            logger.exception(f"Error while persisting state of process {self.id}")

    async def _persist_status(self, session: StoreSession) -> None:
        await session.ensure_path(self.base_path)
        record = self.info.model_dump(exclude={"reported_errors"})
        record.update(
            id=self.id,
            title=self.name,
            state=self._state.value,
            error_count=len(self.info.reported_errors),
        )
        await session.save(self.path, record)

    async def _persist_final(self, session: StoreSession) -> None:
        await self._persist_status(session)
        self.report_session = session
        try:
            await self.definition.store_report(self, session.principal)
        except Exception:
            logger.exception(f"Unable to store report for process {self.id}")
        finally:
            self.report_session = None

    # ------------------------------------------------------------------
    def snapshot(self) -> Optional[StatisticsSnapshot]:
        return build_snapshot(self)
