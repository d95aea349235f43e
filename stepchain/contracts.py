"""Core data contracts shared by the orchestrator, engines and stores."""

from __future__ import annotations

import time
import traceback
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .engines import TaskEngine

# Step index used for failures raised before any step was executed.
PRE_EXECUTION_STEP = -1

STATUS_COMPLETED = "Completed"
STATUS_ABORTED = "Aborted"
STATUS_WAITING = "Please wait..."


def now_millis() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Principal(BaseModel):
    """Identity used for authorization when talking to the status store."""

    user_id: str
    is_service: bool = False

    @classmethod
    def service(cls, user_id: str = "stepchain-service") -> "Principal":
        return cls(user_id=user_id, is_service=True)


class Failure(BaseModel):
    """A recorded error with its originating context."""

    error: str
    error_type: str = "Exception"
    node_path: Optional[str] = None
    step_index: Optional[int] = None
    time: int = Field(default_factory=now_millis)
    stack_trace: Optional[str] = None

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        node_path: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> "Failure":
        return cls(
            error=str(exc) or exc.__class__.__name__,
            error_type=exc.__class__.__name__,
            node_path=node_path,
            step_index=step_index,
            stack_trace="".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            ),
        )

    def to_record(self) -> Dict[str, Any]:
        """Flat key/value form used by the status store."""
        return self.model_dump(exclude_none=True)


class StatusRecord(BaseModel):
    """Shared, mutable snapshot of one process instance."""

    name: str
    description: str = "No description"
    status: str = "Not started"
    current_step: Optional[str] = None
    progress: float = 0.0
    start_time: int = -1
    stop_time: int = -1
    is_running: bool = False
    requester: Optional[str] = None
    request_inputs: Dict[str, Any] = Field(default_factory=dict)
    reported_errors: List[Failure] = Field(default_factory=list)
    tasks_completed: int = 0

    @property
    def is_stopped(self) -> bool:
        return self.stop_time >= self.start_time >= 0

    def runtime(self, now: Optional[int] = None) -> int:
        """Elapsed milliseconds, measured up to now while still running."""
        if self.start_time < 0:
            return 0
        stop = self.stop_time if self.is_stopped else (now or now_millis())
        return stop - self.start_time


StepBuilder = Callable[["TaskEngine"], Any]


@dataclass
class StepDefinition:
    """One named step of a chain and the engine that runs it."""

    name: str
    engine: "TaskEngine"
    builder: StepBuilder
    critical: bool = False
