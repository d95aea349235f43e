"""Stepchain: step-chain orchestration over asynchronous task engines."""

from .contracts import Failure, Principal, StatusRecord, StepDefinition
from .definition import ProcessDefinition
from .engines import TaskEngine, TaskEngineFactory, get_engine_factory
from .manager import ProcessManager
from .persistence import get_store
from .process import ProcessInstance, ProcessState, StepEvent, StepEventKind
from .statistics import STATISTICS_SCHEMA, StatisticsSnapshot

__version__ = "0.1.0"
__all__ = [
    "Failure",
    "Principal",
    "ProcessDefinition",
    "ProcessInstance",
    "ProcessManager",
    "ProcessState",
    "STATISTICS_SCHEMA",
    "StatisticsSnapshot",
    "StatusRecord",
    "StepDefinition",
    "StepEvent",
    "StepEventKind",
    "TaskEngine",
    "TaskEngineFactory",
    "get_engine_factory",
    "get_store",
]
