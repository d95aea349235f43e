"""Statistics rows for monitoring tools that poll running processes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .contracts import now_millis

if TYPE_CHECKING:
    from .process import ProcessInstance

logger = logging.getLogger(__name__)


class ColumnSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    description: str


class StatisticsSchema(BaseModel):
    """Describes the statistics table: its columns and its key."""

    model_config = ConfigDict(frozen=True)

    row_name: str
    row_description: str
    table_name: str
    table_description: str
    columns: Tuple[ColumnSpec, ...]
    key: Tuple[str, ...]

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.columns)


STATISTICS_SCHEMA = StatisticsSchema(
    row_name="Statistics Row",
    row_description="Single row of statistics",
    table_name="Statistics",
    table_description="Collected statistics",
    columns=(
        ColumnSpec(name="_id", type="string", description="ID"),
        ColumnSpec(name="_taskName", type="string", description="Name"),
        ColumnSpec(name="started", type="int", description="Started"),
        ColumnSpec(name="completed", type="long", description="Completed"),
        ColumnSpec(name="successful", type="int", description="Successful"),
        ColumnSpec(name="errors", type="int", description="Errors"),
        ColumnSpec(name="runtime", type="long", description="Runtime"),
        ColumnSpec(name="pct_complete", type="double", description="Percent complete"),
    ),
    key=("_id",),
)


class StatisticsSnapshot(BaseModel):
    """Immutable statistics row for one process instance.

    ``started`` is the total number of steps and ``completed`` the number of
    steps whose engine reports complete.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, strict=True)

    id: str = Field(alias="_id")
    task_name: str = Field(alias="_taskName")
    started: int = Field(ge=0)
    completed: int = Field(ge=0)
    successful: int = Field(ge=0)
    errors: int = Field(ge=0)
    runtime: int
    pct_complete: float = Field(ge=0.0, le=1.0)

    def to_row(self) -> Dict[str, object]:
        """Return the row keyed by schema column names."""
        return self.model_dump(by_alias=True)


def build_snapshot(instance: "ProcessInstance") -> Optional[StatisticsSnapshot]:
    """Build a statistics row, or return ``None`` if it cannot be built."""
    engines = [step.engine for step in instance.steps]
    info = instance.info
    pct_complete = 1.0 if instance.completed_normally else instance.compute_progress()
    try:
        return StatisticsSnapshot(
            _id=instance.id,
            _taskName=instance.name,
            started=len(engines),
            completed=sum(1 for e in engines if e.is_complete()),
            successful=sum(e.success_count for e in engines),
            errors=sum(e.error_count for e in engines),
            runtime=info.runtime(now_millis()),
            pct_complete=pct_complete,
        )
    except ValidationError:
        logger.exception(f"Error building statistics row for process {instance.id}")
        return None


def build_statistics_table(
    instances: Iterable["ProcessInstance"],
) -> Dict[str, Dict[str, object]]:
    """Rows for every instance, keyed by ``_id``. Rows that fail are skipped."""
    table: Dict[str, Dict[str, object]] = {}
    for instance in instances:
        snapshot = instance.snapshot()
        if snapshot is not None:
            table[snapshot.id] = snapshot.to_row()
    return table
