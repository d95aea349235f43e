
import pytest

from fixtures.chains import ChainDefinition, StepPlan, make_instance
from stepchain.contracts import Principal
from stepchain.statistics import (
    STATISTICS_SCHEMA,
    StatisticsSnapshot,
    build_statistics_table,
)


def test_schema_columns_and_key():
    assert STATISTICS_SCHEMA.column_names == (
        "_id",
        "_taskName",
        "started",
        "completed",
        "successful",
        "errors",
        "runtime",
        "pct_complete",
    )
    assert [c.type for c in STATISTICS_SCHEMA.columns] == [
        "string",
        "string",
        "int",
        "long",
        "int",
        "int",
        "long",
        "double",
    ]
    assert STATISTICS_SCHEMA.key == ("_id",)


def test_snapshot_before_run():
    instance, _ = make_instance(ChainDefinition())

    snapshot = instance.snapshot()

    assert snapshot.id == instance.id
    assert snapshot.task_name == "Test chain: unit test"
    assert snapshot.started == 0
    assert snapshot.completed == 0
    assert snapshot.runtime == 0
    assert snapshot.pct_complete == 0.0


@pytest.mark.asyncio
async def test_snapshot_counts_complete_steps_and_units():
    definition = ChainDefinition(
        plans=[
            StepPlan("a", outcomes=(True, False)),
            StepPlan("b", outcomes=(False,), critical=True),
            StepPlan("c"),
        ]
    )
    instance, _ = make_instance(definition)
    await instance.run(Principal(user_id="alice"))

    snapshot = instance.snapshot()

    assert snapshot.started == 3
    assert snapshot.completed == 2
    # builders count as units: a = 2 ok + 1 failed, b = 1 ok + 1 failed
    assert snapshot.successful == 3
    assert snapshot.errors == 2
    assert snapshot.runtime == instance.info.stop_time - instance.info.start_time
    assert snapshot.pct_complete == pytest.approx(2 / 3)


def test_snapshot_row_uses_schema_names():
    snapshot = StatisticsSnapshot(
        _id="X",
        _taskName="Job: test",
        started=2,
        completed=1,
        successful=4,
        errors=0,
        runtime=1500,
        pct_complete=0.5,
    )

    row = snapshot.to_row()

    assert tuple(row) == STATISTICS_SCHEMA.column_names
    with pytest.raises(Exception):
        snapshot.errors = 3


def test_snapshot_returns_none_when_row_is_invalid(caplog, monkeypatch):
    instance, _ = make_instance(ChainDefinition())
    monkeypatch.setattr(instance, "compute_progress", lambda: 2.0)

    assert instance.snapshot() is None
    assert "Error building statistics row" in caplog.text


def test_statistics_table_keyed_by_id():
    first, _ = make_instance(ChainDefinition())
    second, _ = make_instance(ChainDefinition(name="Other"))
    second.id = "0000000000000002"

    table = build_statistics_table([first, second])

    assert set(table) == {first.id, second.id}
    assert table[second.id]["_taskName"] == "Other: unit test"
