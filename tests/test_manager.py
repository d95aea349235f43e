import pytest

from fixtures.chains import ChainDefinition, StepPlan, make_config
from stepchain.contracts import Principal
from stepchain.engines import ImmediateTaskEngine, TaskEngineFactory
from stepchain.errors import DeserializeError
from stepchain.manager import ProcessManager
from stepchain.persistence import InMemoryStatusStore, SQLiteStatusStore
from stepchain.utils.ids import sequential_id_generator


def _manager(store=None) -> ProcessManager:
    return ProcessManager(
        store=store or InMemoryStatusStore(),
        engine_factory=TaskEngineFactory(ImmediateTaskEngine),
        id_generator=sequential_id_generator(),
        config=make_config(),
    )


@pytest.mark.asyncio
async def test_start_process_runs_and_tracks_instance():
    manager = _manager()
    definition = ChainDefinition(plans=[StepPlan("a"), StepPlan("b")])

    instance = await manager.start_process(
        definition, Principal(user_id="bob"), {"root": "/content"}, description="nightly"
    )

    assert instance.info.status == "Completed"
    assert instance.info.request_inputs == {"root": "/content"}
    assert manager.get_instance(instance.id) is instance
    assert manager.active_instances() == []
    assert manager.purge_completed() == 1
    assert manager.list_instances() == []


@pytest.mark.asyncio
async def test_invalid_inputs_do_not_start_process():
    class Strict(ChainDefinition):
        def parse_inputs(self, params):
            raise DeserializeError("missing 'root'")

    manager = _manager()

    with pytest.raises(DeserializeError):
        await manager.start_process(Strict(plans=[StepPlan("a")]), Principal(user_id="bob"))

    (instance,) = manager.list_instances()
    assert instance.info.start_time == -1
    assert instance.steps == ()


def test_instances_get_distinct_ids():
    manager = _manager()

    ids = {manager.create_instance(ChainDefinition()).id for _ in range(3)}

    assert ids == {"0000000000000001", "0000000000000002", "0000000000000003"}


@pytest.mark.asyncio
async def test_statistics_table_covers_all_instances():
    manager = _manager()
    await manager.start_process(ChainDefinition(plans=[StepPlan("a")]), Principal(user_id="x"))
    manager.create_instance(ChainDefinition(name="Pending"))

    table = manager.statistics()

    assert list(table) == ["0000000000000001", "0000000000000002"]
    assert table["0000000000000001"]["pct_complete"] == 1.0
    assert table["0000000000000002"]["started"] == 0


@pytest.mark.asyncio
async def test_stored_status_and_failures_round_trip(tmp_path):
    manager = _manager(SQLiteStatusStore(tmp_path / "status.db"))
    definition = ChainDefinition(
        plans=[StepPlan("a", outcomes=(False, False)), StepPlan("b", outcomes=(False,))]
    )
    instance = await manager.start_process(definition, Principal(user_id="carol"))

    stored = await manager.read_status(instance.id)
    failures = await manager.read_failures(instance.id)

    assert stored.status == "Completed"
    assert stored.requester == "carol"
    assert stored.reported_errors == []
    assert [f["step"] for f in failures] == ["step1", "step1", "step2"]
    assert failures[0]["error"] == "a unit 0 failed"
    assert await manager.read_status("missing") is None
    assert await manager.read_failures("missing") == []
