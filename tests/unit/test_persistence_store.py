import asyncio

import pytest

import stepchain.persistence as persistence
from stepchain.config import StepChainConfig
from stepchain.contracts import Principal
from stepchain.errors import PersistenceError
from stepchain.persistence import InMemoryStatusStore, SQLiteStatusStore, get_store

SERVICE = Principal.service()


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStatusStore()
    return SQLiteStatusStore(tmp_path / "status.db")


@pytest.mark.asyncio
async def test_session_commits_on_exit(store):
    async with store.session(SERVICE) as session:
        await session.ensure_path("/var/stepchain/instances")
        await session.save("/var/stepchain/instances/ABC", {"status": "Running"})
        assert session.has_changes

    async with store.session(SERVICE) as session:
        assert await session.get("/var/stepchain/instances/ABC") == {"status": "Running"}
        assert await session.get("/var/stepchain") == {}
        assert await session.list_children("/var/stepchain/instances") == [
            "/var/stepchain/instances/ABC"
        ]


@pytest.mark.asyncio
async def test_session_rolls_back_on_error(store):
    with pytest.raises(RuntimeError):
        async with store.session(SERVICE) as session:
            await session.save("/a/b", {"x": 1})
            raise RuntimeError("boom")

    async with store.session(SERVICE) as session:
        assert await session.get("/a/b") is None


@pytest.mark.asyncio
async def test_save_replaces_record(store):
    async with store.session(SERVICE) as session:
        await session.save("/a", {"x": 1, "y": 2})
    async with store.session(SERVICE) as session:
        await session.save("/a", {"x": 3})
    async with store.session(SERVICE) as session:
        assert await session.get("/a") == {"x": 3}


@pytest.mark.asyncio
async def test_ensure_existing_path_leaves_session_clean(store):
    async with store.session(SERVICE) as session:
        await session.ensure_path("/a/b")
    async with store.session(SERVICE) as session:
        await session.ensure_path("/a/b")
        assert not session.has_changes


@pytest.mark.asyncio
async def test_paths_are_normalized(store):
    async with store.session(SERVICE) as session:
        await session.save("a//b/", {"v": 1})
    async with store.session(SERVICE) as session:
        assert await session.get("/a/b") == {"v": 1}


@pytest.mark.asyncio
async def test_writes_record_principal(tmp_path):
    memory = InMemoryStatusStore()
    sqlite = SQLiteStatusStore(tmp_path / "status.db")
    for store in (memory, sqlite):
        async with store.session(SERVICE) as session:
            await session.save("/x", {})

    assert memory.modified_by["/x"] == "stepchain-service"
    assert await sqlite.modified_by("/x") == "stepchain-service"


@pytest.mark.asyncio
async def test_sqlite_reads_wait_for_commit_in_progress(tmp_path):
    store = SQLiteStatusStore(tmp_path / "status.db")
    async with store.session(SERVICE) as session:
        await session.save("/a/b", {"x": 1})

    async with store._lock:
        read = asyncio.create_task(store._read("/a/b"))
        children = asyncio.create_task(store._children("/a"))
        for _ in range(10):
            await asyncio.sleep(0)
        assert not read.done()
        assert not children.done()

    assert await read == {"x": 1}
    assert await children == ["/a/b"]


@pytest.mark.asyncio
async def test_commit_errors_become_persistence_errors():
    class Broken(InMemoryStatusStore):
        async def _write(self, records, principal):
            raise OSError("read-only")

    with pytest.raises(PersistenceError):
        async with Broken().session(SERVICE) as session:
            await session.save("/x", {})


def test_get_store_selects_backend(tmp_path, monkeypatch):
    monkeypatch.delenv("STEPCHAIN_DATABASE_URL", raising=False)
    monkeypatch.setattr(persistence, "_store_instance", None)

    assert isinstance(get_store(config=StepChainConfig()), InMemoryStatusStore)
    sqlite_store = get_store(f"sqlite://{tmp_path / 'x.db'}")
    assert isinstance(sqlite_store, SQLiteStatusStore)
    assert get_store() is sqlite_store

    with pytest.raises(ValueError):
        get_store("mongodb://localhost")
