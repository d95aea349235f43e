"""Task engine tests."""

import asyncio
import threading

import pytest

from stepchain.engines import (
    AsyncTaskEngine,
    ImmediateTaskEngine,
    TaskEngineFactory,
    get_engine_factory,
)
from stepchain.config import StepChainConfig


def _boom():
    raise ValueError("bad node")


def test_immediate_engine_reports_success():
    engine = ImmediateTaskEngine("test")
    events = []
    engine.on_success(lambda: events.append("success"))
    engine.on_failure(lambda failures: events.append("failure"))
    engine.on_finish(lambda: events.append("finish"))

    engine.submit(lambda: None)

    assert events == ["success", "finish"]
    assert engine.is_complete()
    assert (engine.added_count, engine.completed_count) == (1, 1)
    assert (engine.success_count, engine.error_count) == (1, 0)


def test_immediate_engine_reports_failures_once_after_batch():
    engine = ImmediateTaskEngine("test")
    seen = []
    engine.on_failure(lambda failures: seen.append([f.error for f in failures]))

    def build():
        engine.submit(lambda: None)
        engine.submit(_boom, path="/content/a")

    engine.submit(build)

    assert seen == [["bad node"]]
    assert engine.error_count == 1
    assert engine.success_count == 2
    failure = engine.failures()[0]
    assert failure.node_path == "/content/a"
    assert failure.error_type == "ValueError"


def test_engine_without_work_is_not_complete():
    assert not ImmediateTaskEngine("idle").is_complete()


def test_closed_engine_rejects_work():
    engine = ImmediateTaskEngine("test")
    engine.close()

    with pytest.raises(RuntimeError):
        engine.submit(lambda: None)


def test_callback_errors_do_not_stop_other_callbacks():
    engine = ImmediateTaskEngine("test")
    calls = []

    def bad():
        raise RuntimeError("callback broke")

    engine.on_success(bad)
    engine.on_finish(lambda: calls.append("finish"))
    engine.submit(lambda: None)

    assert calls == ["finish"]


@pytest.mark.asyncio
async def test_async_engine_runs_coroutines_and_threads():
    engine = AsyncTaskEngine("test", concurrency=2)
    done = asyncio.Event()
    threads = set()
    engine.on_finish(done.set)

    async def coro():
        await asyncio.sleep(0)

    def blocking():
        threads.add(threading.get_ident())

    engine.submit(coro)
    engine.submit(blocking)
    await asyncio.wait_for(done.wait(), 2)

    assert engine.is_complete()
    assert engine.success_count == 2
    assert threading.get_ident() not in threads


@pytest.mark.asyncio
async def test_async_engine_accepts_work_from_worker_threads():
    engine = AsyncTaskEngine("test")
    done = asyncio.Event()
    failures = []
    engine.on_failure(failures.extend)
    engine.on_finish(done.set)

    def build():
        for _ in range(3):
            engine.submit(lambda: None)
        engine.submit(_boom, path="/content/x")

    engine.submit(build)
    await asyncio.wait_for(done.wait(), 2)

    assert engine.added_count == 5
    assert engine.completed_count == 5
    assert [f.node_path for f in failures] == ["/content/x"]


def test_async_engine_needs_a_loop():
    engine = AsyncTaskEngine("test")

    with pytest.raises(RuntimeError):
        engine.submit(lambda: None)


def test_factory_tracks_and_releases_engines():
    factory = TaskEngineFactory(ImmediateTaskEngine, default_concurrency=3)
    engine = factory.create("label")

    assert engine.concurrency == 3
    assert factory.active_engines() == [engine]

    factory.release(engine)
    factory.release(engine)
    assert factory.active_engines() == []


def test_get_engine_factory_backends():
    config = StepChainConfig()

    assert get_engine_factory("immediate", config).engine_cls is ImmediateTaskEngine
    assert get_engine_factory(config=config).engine_cls is AsyncTaskEngine
    with pytest.raises(ValueError):
        get_engine_factory("celery", config)
