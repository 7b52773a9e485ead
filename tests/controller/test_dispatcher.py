from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from ec2op.api.model import ResourceKey, Result
from ec2op.controller.dispatcher import Dispatcher
from ec2op.core.exceptions import ConfigurationError, TransientProviderError

pytestmark = [pytest.mark.xdist_group("unit")]

WEB = ResourceKey("default", "web")
DB = ResourceKey("default", "db")


async def until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.001)


class Recorder:
    """Reconcile function that records calls and replays scripted outcomes."""

    def __init__(self, *outcomes: Result | Exception) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[ResourceKey] = []
        self.active: set[ResourceKey] = set()
        self.overlaps: list[ResourceKey] = []
        self.gate = asyncio.Event()
        self.gate.set()

    async def __call__(self, key: ResourceKey) -> Result:
        if key in self.active:
            self.overlaps.append(key)
        self.active.add(key)
        self.calls.append(key)
        try:
            await self.gate.wait()
            outcome = self.outcomes.pop(0) if self.outcomes else Result()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.active.discard(key)


async def _running(dispatcher: Dispatcher) -> asyncio.Task[None]:
    task = asyncio.create_task(dispatcher.run())
    await asyncio.sleep(0)
    return task


async def _shutdown(dispatcher: Dispatcher, task: asyncio.Task[None]) -> None:
    dispatcher.stop()
    await asyncio.wait_for(task, timeout=2.0)


class TestBackoff:
    def test_doubles_up_to_cap(self):
        d = Dispatcher(Recorder(), base_delay=0.5, max_delay=3.0, jitter=False)

        assert [d.backoff(WEB) for _ in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]

    def test_forget_resets(self):
        d = Dispatcher(Recorder(), base_delay=0.5, jitter=False)
        d.backoff(WEB)
        d.backoff(WEB)

        d.forget(WEB)

        assert d.backoff(WEB) == 0.5

    def test_per_key(self):
        d = Dispatcher(Recorder(), base_delay=1.0, jitter=False)
        d.backoff(WEB)

        assert d.backoff(DB) == 1.0

    def test_jitter_is_bounded(self):
        d = Dispatcher(Recorder(), base_delay=1.0, jitter=True)

        delay = d.backoff(WEB)

        assert 1.0 <= delay <= 1.1


class TestQueueing:
    def test_duplicate_enqueue_is_collapsed(self):
        d = Dispatcher(Recorder())

        d.enqueue(WEB)
        d.enqueue(WEB)
        d.enqueue(DB)

        assert d.pending == 2

    @pytest.mark.asyncio
    async def test_earlier_schedule_wins(self):
        reconcile = Recorder()
        d = Dispatcher(reconcile)
        task = await _running(d)

        d.enqueue_after(WEB, 0.01)
        d.enqueue_after(WEB, 60)
        await until(lambda: len(reconcile.calls) == 1)

        assert d.pending == 0
        await _shutdown(d, task)

    @pytest.mark.asyncio
    async def test_earlier_schedule_replaces_later(self):
        reconcile = Recorder()
        d = Dispatcher(reconcile)
        task = await _running(d)

        d.enqueue_after(WEB, 60)
        d.enqueue_after(WEB, 0.01)
        await until(lambda: len(reconcile.calls) == 1)

        await _shutdown(d, task)


class TestWorkers:
    @pytest.mark.asyncio
    async def test_same_key_never_runs_concurrently(self):
        reconcile = Recorder()
        reconcile.gate.clear()
        d = Dispatcher(reconcile, workers=4)
        task = await _running(d)

        d.enqueue(WEB)
        await until(lambda: len(reconcile.calls) == 1)
        d.enqueue(WEB)
        d.enqueue(WEB)
        await asyncio.sleep(0.01)
        assert len(reconcile.calls) == 1

        reconcile.gate.set()
        await until(lambda: len(reconcile.calls) == 2 and d.pending == 0)
        await asyncio.sleep(0.01)

        assert reconcile.overlaps == []
        assert len(reconcile.calls) == 2
        await _shutdown(d, task)

    @pytest.mark.asyncio
    async def test_distinct_keys_run_concurrently(self):
        reconcile = Recorder()
        reconcile.gate.clear()
        d = Dispatcher(reconcile, workers=2)
        task = await _running(d)

        d.enqueue(WEB)
        d.enqueue(DB)
        await until(lambda: reconcile.active == {WEB, DB})

        reconcile.gate.set()
        await until(lambda: d.pending == 0)
        await _shutdown(d, task)

    @pytest.mark.asyncio
    async def test_requeue_after_reschedules(self):
        reconcile = Recorder(Result(requeue_after=0.01), Result())
        d = Dispatcher(reconcile)
        task = await _running(d)

        d.enqueue(WEB)
        await until(lambda: len(reconcile.calls) == 2 and d.pending == 0)

        await _shutdown(d, task)

    @pytest.mark.asyncio
    async def test_requeue_uses_backoff_and_success_resets_it(self):
        reconcile = Recorder(Result(requeue=True), Result(requeue=True), Result())
        d = Dispatcher(reconcile, base_delay=0.001, jitter=False)
        task = await _running(d)

        d.enqueue(WEB)
        await until(lambda: len(reconcile.calls) == 3 and d.pending == 0)

        assert d.backoff(WEB) == 0.001
        await _shutdown(d, task)

    @pytest.mark.asyncio
    async def test_failures_are_retried(self):
        reconcile = Recorder(TransientProviderError("DescribeInstances", "boom"), RuntimeError("bug"), Result())
        d = Dispatcher(reconcile, base_delay=0.001, jitter=False)
        task = await _running(d)

        d.enqueue(WEB)
        await until(lambda: len(reconcile.calls) == 3 and d.pending == 0)

        await _shutdown(d, task)

    @pytest.mark.asyncio
    async def test_unusable_requeue_hint_keeps_worker_alive(self):
        reconcile = Recorder(Result(requeue_after="soon"), Result(), Result())  # type: ignore[arg-type]
        d = Dispatcher(reconcile, workers=1, base_delay=0.001, jitter=False)
        task = await _running(d)

        d.enqueue(WEB)
        d.enqueue(DB)
        await until(lambda: len(reconcile.calls) == 3 and d.pending == 0)

        assert reconcile.calls == [WEB, DB, WEB]
        assert not task.done()
        await _shutdown(d, task)

    @pytest.mark.asyncio
    async def test_configuration_error_stops_dispatcher(self):
        reconcile = Recorder(ConfigurationError("no credentials"))
        d = Dispatcher(reconcile)

        d.enqueue(WEB)

        with pytest.raises(ConfigurationError):
            await asyncio.wait_for(d.run(), timeout=2.0)

    @pytest.mark.asyncio
    async def test_stop_cancels_scheduled_retries(self):
        d = Dispatcher(Recorder())
        task = await _running(d)

        d.enqueue_after(WEB, 60)
        assert d.pending == 1

        await _shutdown(d, task)
        assert d.pending == 0
