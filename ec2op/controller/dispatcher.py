"""Work queue that runs reconciles across a pool of asyncio workers.

Guarantees at most one in-flight reconcile per key while distinct keys run
concurrently. Keys changed while being reconciled are replayed once the
running pass finishes.

Requeue policy:

    Result()                   -> done, backoff reset
    Result(requeue=True)       -> retry with exponential backoff
    Result(requeue_after=s)    -> retry after s seconds, backoff reset
    exception                  -> retry with exponential backoff
    ConfigurationError         -> stop, run() re-raises it
    unusable requeue hint      -> logged, retry with exponential backoff
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from loguru import logger

from ec2op.api.model import ResourceKey, Result
from ec2op.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from loguru import Logger

log = logger.bind(component="dispatcher")

type ReconcileFn = Callable[[ResourceKey], Awaitable[Result]]


class Dispatcher:
    def __init__(
        self,
        reconcile: ReconcileFn,
        *,
        workers: int = 4,
        base_delay: float = 0.5,
        max_delay: float = 300.0,
        jitter: bool = True,
    ) -> None:
        self._reconcile = reconcile
        self.workers = workers
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter

        self._queue: asyncio.Queue[ResourceKey] = asyncio.Queue()
        self._queued: set[ResourceKey] = set()
        self._active: set[ResourceKey] = set()
        self._dirty: set[ResourceKey] = set()
        self._failures: dict[ResourceKey, int] = {}
        self._timers: dict[ResourceKey, asyncio.TimerHandle] = {}
        self._stopped = asyncio.Event()
        self._fatal: ConfigurationError | None = None

    # -------------------------------------------------------------------------
    # Queueing
    # -------------------------------------------------------------------------

    def enqueue(self, key: ResourceKey) -> None:
        if key in self._active:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def enqueue_after(self, key: ResourceKey, delay: float) -> None:
        """Schedule ``key``. An earlier pending schedule wins."""
        loop = asyncio.get_running_loop()
        pending = self._timers.get(key)
        if pending is not None:
            if pending.when() <= loop.time() + delay:
                return
            pending.cancel()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def _fire(self, key: ResourceKey) -> None:
        self._timers.pop(key, None)
        self.enqueue(key)

    def backoff(self, key: ResourceKey) -> float:
        """Next retry delay for ``key``: min(base * 2**failures, max) plus jitter."""
        failures = self._failures.get(key, 0)
        delay = min(self.base_delay * (2**failures), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * 0.1)
        self._failures[key] = failures + 1
        return delay

    def forget(self, key: ResourceKey) -> None:
        self._failures.pop(key, None)

    @property
    def pending(self) -> int:
        return len(self._queued) + len(self._active) + len(self._timers)

    # -------------------------------------------------------------------------
    # Workers
    # -------------------------------------------------------------------------

    async def _worker(self, index: int) -> None:
        wlog = log.bind(worker=index)
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            self._active.add(key)
            try:
                await self._process(key, wlog)
            except Exception as e:
                wlog.opt(exception=e).error(
                    "Internal error handling {key}, retrying with backoff: {err}", key=key, err=e,
                )
                self.enqueue_after(key, self.backoff(key))
            finally:
                self._active.discard(key)
                self._queue.task_done()
                if key in self._dirty:
                    self._dirty.discard(key)
                    self.enqueue(key)

    async def _process(self, key: ResourceKey, wlog: Logger) -> None:
        try:
            result = await self._reconcile(key)
        except ConfigurationError as e:
            wlog.error("Fatal configuration error reconciling {key}: {err}", key=key, err=e)
            self._fatal = e
            self._stopped.set()
            return
        except Exception as e:
            delay = self.backoff(key)
            wlog.warning(
                "Reconcile of {key} failed, retrying in {delay:.1f}s: {err}",
                key=key, delay=delay, err=e,
            )
            self.enqueue_after(key, delay)
            return

        if result.requeue_after is not None:
            self.forget(key)
            self.enqueue_after(key, result.requeue_after)
        elif result.requeue:
            self.enqueue_after(key, self.backoff(key))
        else:
            self.forget(key)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Run workers until ``stop()``. Re-raises a fatal ConfigurationError."""
        tasks = [
            asyncio.create_task(self._worker(i), name=f"ec2op-worker-{i}")
            for i in range(self.workers)
        ]
        log.info("Dispatcher started with {n} workers", n=self.workers)
        try:
            await self._stopped.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for handle in self._timers.values():
                handle.cancel()
            self._timers.clear()
            log.info("Dispatcher stopped")

        if self._fatal is not None:
            raise self._fatal

    def stop(self) -> None:
        self._stopped.set()


__all__ = ["Dispatcher", "ReconcileFn"]
