"""Bounded polling for slow EC2 state transitions."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from ec2op.core.exceptions import TimeoutError

log = logger.bind(component="wait")


async def wait_for_ready[T](
    poll_fn: Callable[[], Awaitable[T | None]],
    ready_check: Callable[[T], bool],
    *,
    timeout: float = 300.0,
    interval: float = 5.0,
    description: str = "resource",
) -> T:
    """Poll until ``ready_check`` accepts a result.

    ``poll_fn`` returns None while the resource is not visible yet; anything
    it raises ends the wait immediately. The last sleep is clipped to the
    deadline so the wait never overshoots ``timeout`` by a full interval.

    Raises:
        TimeoutError: No ready result within ``timeout`` seconds. The message
            names ``description`` and the last observed value.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    polls = 0

    while True:
        polls += 1
        observed = await poll_fn()
        if observed is not None and ready_check(observed):
            log.trace("{what} ready after {n} polls", what=description, n=polls)
            return observed

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise TimeoutError(
                f"Timed out after {timeout:.1f}s waiting for {description} "
                f"({polls} polls, last seen: {observed!r})"
            )
        await asyncio.sleep(min(interval, remaining))
