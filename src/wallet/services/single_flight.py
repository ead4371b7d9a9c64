"""Coalesce concurrent calls for the same key into one in-flight task."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Per-key gate: callers arriving while a key is running share its result.

    Only identical calls are shared. A caller whose ``variant`` differs from
    the running one waits for it to finish and then starts its own run, so
    one key never has two runs at once.

    The shared task is shielded from any single caller's cancellation, so a
    cancelled waiter never aborts work other callers depend on.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, tuple[asyncio.Task[T], Hashable]] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def _forget(self, key: str, task: asyncio.Task[T]) -> None:
        entry = self._inflight.get(key)
        if entry is not None and entry[0] is task:
            del self._inflight[key]

    async def do(
        self, key: str, fn: Callable[[], Awaitable[T]], variant: Hashable = None
    ) -> T:
        while True:
            entry = self._inflight.get(key)
            if entry is None:
                task = asyncio.ensure_future(fn())
                self._inflight[key] = (task, variant)
                task.add_done_callback(lambda t, k=key: self._forget(k, t))
                break

            task, running = entry
            if running == variant:
                logger.debug(f"Joining in-flight call for {key}")
                break

            logger.debug(f"Waiting for in-flight call for {key} before starting another")
            # Outcome belongs to the other callers; only completion matters here
            await asyncio.wait({task})

        return await asyncio.shield(task)
