"""
Single-flight primitives.

- KeyedGuard: rejects a second concurrent holder for the same key.
- SingleFlight: collapses concurrent calls for the same key into one task
  whose result every caller observes.
"""

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from contextlib import contextmanager
from typing import Any


class KeyedGuard:
    """Tracks which keys are currently held (e.g. note ids being extracted)."""

    def __init__(self):
        self._held: set[Hashable] = set()

    def is_held(self, key: Hashable) -> bool:
        return key in self._held

    @contextmanager
    def hold(self, key: Hashable):
        """
        Hold key for the duration of the block.

        Check and insert happen without an await in between, so two tasks
        cannot both acquire the same key.

        Raises:
            RuntimeError: If key is already held
        """
        if key in self._held:
            raise RuntimeError(f"Key already held: {key}")
        self._held.add(key)
        try:
            yield
        finally:
            self._held.discard(key)


class SingleFlight:
    """At most one in-flight task per key; late callers join the running one."""

    def __init__(self):
        self._inflight: dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run factory() for key unless a call for key is already running.

        Args:
            key: Deduplication key
            factory: Zero-arg callable returning the awaitable to run

        Returns:
            The shared result of the single in-flight call
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        # Shield so one cancelled caller does not cancel the shared attempt
        return await asyncio.shield(task)
