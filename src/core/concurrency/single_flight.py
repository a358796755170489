"""
Keyed call coalescing.

Concurrent callers asking for the same key share one in-flight task
instead of starting duplicate work. Used by content warmup, quest pool
seeding and the autosave flush.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, TypeVar

from src.core.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    At most one running call per key.

    Example
    -------
    >>> flights: SingleFlight[dict] = SingleFlight("content")
    >>> content = await flights.do(("ch1", 0), lambda: provider.fetch(...))

    Callers that join an existing flight receive its result or its
    exception. A joining caller being cancelled does not cancel the shared
    task.
    """

    def __init__(self, name: str = "single_flight") -> None:
        self.name = name
        self._in_flight: Dict[Hashable, "asyncio.Task[T]"] = {}
        self.joined_count = 0

    def is_running(self, key: Hashable) -> bool:
        task = self._in_flight.get(key)
        return task is not None and not task.done()

    async def do(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._in_flight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(factory())
            self._in_flight[key] = task
            task.add_done_callback(lambda finished, k=key: self._forget(k, finished))
        else:
            self.joined_count += 1
            logger.debug(
                "Joined in-flight call",
                extra={"flight": self.name, "key": str(key)},
            )
        return await asyncio.shield(task)

    async def wait(self, key: Hashable) -> None:
        """Wait for the current flight of ``key`` (if any) without raising."""
        task = self._in_flight.get(key)
        if task is not None and not task.done():
            await asyncio.wait({task})

    def _forget(self, key: Hashable, finished: "asyncio.Task[Any]") -> None:
        if self._in_flight.get(key) is finished:
            del self._in_flight[key]
        # Retrieve the exception so an unjoined failure is not reported as
        # "never retrieved"; joiners still receive it through await.
        if not finished.cancelled():
            finished.exception()

    def __len__(self) -> int:
        return sum(1 for task in self._in_flight.values() if not task.done())
