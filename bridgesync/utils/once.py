"""
Compute-once async values.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Generic, Hashable, TypeVar

T = TypeVar("T")


class OnceCache(Generic[T]):
    """
    Memoizes one awaited result per key.

    The first caller for a key starts the computation; callers arriving
    before it finishes await the same task instead of starting another.
    A failed computation is forgotten so a later caller can retry it.
    """

    def __init__(self):
        self._tasks: Dict[Hashable, "asyncio.Task[T]"] = {}

    async def get(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
        try:
            return await asyncio.shield(task)
        except Exception:
            if self._tasks.get(key) is task:
                del self._tasks[key]
            raise

    def __contains__(self, key: Hashable) -> bool:
        return key in self._tasks
