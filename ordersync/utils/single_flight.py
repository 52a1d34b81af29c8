import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable


class SingleFlight:
    """Coalesce concurrent calls for the same key into one in-flight task.

    The shared task is shielded: a caller that gets cancelled stops waiting
    but the underlying operation keeps running for the remaining callers.
    The entry is released as soon as the task finishes.
    """

    def __init__(self):
        self._inflight: Dict[Hashable, asyncio.Task] = {}

    def inflight(self, key: Hashable) -> bool:
        return key in self._inflight

    def _release(self, key: Hashable, task: asyncio.Task):
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # mark the exception as retrieved when every caller went away
            task.exception()

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._release(k, t))
        return await asyncio.shield(task)
