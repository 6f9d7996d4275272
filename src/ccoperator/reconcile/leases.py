from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class DispatchLeases:
    """Per-cluster locks serialising the check-idle-then-dispatch sequence.

    Cruise Control runs a single user task at a time. Holding the lease
    from the health check until the result is persisted keeps two passes
    in this process from both seeing an idle engine and dispatching.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            yield

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()
