"""Counting semaphore whose limit can change while tasks wait on it."""

import asyncio


class ConcurrencyLimiter:
    """Bounds how many tasks run at once; the bound may be moved at runtime.

    Lowering the limit never interrupts running holders: it only delays
    new acquisitions until enough holders have released.

    Usage:
        limiter = ConcurrencyLimiter(4)
        async with limiter:
            ...
        await limiter.set_limit(2)
    """

    def __init__(self, limit: int) -> None:
        self._limit = max(1, limit)
        self._active = 0
        self._condition = asyncio.Condition()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def active(self) -> int:
        return self._active

    async def acquire(self) -> None:
        async with self._condition:
            await self._condition.wait_for(lambda: self._active < self._limit)
            self._active += 1

    async def release(self) -> None:
        async with self._condition:
            self._active = max(0, self._active - 1)
            self._condition.notify_all()

    async def set_limit(self, limit: int) -> None:
        async with self._condition:
            self._limit = max(1, limit)
            self._condition.notify_all()

    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info) -> None:
        # Must complete even if the holder is being cancelled
        await asyncio.shield(self.release())
