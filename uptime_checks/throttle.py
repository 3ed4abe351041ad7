from __future__ import annotations

import asyncio


DEFAULT_RELEASE_DELAY_SECONDS = 1.0


class Throttle:
    """
    Admission gate bounding how many probes run at once.

    A slot stays reserved for ``release_delay_seconds`` after its probe finishes,
    which caps the request rate per slot regardless of ``max_parallel``.
    """

    def __init__(self, max_parallel: int, *, release_delay_seconds: float = DEFAULT_RELEASE_DELAY_SECONDS) -> None:
        if int(max_parallel) < 1:
            raise ValueError(f"max_parallel must be >= 1, got {max_parallel!r}")
        self.max_parallel = int(max_parallel)
        self.release_delay_seconds = max(0.0, float(release_delay_seconds))
        self._sem = asyncio.Semaphore(self.max_parallel)
        self.in_use = 0
        self.peak_in_use = 0

    async def acquire(self) -> None:
        await self._sem.acquire()
        self.in_use += 1
        if self.in_use > self.peak_in_use:
            self.peak_in_use = self.in_use

    def release(self) -> None:
        if self.in_use <= 0:
            raise RuntimeError("Throttle.release() called without a matching acquire()")
        self.in_use -= 1
        self._sem.release()

    async def pace(self) -> None:
        """Hold the caller's slot for the pacing delay; the caller releases afterwards."""
        if self.release_delay_seconds > 0:
            await asyncio.sleep(self.release_delay_seconds)
