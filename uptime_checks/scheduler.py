from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Sequence

import httpx

from uptime_checks.config import RoundConfig
from uptime_checks.probe import CheckResult, Target
from uptime_checks.rounds import execute_round
from uptime_checks.sink import ResultSink


LOGGER = logging.getLogger("uptime-checks")

RoundRunner = Callable[[], Awaitable[object]]
Ticker = Callable[[], AsyncIterator[None]]


class RoundScheduler:
    """
    Runs one round immediately, then one round per interval tick until stop().

    Ticks follow a fixed schedule and do not wait for the previous round. With
    overlap_policy="allow" a tick always starts a round, so slow rounds can
    overlap; with "skip" a tick is dropped while any round is still in flight.
    """

    def __init__(
        self,
        targets: Sequence[Target],
        config: RoundConfig,
        sink: ResultSink,
        *,
        client: httpx.AsyncClient | None = None,
        run_round: RoundRunner | None = None,
        ticker: Ticker | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.targets = list(targets)
        self.config = config
        self.sink = sink
        self._client = client
        self._run_round = run_round or self._execute_round
        self._ticker = ticker or self._interval_ticks
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._active: set[asyncio.Task[object]] = set()
        self.rounds_started = 0
        self.ticks_skipped = 0

    @property
    def active_rounds(self) -> int:
        return len(self._active)

    def stop(self) -> None:
        if not self._stop_event.is_set():
            LOGGER.info("Scheduler stop requested active_rounds=%s", len(self._active))
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    async def _execute_round(self) -> list[CheckResult]:
        if self._client is None:
            raise RuntimeError("RoundScheduler needs an httpx.AsyncClient to run rounds")
        return await execute_round(self.targets, self.config, self.sink, client=self._client)

    async def _interval_ticks(self) -> AsyncIterator[None]:
        interval = self.config.interval_seconds
        next_fire = self._clock() + interval
        while not self._stop_event.is_set():
            delay = max(0.0, next_fire - self._clock())
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                return
            except asyncio.TimeoutError:
                pass
            next_fire += interval
            now = self._clock()
            if next_fire <= now:
                # Fell behind by more than an interval; drop the missed ticks.
                next_fire = now + interval
            yield

    async def _guarded_round(self, round_no: int) -> object:
        try:
            return await self._run_round()
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Round crashed round=%s", round_no)
            return None

    def _start_round(self) -> None:
        self.rounds_started += 1
        task = asyncio.create_task(self._guarded_round(self.rounds_started))
        self._active.add(task)
        task.add_done_callback(self._active.discard)

    def _on_tick(self) -> None:
        if self._active and self.config.overlap_policy == "skip":
            self.ticks_skipped += 1
            LOGGER.warning(
                "Previous round still running; skipping tick active_rounds=%s skipped_total=%s",
                len(self._active),
                self.ticks_skipped,
            )
            return
        if self._active:
            LOGGER.info("Starting round while previous still running active_rounds=%s", len(self._active))
        self._start_round()

    async def run(self) -> None:
        LOGGER.info(
            "Scheduler starting targets=%s interval_seconds=%s max_parallel=%s overlap_policy=%s",
            len(self.targets),
            self.config.interval_seconds,
            self.config.max_parallel,
            self.config.overlap_policy,
        )
        ticks = self._ticker()
        try:
            # First round completes before the timer starts.
            self.rounds_started += 1
            await self._guarded_round(self.rounds_started)

            async for _ in ticks:
                if self._stop_event.is_set():
                    break
                self._on_tick()
        finally:
            aclose = getattr(ticks, "aclose", None)
            if aclose is not None:
                await aclose()
            pending = list(self._active)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            LOGGER.info("Scheduler stopped rounds_started=%s ticks_skipped=%s", self.rounds_started, self.ticks_skipped)
