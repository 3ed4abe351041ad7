from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Sequence

import httpx

from uptime_checks.config import RoundConfig
from uptime_checks.probe import PROBE_CRASHED, CheckResult, Target, normalize_address, probe
from uptime_checks.sink import ResultSink
from uptime_checks.throttle import Throttle


LOGGER = logging.getLogger("uptime-checks")

ProbeFn = Callable[..., Awaitable[CheckResult]]


async def _safe_probe(
    target: Target,
    config: RoundConfig,
    client: httpx.AsyncClient,
    probe_fn: ProbeFn,
) -> CheckResult:
    started = time.perf_counter()
    try:
        return await probe_fn(
            target,
            config.rule_for(target.address),
            client,
            timeout_seconds=config.request_timeout_seconds,
        )
    except Exception as exc:
        err = f"{type(exc).__name__}: {exc}"
        LOGGER.exception("Probe crashed address=%s error=%s", target.address, err)
        return CheckResult(
            target=target,
            url=normalize_address(target.address),
            succeeded=False,
            latency_ms=round((time.perf_counter() - started) * 1000.0, 3),
            transport_error=err,
            error_kind=PROBE_CRASHED,
        )


def _deliver(sink: ResultSink, result: CheckResult) -> None:
    try:
        sink.emit(result)
    except Exception:
        LOGGER.exception("Result sink failed address=%s", result.target.address)


async def execute_round(
    targets: Sequence[Target],
    config: RoundConfig,
    sink: ResultSink,
    *,
    client: httpx.AsyncClient,
    throttle: Throttle | None = None,
    probe_fn: ProbeFn = probe,
) -> list[CheckResult]:
    """
    Probe every target once, at most ``config.max_parallel`` at a time.

    Returns only after every launched probe has finished and released its slot;
    results come back in target order.
    """
    if throttle is None:
        throttle = Throttle(config.max_parallel, release_delay_seconds=config.release_delay_seconds)

    async def _run_admitted(target: Target) -> CheckResult:
        result = await _safe_probe(target, config, client, probe_fn)
        _deliver(sink, result)
        await throttle.pace()
        return result

    def _release_slot(task: asyncio.Task[CheckResult]) -> None:
        # Runs however the task ends, including cancellation before its first step.
        throttle.release()

    started = time.perf_counter()
    tasks: list[asyncio.Task[CheckResult]] = []
    try:
        for target in targets:
            await throttle.acquire()
            try:
                task = asyncio.create_task(_run_admitted(target))
            except BaseException:
                throttle.release()
                raise
            task.add_done_callback(_release_slot)
            tasks.append(task)
        results = list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    failed = sum(1 for r in results if not r.healthy)
    LOGGER.info(
        "Round complete targets=%s failed=%s elapsed_seconds=%s peak_parallel=%s",
        len(results),
        failed,
        round(time.perf_counter() - started, 3),
        throttle.peak_in_use,
    )
    return results
