from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from pathlib import Path

from uptime_checks.config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_TARGETS_PATH,
    ConfigError,
    RoundConfig,
    load_config,
    load_targets,
)
from uptime_checks.probe import Target, build_client
from uptime_checks.rounds import execute_round
from uptime_checks.scheduler import RoundScheduler
from uptime_checks.sink import LogResultSink


LOGGER = logging.getLogger("uptime-checks")

DEFAULT_RESULTS_LOG = "requests.log"


def _install_signal_handlers(scheduler: RoundScheduler) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform/loop; KeyboardInterrupt still ends asyncio.run().
            pass


async def run_checks(
    targets: list[Target],
    config: RoundConfig,
    results_log: Path,
    *,
    once: bool,
) -> int:
    with open(results_log, "a", encoding="utf-8") as results_file:
        sink = LogResultSink(results_file)
        async with build_client(config.max_parallel) as client:
            if once:
                results = await execute_round(targets, config, sink, client=client)
                return 0 if all(r.healthy for r in results) else 1

            scheduler = RoundScheduler(targets, config, sink, client=client)
            _install_signal_handlers(scheduler)
            await scheduler.run()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Periodic HTTP uptime and content checks")
    parser.add_argument(
        "--config",
        default=os.getenv("UPTIME_CONFIG", str(DEFAULT_CONFIG_PATH)),
        help="Path to YAML config",
    )
    parser.add_argument(
        "--targets",
        default=os.getenv("UPTIME_TARGETS", str(DEFAULT_TARGETS_PATH)),
        help="Path to target list (one address per line)",
    )
    parser.add_argument(
        "--results-log",
        default=os.getenv("UPTIME_RESULTS_LOG", DEFAULT_RESULTS_LOG),
        help="File that check results are appended to",
    )
    parser.add_argument("--once", action="store_true", help="Run one round and exit")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    try:
        config = load_config(Path(args.config))
        targets = load_targets(Path(args.targets))
    except ConfigError as exc:
        LOGGER.error("Startup failed error=%s", exc)
        return 2

    try:
        return asyncio.run(run_checks(targets, config, Path(args.results_log), once=bool(args.once)))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; exiting")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
