from __future__ import annotations

import logging
from typing import Protocol, TextIO

import structlog

from uptime_checks.probe import CheckResult


class ResultSink(Protocol):
    def emit(self, result: CheckResult) -> None: ...


_KEY_ORDER = [
    "timestamp",
    "event",
    "address",
    "url",
    "outcome",
    "status",
    "latency_ms",
    "error_kind",
    "error",
    "content_required",
    "content_satisfied",
]


class LogResultSink:
    """Writes one key=value line per CheckResult to ``stream``."""

    def __init__(self, stream: TextIO) -> None:
        self._log = structlog.wrap_logger(
            structlog.PrintLogger(file=stream),
            processors=[
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="ISO"),
                structlog.processors.KeyValueRenderer(key_order=_KEY_ORDER, drop_missing=True),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
            cache_logger_on_first_use=False,
        )

    def emit(self, result: CheckResult) -> None:
        fields = {
            "address": result.target.address,
            "url": result.url,
            "outcome": result.outcome,
            "latency_ms": result.latency_ms,
        }
        if result.http_status is not None:
            fields["status"] = result.http_status
        if result.error_kind:
            fields["error_kind"] = result.error_kind
        if result.transport_error:
            fields["error"] = result.transport_error
        if result.content_required:
            fields["content_required"] = True
            fields["content_satisfied"] = result.content_satisfied

        if result.healthy:
            self._log.info("check_result", **fields)
        else:
            self._log.warning("check_result", **fields)
