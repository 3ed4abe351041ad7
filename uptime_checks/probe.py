from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import httpx


DEFAULT_REQUEST_TIMEOUT_SECONDS = 10.0

REQUEST_CONSTRUCTION_ERROR = "request_construction_error"
TRANSPORT_ERROR = "transport_error"
UNEXPECTED_STATUS = "unexpected_status"
BODY_READ_ERROR = "body_read_error"
PROBE_CRASHED = "probe_crashed"


@dataclass(frozen=True)
class Target:
    address: str


@dataclass(frozen=True)
class CheckResult:
    target: Target
    url: str
    succeeded: bool
    latency_ms: float
    http_status: int | None = None
    status_text: str | None = None
    transport_error: str | None = None
    error_kind: str | None = None
    content_required: bool = False
    content_satisfied: bool | None = None

    @property
    def outcome(self) -> str:
        if self.http_status is not None:
            status_line = f"{self.http_status} {self.status_text or ''}".strip()
            if self.transport_error:
                return f"{status_line} {self.transport_error}"
            return status_line
        return self.transport_error or "unknown"

    @property
    def healthy(self) -> bool:
        """Succeeded, and any configured content rule was satisfied."""
        if not self.succeeded:
            return False
        if self.content_required:
            return bool(self.content_satisfied)
        return True


def build_client(max_parallel: int) -> httpx.AsyncClient:
    # Concurrency is bounded by the Throttle, not by the connection pool.
    return httpx.AsyncClient(
        limits=httpx.Limits(max_connections=None, max_keepalive_connections=max(1, int(max_parallel))),
    )


def normalize_address(address: str) -> str:
    s = (address or "").strip()
    if s.lower().startswith(("http://", "https://")):
        return s
    return f"http://{s}"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


def _error_text(exc: Exception) -> str:
    return f"{type(exc).__name__}: {exc}"


def _deadline_text(timeout_seconds: float) -> str:
    return f"TimeoutError: no complete response within {timeout_seconds}s"


async def probe(
    target: Target,
    expected_content: str | None,
    client: httpx.AsyncClient,
    *,
    timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> CheckResult:
    """
    Run one GET check against ``target`` and classify the outcome.

    Never raises for network or HTTP failures; every early exit still returns a
    fully populated CheckResult so the sink can always log it.
    """
    url = normalize_address(target.address)
    started = time.perf_counter()

    try:
        request = client.build_request("GET", url, timeout=timeout_seconds)
    except (httpx.InvalidURL, httpx.UnsupportedProtocol, ValueError) as e:
        return CheckResult(
            target=target,
            url=url,
            succeeded=False,
            latency_ms=_elapsed_ms(started),
            transport_error=_error_text(e),
            error_kind=REQUEST_CONSTRUCTION_ERROR,
        )

    # One deadline covers send and body read together.
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_seconds
    started = time.perf_counter()
    try:
        resp = await asyncio.wait_for(
            client.send(request, stream=True, follow_redirects=True),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError:
        return CheckResult(
            target=target,
            url=url,
            succeeded=False,
            latency_ms=_elapsed_ms(started),
            transport_error=_deadline_text(timeout_seconds),
            error_kind=TRANSPORT_ERROR,
        )
    except httpx.UnsupportedProtocol as e:
        return CheckResult(
            target=target,
            url=url,
            succeeded=False,
            latency_ms=_elapsed_ms(started),
            transport_error=_error_text(e),
            error_kind=REQUEST_CONSTRUCTION_ERROR,
        )
    except httpx.HTTPError as e:
        # Covers connect/DNS/timeouts and redirect-loop failures alike.
        return CheckResult(
            target=target,
            url=url,
            succeeded=False,
            latency_ms=_elapsed_ms(started),
            transport_error=_error_text(e),
            error_kind=TRANSPORT_ERROR,
        )

    latency_ms = _elapsed_ms(started)
    try:
        if resp.status_code != 200:
            return CheckResult(
                target=target,
                url=url,
                succeeded=False,
                latency_ms=latency_ms,
                http_status=resp.status_code,
                status_text=resp.reason_phrase,
                error_kind=UNEXPECTED_STATUS,
            )

        try:
            body = await asyncio.wait_for(resp.aread(), timeout=max(0.0, deadline - loop.time()))
        except asyncio.TimeoutError:
            return CheckResult(
                target=target,
                url=url,
                succeeded=False,
                latency_ms=latency_ms,
                http_status=resp.status_code,
                status_text=resp.reason_phrase,
                transport_error=_deadline_text(timeout_seconds),
                error_kind=BODY_READ_ERROR,
            )
        except httpx.HTTPError as e:
            return CheckResult(
                target=target,
                url=url,
                succeeded=False,
                latency_ms=latency_ms,
                http_status=resp.status_code,
                status_text=resp.reason_phrase,
                transport_error=_error_text(e),
                error_kind=BODY_READ_ERROR,
            )
    finally:
        await resp.aclose()

    if not expected_content:
        return CheckResult(
            target=target,
            url=url,
            succeeded=True,
            latency_ms=latency_ms,
            http_status=resp.status_code,
            status_text=resp.reason_phrase,
        )

    return CheckResult(
        target=target,
        url=url,
        succeeded=True,
        latency_ms=latency_ms,
        http_status=resp.status_code,
        status_text=resp.reason_phrase,
        content_required=True,
        content_satisfied=expected_content.encode("utf-8") in body,
    )
