"""
Wait strategies for a conversion job.

A strategy only knows how to watch one kind of endpoint and return a
terminal outcome. Overall timeout, cancellation and job bookkeeping belong
to the monitor.
"""
from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator, Awaitable, Callable, Protocol

import httpx

from wavepeaks.core.config import Settings
from wavepeaks.core.logging import logger
from wavepeaks.services.conversion.models import (
    ConversionJob,
    Failed,
    FailureKind,
    MonitorOutcome,
    ProgressUpdate,
    Ready,
)

Emit = Callable[[ProgressUpdate], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]

COMPLETED_STATUSES = {"completed"}
FAILED_STATUSES = {"error", "failed"}
URL_KEYS = ("downloadUrl", "download_url", "url")


class WaitStrategy(Protocol):
    name: str

    async def run(self, job: ConversionJob, emit: Emit) -> MonitorOutcome: ...


def progress_fraction(value) -> float | None:
    """
    Upstream reports either a 0..1 fraction or a 0..100 percentage.
    Integers are always percent, so 1 means 1% rather than done.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    try:
        frac = float(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, int) or frac > 1.0:
        frac /= 100.0
    return min(1.0, max(0.0, frac))


def backoff_delay(attempt: int, base_ms: int, cap_ms: int) -> float:
    """Seconds to wait before HEAD check number `attempt` (1-based)."""
    return min(cap_ms, base_ms * attempt) / 1000.0


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Assemble `data:` lines into one payload per event (blank-line separated)."""
    buf: list[str] = []
    async for line in lines:
        line = line.rstrip("\r")
        if not line:
            if buf:
                yield "\n".join(buf)
                buf = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            buf.append(value)
        # event / id / retry are not used
    if buf:
        yield "\n".join(buf)


class EventStreamStrategy:
    name = "event-stream"

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._transport = transport

    async def run(self, job: ConversionJob, emit: Emit) -> MonitorOutcome:
        url = job.notification_channel
        logger.info(f"[monitor] job={job.id} subscribing {url}")
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                # no read timeout: the monitor's ceiling bounds the whole wait
                timeout=httpx.Timeout(None, connect=10.0),
                headers={"Accept": "text/event-stream", "User-Agent": self.settings.USER_AGENT},
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code >= 400:
                        return Failed(
                            FailureKind.connection_lost,
                            f"event stream rejected with HTTP {response.status_code}",
                        )
                    async for payload in iter_sse_data(response.aiter_lines()):
                        outcome = await self._handle(job, payload, emit)
                        if outcome is not None:
                            return outcome
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            return Failed(FailureKind.invalid_location, f"bad event stream url: {e}")
        except (httpx.HTTPError, httpx.StreamError) as e:
            logger.warning(f"[monitor] job={job.id} event stream error: {e!r}")
            return Failed(FailureKind.connection_lost, f"event stream failed: {type(e).__name__}")

        return Failed(FailureKind.connection_lost, "event stream closed before completion")

    async def _handle(self, job: ConversionJob, payload: str, emit: Emit) -> MonitorOutcome | None:
        try:
            event = json.loads(payload)
            if not isinstance(event, dict):
                raise ValueError(f"expected an object, got {type(event).__name__}")
        except ValueError as e:
            logger.warning(f"[monitor] job={job.id} skipping malformed frame: {e} payload={payload[:120]!r}")
            return None

        status = str(event.get("status") or "").lower()
        asset = next((event[k] for k in URL_KEYS if event.get(k)), None)
        await emit(ProgressUpdate(
            job_id=job.id,
            status=status or "unknown",
            progress=progress_fraction(event.get("progress")),
            detail=event,
        ))

        if status in COMPLETED_STATUSES:
            if asset:
                return Ready(str(asset))
            logger.warning(f"[monitor] job={job.id} completed frame without asset url, waiting")
            return None
        if status in FAILED_STATUSES:
            return Failed(FailureKind.upstream_failure, str(event.get("message") or "Conversion failed"))
        return None


class PollingStrategy:
    """
    HEAD-check the pollable location with a progressive schedule:
    attempt k waits min(cap, base * k) and then checks.
    """

    name = "polling"

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        max_attempts: int | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings
        self._transport = transport
        self.max_attempts = max_attempts or settings.POLL_MAX_ATTEMPTS
        self._sleep = sleep

    async def run(self, job: ConversionJob, emit: Emit) -> MonitorOutcome:
        url = job.pollable_location
        async with httpx.AsyncClient(
            transport=self._transport,
            timeout=self.settings.PROBE_TIMEOUT_S,
            headers={"User-Agent": self.settings.USER_AGENT},
            follow_redirects=True,
        ) as client:
            for attempt in range(1, self.max_attempts + 1):
                delay = backoff_delay(attempt, self.settings.POLL_BASE_MS, self.settings.POLL_CAP_MS)
                await self._sleep(delay)

                verdict, note = await self._check_asset(client, url)
                logger.info(f"[monitor] job={job.id} check {attempt}/{self.max_attempts}: {note}")
                if isinstance(verdict, FailureKind):
                    status = "failed"
                else:
                    status = "ready" if verdict == "ready" else "converting"
                await emit(ProgressUpdate(
                    job_id=job.id,
                    status=status,
                    detail={"attempt": attempt, "check": note},
                ))

                if verdict == "ready":
                    return Ready(url)
                if isinstance(verdict, FailureKind):
                    return Failed(verdict, note)

        return Failed(FailureKind.exhausted, f"asset not ready after {self.max_attempts} checks")

    async def _check_asset(self, client: httpx.AsyncClient, url: str) -> tuple[str | FailureKind, str]:
        """
        (verdict, note). Verdict is "ready", "pending", or a FailureKind when
        the location can never become ready.
        """
        try:
            response = await client.head(url)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            return FailureKind.invalid_location, f"bad url: {e}"
        except httpx.HTTPError as e:
            return "pending", f"{type(e).__name__}"

        if response.is_success:
            return "ready", f"HTTP {response.status_code}"
        if response.status_code == 410:
            return FailureKind.upstream_failure, "asset gone (HTTP 410)"
        return "pending", f"HTTP {response.status_code}"


def select_strategy(
    job: ConversionJob,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
    prefer: str | None = None,
    max_attempts: int | None = None,
    sleep: Sleep = asyncio.sleep,
) -> WaitStrategy:
    if job.notification_channel and prefer != "polling":
        return EventStreamStrategy(settings, transport=transport)
    if job.pollable_location:
        return PollingStrategy(settings, transport=transport, max_attempts=max_attempts, sleep=sleep)
    return EventStreamStrategy(settings, transport=transport)
