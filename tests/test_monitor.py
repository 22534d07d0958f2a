import asyncio

import httpx
import pytest

from wavepeaks.services.conversion.models import ConversionJob, FailureKind, JobStatus, Ready
from wavepeaks.services.conversion.monitor import ConversionJobMonitor

SSE_URL = "https://converter.test/progress?token=tok"
ASSET = "https://cdn.test/audio.mp3"


def _job(**kw):
    return ConversionJob(id="tok", video_id="dQw4w9WgXcQ", quality="medium", **kw)


def _not_ready(request):
    return httpx.Response(404)


async def _no_sleep(delay):
    return None


@pytest.fixture
def fast_settings(settings):
    settings.POLL_BASE_MS = 10
    settings.POLL_CAP_MS = 10
    return settings


@pytest.mark.asyncio
async def test_ready_job_resolves_without_io(settings):
    def handler(request):
        raise AssertionError("no request expected")

    job = _job(pollable_location=ASSET)
    job.mark_ready(ASSET)
    outcome = await ConversionJobMonitor(settings, httpx.MockTransport(handler)).wait(job)
    assert outcome == Ready(ASSET)


@pytest.mark.asyncio
async def test_event_stream_ready_and_terminal_update_last(settings):
    body = (
        'data: {"status": "processing", "progress": 50}\n\n'
        f'data: {{"status": "completed", "downloadUrl": "{ASSET}"}}\n\n'
    ).encode()
    updates = []
    job = _job(notification_channel=SSE_URL)

    outcome = await ConversionJobMonitor(
        settings, httpx.MockTransport(lambda r: httpx.Response(200, content=body))
    ).wait(job, on_progress=updates.append)

    assert outcome == Ready(ASSET)
    assert job.status is JobStatus.ready
    assert job.asset_location == ASSET
    assert [u.terminal for u in updates] == [False, False, True]
    assert updates[-1].status == "ready"
    assert updates[-1].progress == 1.0


@pytest.mark.asyncio
async def test_observer_errors_are_ignored(settings):
    async def observer(update):
        raise RuntimeError("ui went away")

    job = _job(pollable_location=ASSET)
    outcome = await ConversionJobMonitor(
        settings, httpx.MockTransport(lambda r: httpx.Response(200)), sleep=_no_sleep
    ).wait(job, on_progress=observer)

    assert outcome == Ready(ASSET)
    assert job.status is JobStatus.ready


@pytest.mark.asyncio
async def test_exhausted_polling_marks_job_failed(settings):
    updates = []
    job = _job(pollable_location=ASSET)
    outcome = await ConversionJobMonitor(
        settings, httpx.MockTransport(_not_ready), sleep=_no_sleep
    ).wait(job, on_progress=updates.append, max_attempts=3)

    assert outcome.kind is FailureKind.exhausted
    assert job.status is JobStatus.failed
    assert job.failure == outcome
    assert updates[-1].terminal and updates[-1].status == "failed"


@pytest.mark.asyncio
async def test_ceiling_beats_remaining_attempts(fast_settings):
    job = _job(pollable_location=ASSET)
    monitor = ConversionJobMonitor(fast_settings, httpx.MockTransport(_not_ready))

    outcome = await monitor.wait(job, timeout=0.1, max_attempts=10_000)

    assert outcome.kind is FailureKind.timeout
    assert job.failure.kind is FailureKind.timeout


@pytest.mark.asyncio
async def test_cancel_event(fast_settings):
    job = _job(pollable_location=ASSET)
    cancel = asyncio.Event()
    monitor = ConversionJobMonitor(fast_settings, httpx.MockTransport(_not_ready))

    asyncio.get_running_loop().call_later(0.05, cancel.set)
    outcome = await monitor.wait(job, cancel=cancel, max_attempts=10_000)

    assert outcome.kind is FailureKind.cancelled
    assert job.status is JobStatus.failed


@pytest.mark.asyncio
async def test_task_cancellation_propagates(fast_settings):
    job = _job(pollable_location=ASSET)
    monitor = ConversionJobMonitor(fast_settings, httpx.MockTransport(_not_ready))

    task = asyncio.create_task(monitor.wait(job, max_attempts=10_000))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert job.status is JobStatus.failed
    assert job.failure.kind is FailureKind.cancelled


class HangingEventStream(httpx.AsyncByteStream):
    """One progress frame, then silence until closed."""

    def __init__(self):
        self.closed = False

    async def __aiter__(self):
        yield b'data: {"status": "processing", "progress": 0.2}\n\n'
        await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


def _hanging_sse():
    stream = HangingEventStream()

    def handler(request):
        return httpx.Response(200, headers={"content-type": "text/event-stream"}, stream=stream)

    return stream, httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_event_stream_cancel_closes_connection(settings):
    stream, transport = _hanging_sse()
    updates = []
    job = _job(notification_channel=SSE_URL)
    cancel = asyncio.Event()

    asyncio.get_running_loop().call_later(0.1, cancel.set)
    outcome = await ConversionJobMonitor(settings, transport).wait(
        job, cancel=cancel, on_progress=updates.append
    )

    assert outcome.kind is FailureKind.cancelled
    assert job.status is JobStatus.failed
    assert stream.closed
    assert updates[0].progress == 0.2
    assert updates[-1].terminal


@pytest.mark.asyncio
async def test_event_stream_respects_ceiling(settings):
    stream, transport = _hanging_sse()
    job = _job(notification_channel=SSE_URL)
    loop = asyncio.get_running_loop()

    t0 = loop.time()
    outcome = await ConversionJobMonitor(settings, transport).wait(job, timeout=0.2)

    assert outcome.kind is FailureKind.timeout
    assert loop.time() - t0 < 2.0
    assert job.failure.kind is FailureKind.timeout
    assert stream.closed
