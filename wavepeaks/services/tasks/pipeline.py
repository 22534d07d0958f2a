from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from wavepeaks.core.logging import logger
from wavepeaks.core.perf import StageTimer
from wavepeaks.services.audio.extraction import WaveformExtractionEngine
from wavepeaks.services.audio.models import PeaksResult
from wavepeaks.services.cache import ResultStore
from wavepeaks.services.conversion.models import ConversionJob, Failed, ProgressUpdate, Ready, utcnow
from wavepeaks.services.conversion.monitor import ConversionJobMonitor, ProgressObserver


@dataclass
class PipelineOutcome:
    job: ConversionJob
    peaks: Optional[PeaksResult] = None
    failure: Optional[Failed] = None
    timings: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.peaks is not None


async def run_pipeline(
    job: ConversionJob,
    monitor: ConversionJobMonitor,
    engine: WaveformExtractionEngine,
    store: ResultStore | None = None,
    on_progress: ProgressObserver | None = None,
    cancel: asyncio.Event | None = None,
    timeout: float | None = None,
    max_attempts: int | None = None,
) -> PipelineOutcome:
    """
    monitor -> extract -> cache for a single job.

    Monitor failures come back as `failure`; extraction never fails, it
    only downgrades to a synthetic waveform. Store problems are logged.
    """
    timer = StageTimer(f"pipeline {job.id}")

    async def observe(update: ProgressUpdate):
        if store is not None and not update.terminal:
            await asyncio.to_thread(store.update_job_progress, job.id, update.status, update.progress)
        if on_progress is not None:
            result = on_progress(update)
            if asyncio.iscoroutine(result):
                await result

    outcome = await monitor.wait(
        job, timeout=timeout, on_progress=observe, cancel=cancel, max_attempts=max_attempts
    )
    timer.mark("monitor", outcome=type(outcome).__name__)

    if isinstance(outcome, Failed):
        if store is not None:
            await asyncio.to_thread(store.fail_job, job.id, outcome)
        return PipelineOutcome(job=job, failure=outcome, timings=timer.summary())

    assert isinstance(outcome, Ready)
    peaks = await engine.extract(outcome.asset_location, seed=job.video_id)
    timer.mark("extract", source=peaks.source.value, peaks=peaks.length)

    job.metadata.update({
        "duration": peaks.duration_seconds,
        "sampleRate": peaks.sample_rate,
        "channels": peaks.channel_count,
        "processedAt": utcnow().isoformat(),
    })

    if store is not None:
        await asyncio.to_thread(
            store.put_peaks, job.video_id, job.quality.value, peaks, outcome.asset_location, job.metadata
        )
        await asyncio.to_thread(store.complete_job, job.id, outcome.asset_location, peaks.source)

    timer.end("done")
    logger.info(
        f"[pipeline] job={job.id} video={job.video_id} peaks={peaks.length} source={peaks.source.value}"
    )
    return PipelineOutcome(job=job, peaks=peaks, timings=timer.summary())
