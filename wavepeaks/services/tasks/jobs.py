from __future__ import annotations

import asyncio
import time

from wavepeaks.core.config import settings
from wavepeaks.core.logging import logger
from wavepeaks.db.session import SessionLocal
from wavepeaks.services.audio.extraction import WaveformExtractionEngine
from wavepeaks.services.cache import ResultStore, as_utc
from wavepeaks.services.conversion.models import ConversionJob, Failed, FailureKind, Quality, utcnow
from wavepeaks.services.conversion.monitor import ConversionJobMonitor
from wavepeaks.services.tasks.pipeline import run_pipeline


def rebuild_job(row) -> ConversionJob:
    meta = dict(row.meta or {})
    upstream_status = meta.pop("upstreamStatus", None)
    job = ConversionJob(
        id=row.job_id,
        video_id=row.video_id,
        quality=Quality(row.quality),
        notification_channel=row.sse_url,
        pollable_location=row.download_url,
        metadata=meta,
        started_at=as_utc(row.started_at) or utcnow(),
    )
    # upstream said the asset was ready at submission time
    if upstream_status == "ready" and row.download_url:
        job.mark_ready(row.download_url)
    return job


def process_conversion_job(job_id: str) -> dict:
    """
    RQ entry point (sync). Waits for the conversion, extracts peaks and
    caches them. Logs each stage with elapsed time.
    """
    store = ResultStore(SessionLocal)
    t0 = time.time()

    def dt() -> str:
        return f"{time.time() - t0:.2f}s"

    logger.info(f"[jobs] job={job_id} START")
    row = store.get_job(job_id)
    if row is None:
        logger.error(f"[jobs] job {job_id} not found, ABORT total={dt()}")
        return {"job_id": job_id, "status": "missing"}

    try:
        job = rebuild_job(row)
        outcome = asyncio.run(run_pipeline(
            job,
            ConversionJobMonitor(settings),
            WaveformExtractionEngine(settings),
            store=store,
            max_attempts=settings.BACKGROUND_POLL_MAX_ATTEMPTS,
        ))
    except Exception as e:
        logger.exception(f"[jobs] job={job_id} FAILED: {e} total={dt()}")
        store.fail_job(job_id, Failed(FailureKind.upstream_failure, str(e)))
        raise

    if not outcome.ok:
        logger.warning(
            f"[jobs] job={job_id} monitor failed kind={outcome.failure.kind.value} total={dt()}"
        )
        raise outcome.failure.as_error()

    logger.info(
        f"[jobs] job={job_id} COMPLETE source={outcome.peaks.source.value} "
        f"peaks={outcome.peaks.length} total={dt()}"
    )
    return {
        "job_id": job_id,
        "status": "completed",
        "source": outcome.peaks.source.value,
        "peaks": outcome.peaks.length,
        "timings": outcome.timings,
    }
