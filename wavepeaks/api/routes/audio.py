from fastapi import APIRouter, Depends, HTTPException, Response
from redis.exceptions import RedisError
from starlette.status import HTTP_200_OK, HTTP_202_ACCEPTED
from typing import Callable
import asyncio

from wavepeaks.core.config import settings
from wavepeaks.core.errors import InvalidInput, UpstreamRejected, UpstreamUnavailable, WavepeaksError
from wavepeaks.core.logging import logger
from wavepeaks.api.deps import get_enqueuer, get_initiator, get_store
from wavepeaks.schemas.audio import JobStatusOut, PeaksOut, ProcessOut, ProcessRequest, StatsOut
from wavepeaks.services.cache import ResultStore, as_utc
from wavepeaks.services.conversion.initiator import JobInitiator, extract_video_id
from wavepeaks.services.conversion.models import ConversionJob, Failed, FailureKind, Quality, utcnow

router = APIRouter()

# average conversion time used for the remaining-time estimate
AVERAGE_CONVERSION_S = 90


def _http_error(e: WavepeaksError) -> HTTPException:
    if isinstance(e, InvalidInput):
        return HTTPException(400, str(e))
    if isinstance(e, UpstreamRejected):
        code = e.status_code if e.status_code in (403, 404, 429) else 502
        return HTTPException(code, str(e))
    if isinstance(e, UpstreamUnavailable):
        return HTTPException(503, str(e))
    return HTTPException(500, str(e))


def _quality(value: str) -> Quality:
    try:
        return Quality(value)
    except ValueError:
        raise HTTPException(400, "Invalid quality. Must be: low, medium, or high") from None


def _iso(dt) -> str | None:
    dt = as_utc(dt)
    return dt.isoformat() if dt else None


# ------- endpoint -------
@router.post("/process", response_model=ProcessOut, status_code=HTTP_202_ACCEPTED)
async def process_audio(
    req: ProcessRequest,
    response: Response,
    store: ResultStore = Depends(get_store),
    initiator: JobInitiator = Depends(get_initiator),
    enqueue: Callable[[ConversionJob], str] = Depends(get_enqueuer),
):
    quality = _quality(req.quality)
    video_id = extract_video_id(req.youtube_url)
    if not video_id:
        raise HTTPException(400, "Invalid YouTube URL")

    cached = await asyncio.to_thread(store.get_peaks, video_id, quality.value)
    if cached is not None:
        logger.info(f"[api] cache hit video={video_id} quality={quality.value}")
        response.status_code = HTTP_200_OK
        return ProcessOut(
            cached=True,
            status="completed",
            videoId=video_id,
            quality=quality.value,
            metadata=cached.metadata,
            data=cached.to_dict(),
        )

    try:
        job = await initiator.start(req.youtube_url, quality)
    except WavepeaksError as e:
        logger.warning(f"[api] conversion start failed video={video_id}: {e}")
        raise _http_error(e) from e

    await asyncio.to_thread(store.record_job, job, req.youtube_url)
    try:
        rq_job_id = await asyncio.to_thread(enqueue, job)
    except RedisError as e:
        logger.error(f"[api] enqueue failed job={job.id}: {e}")
        await asyncio.to_thread(
            store.fail_job, job.id, Failed(FailureKind.connection_lost, "job queue unavailable")
        )
        raise HTTPException(503, "Job queue unavailable") from e
    await asyncio.to_thread(store.attach_rq_job, job.id, rq_job_id)

    return ProcessOut(
        status="processing",
        videoId=job.video_id,
        quality=quality.value,
        jobId=job.id,
        rqJobId=rq_job_id,
        metadata=job.metadata,
    )


@router.get("/status/{job_id}", response_model=JobStatusOut)
async def job_status(job_id: str, store: ResultStore = Depends(get_store)):
    row = await asyncio.to_thread(store.get_job, job_id)
    if row is None:
        raise HTTPException(404, "Job not found")

    meta = row.meta or {}
    out = JobStatusOut(
        jobId=row.job_id,
        status=row.status,
        videoId=row.video_id,
        quality=row.quality,
        startedAt=_iso(row.started_at),
        completedAt=_iso(row.completed_at),
        progress=meta.get("progress"),
    )

    if row.status in ("failed", "cancelled"):
        out.error = row.error_message
    elif row.status == "converting":
        started = as_utc(row.started_at) or utcnow()
        elapsed = (utcnow() - started).total_seconds()
        out.estimatedTimeRemaining = max(0, int(AVERAGE_CONVERSION_S - elapsed))
    elif row.status == "completed":
        cached = await asyncio.to_thread(store.get_peaks, row.video_id, row.quality)
        if cached is not None:
            out.data = PeaksOut(**cached.to_dict())
    return out


@router.get("/peaks/{video_id}")
async def get_peaks(video_id: str, quality: str = "medium", store: ResultStore = Depends(get_store)):
    quality = _quality(quality)
    cached = await asyncio.to_thread(store.get_peaks, video_id, quality.value)
    if cached is None:
        raise HTTPException(404, "Peaks not found in cache")
    return {"success": True, "data": cached.to_dict()}


@router.delete("/cache/{video_id}")
async def clear_cache(video_id: str, store: ResultStore = Depends(get_store)):
    removed = await asyncio.to_thread(store.delete_peaks, video_id)
    logger.info(f"[api] cleared cache video={video_id} rows={removed}")
    return {"success": True, "message": f"Cache cleared for video {video_id}", "removed": removed}


@router.get("/stats", response_model=StatsOut)
async def stats(store: ResultStore = Depends(get_store)):
    counts = await asyncio.to_thread(store.stats)
    return StatsOut(
        totalProcessed=counts["totalProcessed"],
        processedLast24h=counts["processedLast24h"],
        converterConfigured=bool(settings.CONVERTER_API_KEY),
    )
