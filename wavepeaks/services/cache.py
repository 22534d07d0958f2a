from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wavepeaks.core.logging import logger
from wavepeaks.db.models.audio_cache import AudioCache
from wavepeaks.db.models.processing_job import ProcessingJob
from wavepeaks.services.audio.models import PeaksResult, PeaksSource
from wavepeaks.services.audio.peaks import decode_peak_preview, encode_peak_preview
from wavepeaks.services.conversion.models import ConversionJob, Failed, FailureKind, utcnow


def as_utc(dt: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


@dataclass
class CachedPeaks:
    video_id: str
    quality: str
    peaks: list
    duration: float | None
    source: str | None
    audio_url: str | None
    metadata: Dict[str, Any]
    created_at: datetime | None

    def to_dict(self) -> dict:
        return {
            "videoId": self.video_id,
            "quality": self.quality,
            "peaks": self.peaks,
            "duration": self.duration,
            "source": self.source,
            "audioUrl": self.audio_url,
            "metadata": self.metadata,
            "cachedAt": self.created_at.isoformat() if self.created_at else None,
        }


def _to_cached(row: AudioCache) -> CachedPeaks:
    return CachedPeaks(
        video_id=row.video_id,
        quality=row.quality,
        peaks=decode_peak_preview(row.peak_preview),
        duration=row.duration,
        source=row.source,
        audio_url=row.audio_url,
        metadata=row.meta or {},
        created_at=as_utc(row.created_at),
    )


class ResultStore:
    """
    Peaks cache and job ledger.

    Write helpers swallow database errors after logging them: the pipeline
    must finish even when the store is down.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    # ── cache ─────────────────────────────────────────────────────
    def get_peaks(self, video_id: str, quality: str) -> Optional[CachedPeaks]:
        with self._session_factory() as db:
            row = db.execute(
                select(AudioCache).where(AudioCache.video_id == video_id, AudioCache.quality == quality)
            ).scalar_one_or_none()
            return _to_cached(row) if row else None

    def put_peaks(
        self,
        video_id: str,
        quality: str,
        result: PeaksResult,
        audio_url: str | None,
        metadata: Dict[str, Any] | None = None,
    ) -> bool:
        try:
            with self._session_factory() as db:
                row = db.execute(
                    select(AudioCache).where(AudioCache.video_id == video_id, AudioCache.quality == quality)
                ).scalar_one_or_none()
                if row is None:
                    row = AudioCache(video_id=video_id, quality=quality, created_at=utcnow())
                    db.add(row)
                row.audio_url = audio_url
                row.peak_preview = encode_peak_preview(result.peaks)
                row.peak_count = result.length
                row.duration = result.duration_seconds
                row.source = result.source.value
                row.meta = metadata or {}
                row.updated_at = utcnow()
                db.commit()
            logger.info(f"[cache] stored {result.length} peaks video={video_id} quality={quality}")
            return True
        except SQLAlchemyError as e:
            logger.error(f"[cache] insert failed video={video_id}: {e}")
            return False

    def delete_peaks(self, video_id: str) -> int:
        with self._session_factory() as db:
            res = db.execute(delete(AudioCache).where(AudioCache.video_id == video_id))
            db.commit()
            return res.rowcount or 0

    def stats(self) -> dict:
        since = utcnow() - timedelta(hours=24)
        with self._session_factory() as db:
            total = db.execute(select(func.count()).select_from(AudioCache)).scalar_one()
            recent = db.execute(
                select(func.count()).select_from(AudioCache).where(AudioCache.created_at >= since)
            ).scalar_one()
        return {"totalProcessed": total, "processedLast24h": recent}

    def ping(self) -> bool:
        try:
            with self._session_factory() as db:
                db.execute(select(func.count()).select_from(AudioCache).limit(1))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"[cache] ping failed: {e}")
            return False

    # ── job ledger ────────────────────────────────────────────────
    def record_job(self, job: ConversionJob, youtube_url: str, rq_job_id: str | None = None) -> None:
        with self._session_factory() as db:
            db.add(ProcessingJob(
                job_id=job.id,
                video_id=job.video_id,
                youtube_url=youtube_url,
                quality=job.quality.value,
                status="converting",
                sse_url=job.notification_channel,
                download_url=job.asset_location or job.pollable_location,
                rq_job_id=rq_job_id,
                meta={**job.metadata, "upstreamStatus": job.status.value},
                started_at=job.started_at,
            ))
            db.commit()

    def attach_rq_job(self, job_id: str, rq_job_id: str) -> None:
        with self._session_factory() as db:
            row = db.execute(select(ProcessingJob).where(ProcessingJob.job_id == job_id)).scalar_one_or_none()
            if row is not None:
                row.rq_job_id = rq_job_id
                db.commit()

    def get_job(self, job_id: str) -> Optional[ProcessingJob]:
        with self._session_factory() as db:
            return db.execute(select(ProcessingJob).where(ProcessingJob.job_id == job_id)).scalar_one_or_none()

    def update_job_progress(self, job_id: str, status: str, progress: float | None) -> None:
        try:
            with self._session_factory() as db:
                row = db.execute(select(ProcessingJob).where(ProcessingJob.job_id == job_id)).scalar_one_or_none()
                if row is None:
                    return
                row.meta = {
                    **(row.meta or {}),
                    "progress": progress or 0,
                    "status": status,
                    "lastUpdate": utcnow().isoformat(),
                }
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"[cache] progress update failed job={job_id}: {e}")

    def complete_job(self, job_id: str, download_url: str, source: PeaksSource) -> None:
        try:
            with self._session_factory() as db:
                row = db.execute(select(ProcessingJob).where(ProcessingJob.job_id == job_id)).scalar_one_or_none()
                if row is None:
                    return
                row.status = "completed"
                row.download_url = download_url
                row.peaks_generated = True
                row.peaks_source = source.value
                row.completed_at = utcnow()
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"[cache] job update failed job={job_id}: {e}")

    def fail_job(self, job_id: str, failure: Failed) -> None:
        try:
            with self._session_factory() as db:
                row = db.execute(select(ProcessingJob).where(ProcessingJob.job_id == job_id)).scalar_one_or_none()
                if row is None:
                    return
                row.status = "cancelled" if failure.kind is FailureKind.cancelled else "failed"
                row.error_message = failure.message or failure.kind.value
                row.completed_at = utcnow()
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"[cache] job update failed job={job_id}: {e}")
