from datetime import timedelta

import pytest

from wavepeaks.db.models.audio_cache import AudioCache
from wavepeaks.services.audio.models import PeaksResult, PeaksSource
from wavepeaks.services.conversion.models import ConversionJob, Failed, FailureKind, utcnow

RESULT = PeaksResult(peaks=[0.0, 0.25, 0.5, 1.0], duration_seconds=42.0, source=PeaksSource.sampled)


def _job(**kw):
    kw.setdefault("notification_channel", "https://converter.test/progress?token=tok")
    return ConversionJob(id="tok", video_id="dQw4w9WgXcQ", quality="medium", metadata={"title": "x"}, **kw)


def test_peaks_round_trip(store):
    assert store.get_peaks("dQw4w9WgXcQ", "medium") is None
    assert store.put_peaks("dQw4w9WgXcQ", "medium", RESULT, "https://cdn.test/a.mp3", {"title": "x"})

    cached = store.get_peaks("dQw4w9WgXcQ", "medium")
    assert cached.peaks == pytest.approx(RESULT.peaks, abs=1e-4)
    assert cached.duration == 42.0
    assert cached.source == "sampled"
    assert cached.to_dict()["audioUrl"] == "https://cdn.test/a.mp3"
    assert cached.created_at.tzinfo is not None
    assert store.get_peaks("dQw4w9WgXcQ", "high") is None


def test_put_peaks_upserts(store):
    store.put_peaks("dQw4w9WgXcQ", "medium", RESULT, None)
    store.put_peaks("dQw4w9WgXcQ", "medium", PeaksResult([0.1], 30.0, PeaksSource.synthetic), None)

    cached = store.get_peaks("dQw4w9WgXcQ", "medium")
    assert cached.source == "synthetic"
    assert store.stats()["totalProcessed"] == 1


def test_delete_and_stats(store, session_factory):
    store.put_peaks("dQw4w9WgXcQ", "low", RESULT, None)
    store.put_peaks("dQw4w9WgXcQ", "high", RESULT, None)
    store.put_peaks("aaaaaaaaaaa", "low", RESULT, None)
    with session_factory() as db:
        old = db.query(AudioCache).filter_by(video_id="aaaaaaaaaaa").one()
        old.created_at = utcnow() - timedelta(days=3)
        db.commit()

    assert store.stats() == {"totalProcessed": 3, "processedLast24h": 2}
    assert store.delete_peaks("dQw4w9WgXcQ") == 2
    assert store.stats()["totalProcessed"] == 1
    assert store.ping()


def test_job_ledger(store):
    store.record_job(_job(), "https://youtu.be/dQw4w9WgXcQ")
    store.attach_rq_job("tok", "rq-1")
    store.update_job_progress("tok", "processing", 0.4)

    row = store.get_job("tok")
    assert row.status == "converting"
    assert row.rq_job_id == "rq-1"
    assert row.meta["progress"] == 0.4
    assert row.meta["title"] == "x"
    assert row.meta["upstreamStatus"] == "pending"

    store.complete_job("tok", "https://cdn.test/a.mp3", PeaksSource.synthetic)
    row = store.get_job("tok")
    assert row.status == "completed"
    assert row.peaks_generated is True
    assert row.peaks_source == "synthetic"
    assert row.completed_at is not None


def test_failed_and_cancelled_jobs(store):
    store.record_job(_job(), "https://youtu.be/dQw4w9WgXcQ")
    store.fail_job("tok", Failed(FailureKind.cancelled))
    assert store.get_job("tok").status == "cancelled"
    assert store.get_job("tok").error_message == "cancelled"

    store.fail_job("missing", Failed(FailureKind.timeout, "too slow"))
    assert store.get_job("missing") is None
