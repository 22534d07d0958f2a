from functools import lru_cache

from rq import Queue
from redis import Redis

from wavepeaks.core.config import Settings, settings
from wavepeaks.core.logging import logger
from wavepeaks.services.conversion.models import ConversionJob

RESULT_TTL_S = 60 * 60
FAILURE_TTL_S = 24 * 60 * 60
# slack for rebuild, sampling and cache writes around the timed stages
PIPELINE_SLACK_S = 60


@lru_cache(maxsize=1)
def get_queue() -> Queue:
    return Queue(settings.RQ_QUEUE, connection=Redis.from_url(settings.REDIS_URL))


def pipeline_timeout(cfg: Settings = settings) -> int:
    """RQ must never kill a pipeline before the monitor ceiling and fetch budget run out."""
    needed = cfg.MONITOR_TIMEOUT_S + cfg.FETCH_TIMEOUT_S + PIPELINE_SLACK_S
    return int(max(cfg.JOB_TIMEOUT_S, needed))


def enqueue_pipeline(job: ConversionJob) -> str:
    # imported here to avoid a cycle with the worker-side module
    from wavepeaks.services.tasks.jobs import process_conversion_job

    rq_job = get_queue().enqueue(
        process_conversion_job,
        job.id,
        job_timeout=pipeline_timeout(),
        result_ttl=RESULT_TTL_S,
        failure_ttl=FAILURE_TTL_S,
        description=f"waveform pipeline job={job.id} video={job.video_id} quality={job.quality.value}",
        meta={
            "video_id": job.video_id,
            "quality": job.quality.value,
            "upstream_status": job.status.value,
            "strategy": "event-stream" if job.notification_channel else "polling",
        },
    )
    logger.info(f"[queue] job={job.id} enqueued rq={rq_job.get_id()} queue={settings.RQ_QUEUE}")
    return rq_job.get_id()
