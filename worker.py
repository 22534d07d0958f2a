from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Callable, List

from redis import Redis
from rq import Queue, Worker
from rq.logutils import setup_loghandlers

from wavepeaks.core.config import settings
from wavepeaks.db.session import SessionLocal, init_db
from wavepeaks.services.cache import ResultStore
from wavepeaks.services.conversion.models import Failed, FailureKind


def queue_names(raw: str) -> List[str]:
    return [q.strip() for q in str(raw).split(",") if q.strip()]


def failure_recorder(store: ResultStore) -> Callable:
    """
    RQ exception handler: a pipeline that died outside its own error
    handling (for example in the ledger lookup before it starts) still
    leaves a failed processing_jobs row instead of one stuck in `converting`.
    """

    def record(job, exc_type, exc_value, traceback) -> bool:
        job_id = job.args[0] if job.args else None
        if job_id is None:
            return True
        row = store.get_job(job_id)
        if row is not None and row.status == "converting":
            logging.warning("Pipeline %s died (%s); marking job failed", job_id, exc_type.__name__)
            store.fail_job(job_id, Failed(FailureKind.upstream_failure, f"{exc_type.__name__}: {exc_value}"))
        # keep RQ's default handling (failed job registry)
        return True

    return record


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="wavepeaks pipeline worker")
    p.add_argument(
        "--queues",
        default=settings.RQ_QUEUE,
        help="Comma-separated queue names (default: settings.RQ_QUEUE)",
    )
    p.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log verbosity",
    )
    p.add_argument(
        "--burst",
        action="store_true",
        help="Drain the queues, then exit",
    )
    p.add_argument(
        "--max-jobs",
        type=int,
        default=None,
        help="Exit after this many pipelines (lets a supervisor recycle the process)",
    )
    return p.parse_args(argv)


def main(argv: List[str] | None = None):
    args = parse_args(argv)

    setup_loghandlers(level=args.log_level)
    logging.getLogger().setLevel(args.log_level)

    qnames = queue_names(args.queues)
    if not settings.REDIS_URL or not qnames:
        logging.error("REDIS_URL and at least one queue are required")
        sys.exit(1)

    # pipelines write to processing_jobs / audio_cache
    init_db()

    redis_conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker(
        [Queue(name, connection=redis_conn) for name in qnames],
        connection=redis_conn,
        name=os.environ.get("WORKER_NAME"),
        exception_handlers=[failure_recorder(ResultStore(SessionLocal))],
    )
    logging.info(
        "wavepeaks worker %s started. queues=%s, burst=%s, max_jobs=%s, scratch=%s",
        worker.name, qnames, args.burst, args.max_jobs, settings.SCRATCH_DIR,
    )

    # RQ installs its own SIGINT/SIGTERM handlers: the first signal lets the
    # running pipeline finish, the second one kills it
    worker.work(with_scheduler=False, burst=args.burst, max_jobs=args.max_jobs)
    logging.info("Worker %s exited.", worker.name)


if __name__ == "__main__":
    main()
