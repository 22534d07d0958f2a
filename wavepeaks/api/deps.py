from typing import Callable

from wavepeaks.core.config import settings
from wavepeaks.db.session import SessionLocal
from wavepeaks.services.cache import ResultStore
from wavepeaks.services.conversion.initiator import JobInitiator
from wavepeaks.services.conversion.models import ConversionJob


def get_store() -> ResultStore:
    return ResultStore(SessionLocal)


def get_initiator() -> JobInitiator:
    return JobInitiator(settings)


def get_enqueuer() -> Callable[[ConversionJob], str]:
    # redis is only touched when a job is actually enqueued
    from wavepeaks.services.tasks.queue import enqueue_pipeline
    return enqueue_pipeline
