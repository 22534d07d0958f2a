from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from wavepeaks.core.config import settings
from wavepeaks.db.base import Base


def make_engine(url: str) -> Engine:
    kwargs = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        # API threads and the worker share one sqlite file
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_recycle"] = 28000
    return create_engine(url, **kwargs)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def init_db(bind: Engine | None = None) -> None:
    # register tables on Base.metadata
    from wavepeaks.db.models import audio_cache, processing_job  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
