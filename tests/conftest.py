import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from wavepeaks.core.config import Settings
from wavepeaks.db.session import init_db
from wavepeaks.services.cache import ResultStore


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        SCRATCH_DIR=str(tmp_path),
        CONVERTER_API_KEY="test-key",
        CONVERTER_BASE_URL="https://converter.test",
        POLL_BASE_MS=1000,
        POLL_CAP_MS=5000,
        MONITOR_TIMEOUT_S=5.0,
    )


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return ResultStore(session_factory)
