import os
import tempfile

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_ENV: str = "dev"

    # browser extension front end + local dev; FRONTEND_URL is added when set
    FRONTEND_URL: str = ""
    CORS_ORIGIN_REGEX: str = r"^(chrome-extension|moz-extension)://[\w-]+$|^https?://localhost(:\d+)?$"
    LOG_LEVEL: str = "INFO"
    PERF_LOGS: bool = False

    REDIS_URL: str = "redis://localhost:6379/0"
    RQ_QUEUE: str = "waveforms"
    JOB_TIMEOUT_S: int = 60 * 15

    DATABASE_URL: str = "sqlite:///./data/wavepeaks.db"
    STORAGE_DIR: str = "./data"
    SCRATCH_DIR: str = os.path.join(tempfile.gettempdir(), "wavepeaks")

    # upstream conversion service (RapidAPI style)
    CONVERTER_API_KEY: str = ""
    CONVERTER_API_HOST: str = "youtube-cdn-progress.p.rapidapi.com"
    CONVERTER_BASE_URL: str = "https://youtube-cdn-progress.p.rapidapi.com"
    SUBMIT_TIMEOUT_S: float = 30.0
    USER_AGENT: str = "wavepeaks/1.0"

    # completion detection
    MONITOR_TIMEOUT_S: float = 300.0
    POLL_BASE_MS: int = 1000
    POLL_CAP_MS: int = 5000
    POLL_MAX_ATTEMPTS: int = 30
    BACKGROUND_POLL_MAX_ATTEMPTS: int = 20
    PROBE_TIMEOUT_S: float = 10.0

    # extraction
    FETCH_TIMEOUT_S: float = 120.0
    FETCH_MAX_BYTES: int = 50 * 1024 * 1024
    SAMPLE_STRIDE: int = 20
    PEAKS_MIN: int = 100
    PEAKS_MAX: int = 200
    PEAKS_DECODE: bool = False

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
os.makedirs(settings.STORAGE_DIR, exist_ok=True)
os.makedirs(settings.SCRATCH_DIR, exist_ok=True)
