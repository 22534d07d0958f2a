from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from wavepeaks.core.config import settings
from wavepeaks.core.logging import logger
from wavepeaks.db.session import init_db
from wavepeaks.api.routes.audio import router as audio_router
from wavepeaks.api.routes.health import router as health_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("DB tables ensured.")
    yield


app = FastAPI(title="Waveform peaks API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in [settings.FRONTEND_URL] if o],
    allow_origin_regex=settings.CORS_ORIGIN_REGEX or None,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

app.include_router(audio_router, prefix="/audio", tags=["audio"])
app.include_router(health_router, tags=["health"])
