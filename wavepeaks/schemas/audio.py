from pydantic import BaseModel
from typing import Any, Dict, List

class ProcessRequest(BaseModel):
    youtube_url: str
    quality: str = "medium"

class PeaksOut(BaseModel):
    videoId: str
    quality: str
    peaks: List[float]
    duration: float | None = None
    source: str | None = None
    audioUrl: str | None = None
    metadata: Dict[str, Any] = {}
    cachedAt: str | None = None

class ProcessOut(BaseModel):
    success: bool = True
    cached: bool = False
    status: str
    videoId: str
    quality: str
    jobId: str | None = None
    rqJobId: str | None = None
    metadata: Dict[str, Any] = {}
    data: PeaksOut | None = None

class JobStatusOut(BaseModel):
    success: bool = True
    jobId: str
    status: str
    videoId: str
    quality: str
    startedAt: str | None = None
    completedAt: str | None = None
    error: str | None = None
    progress: float | None = None
    estimatedTimeRemaining: int | None = None
    data: PeaksOut | None = None

class StatsOut(BaseModel):
    success: bool = True
    totalProcessed: int
    processedLast24h: int
    converterConfigured: bool
