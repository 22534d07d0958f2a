from __future__ import annotations

import re
import time
from typing import Any, Dict
from urllib.parse import parse_qs, urlparse

import httpx

from wavepeaks.core.config import Settings, settings as default_settings
from wavepeaks.core.errors import InvalidInput, UpstreamRejected, UpstreamUnavailable
from wavepeaks.core.logging import logger
from wavepeaks.core.perf import StageTimer
from wavepeaks.services.conversion.models import ConversionJob, JobStatus, Quality

VIDEO_ID_RE = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?)/|.*[?&]v=)|youtu\.be/)([^\"&?/\s]{11})"
)
VIDEO_ID_LEN = 11

QUALITY_TO_API = {
    Quality.low: "128kbps",
    Quality.medium: "192kbps",
    Quality.high: "320kbps",
}

READY_STATUSES = {"completed", "ready", "done"}
FAILED_STATUSES = {"error", "failed"}


def extract_video_id(url: str) -> str | None:
    if not url:
        return None
    match = VIDEO_ID_RE.search(url)
    return match.group(1) if match else None


def map_quality(quality: str | Quality) -> str:
    try:
        return QUALITY_TO_API[Quality(quality)]
    except ValueError:
        return QUALITY_TO_API[Quality.medium]


def _token_from(progress_link: str | None) -> str | None:
    if not progress_link:
        return None
    values = parse_qs(urlparse(progress_link).query).get("token")
    return values[0] if values else None


def parse_job_response(data: Dict[str, Any], video_id: str, quality: Quality) -> ConversionJob:
    """
    Normalise the conversion API response into a ConversionJob.

    Keys used: linkDownloadProgress (event stream, carries ?token=),
    linkDownload (pollable asset), linkStream, title, lengthSeconds, author,
    viewCount, keywords, shortDescription, thumbnail, channelId, isPrivate and
    an optional status.
    """
    if not isinstance(data, dict):
        raise UpstreamRejected("Unexpected response shape from conversion API")
    if data.get("error"):
        raise UpstreamRejected(f"Conversion API error: {data['error']}")

    status = str(data.get("status") or "").lower()
    if status in FAILED_STATUSES:
        raise UpstreamRejected(str(data.get("message") or "Conversion rejected by upstream"))

    progress_link = data.get("linkDownloadProgress")
    download_link = data.get("linkDownload")
    if not progress_link and not download_link:
        raise UpstreamRejected("Conversion API returned no progress or download link")

    token = _token_from(progress_link) or f"{video_id}_{int(time.time() * 1000)}"
    thumbnails = (data.get("thumbnail") or {}).get("thumbnails") or []

    try:
        duration = float(data.get("lengthSeconds")) if data.get("lengthSeconds") is not None else None
    except (TypeError, ValueError):
        duration = None

    job = ConversionJob(
        id=token,
        video_id=data.get("videoId") or video_id,
        quality=quality,
        notification_channel=progress_link,
        pollable_location=download_link,
        status=JobStatus.converting,
        metadata={
            "title": data.get("title") or "Unknown Title",
            "author": data.get("author"),
            "viewCount": data.get("viewCount"),
            "keywords": data.get("keywords"),
            "description": data.get("shortDescription"),
            "thumbnail": thumbnails[0].get("url") if thumbnails else None,
            "channelId": data.get("channelId"),
            "isPrivate": data.get("isPrivate"),
            "duration": duration,
            "streamUrl": data.get("linkStream"),
        },
    )
    if status in READY_STATUSES and download_link:
        job.mark_ready(download_link)
    return job


def _rejection_for(status: int, message: str) -> Exception:
    if status == 429:
        return UpstreamRejected("Rate limit exceeded. Please try again later.", status)
    if status == 403:
        return UpstreamRejected("API access forbidden. Check your converter API key.", status)
    if status == 404:
        return UpstreamRejected("Video not found or unavailable.", status)
    if status >= 500:
        return UpstreamUnavailable("Conversion service temporarily unavailable.")
    return UpstreamRejected(f"Conversion API error ({status}): {message}", status)


class JobInitiator:
    """Submit a conversion request and hand back a ConversionJob."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or default_settings
        self._transport = transport

    async def start(self, youtube_url: str, quality: str | Quality = Quality.medium) -> ConversionJob:
        timer = StageTimer("initiator.start")
        if not self.settings.CONVERTER_API_KEY:
            raise UpstreamUnavailable("Converter API key not configured")

        video_id = extract_video_id(youtube_url)
        if not video_id or len(video_id) != VIDEO_ID_LEN:
            raise InvalidInput("Invalid YouTube URL")
        try:
            quality = Quality(quality)
        except ValueError:
            raise InvalidInput(f"Unsupported quality: {quality!r}") from None

        api_quality = map_quality(quality)
        logger.info(f"[initiator] starting conversion video={video_id} quality={api_quality}")
        timer.mark("validated")

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                base_url=self.settings.CONVERTER_BASE_URL,
                timeout=self.settings.SUBMIT_TIMEOUT_S,
                headers={
                    "X-RapidAPI-Key": self.settings.CONVERTER_API_KEY,
                    "X-RapidAPI-Host": self.settings.CONVERTER_API_HOST,
                    "User-Agent": self.settings.USER_AGENT,
                },
            ) as client:
                response = await client.post(
                    "/audio",
                    params={"id": video_id, "quality": api_quality, "ext": "mp3"},
                    json={"id": video_id, "quality": api_quality, "ext": "mp3"},
                )
        except httpx.TimeoutException:
            raise UpstreamUnavailable("Request timeout. The video might be too long to process.") from None
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Conversion API unreachable: {type(e).__name__}") from e
        timer.mark("api response", status=response.status_code)

        if response.status_code >= 400:
            try:
                message = response.json().get("message") or response.reason_phrase
            except (ValueError, AttributeError):
                message = response.reason_phrase
            raise _rejection_for(response.status_code, message)

        try:
            data = response.json()
        except ValueError:
            raise UpstreamRejected("Conversion API returned a non-JSON body") from None
        if not data:
            raise UpstreamRejected("No response data from conversion API")

        job = parse_job_response(data, video_id, quality)
        timer.end("parsed job")
        logger.info(
            f"[initiator] job={job.id} video={job.video_id} status={job.status.value} "
            f"sse={bool(job.notification_channel)} poll={bool(job.pollable_location)}"
        )
        return job
