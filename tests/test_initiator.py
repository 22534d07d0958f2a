import httpx
import pytest

from wavepeaks.core.errors import InvalidInput, UpstreamRejected, UpstreamUnavailable
from wavepeaks.services.conversion.initiator import (
    JobInitiator,
    extract_video_id,
    map_quality,
    parse_job_response,
)
from wavepeaks.services.conversion.models import JobStatus, Quality

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

RESPONSE = {
    "linkDownloadProgress": "https://converter.test/progress?token=abc123",
    "linkDownload": "https://cdn.test/dQw4w9WgXcQ.mp3",
    "linkStream": "https://cdn.test/stream",
    "title": "Never Gonna Give You Up",
    "lengthSeconds": "213",
    "author": "Rick Astley",
    "viewCount": "1500000000",
    "thumbnail": {"thumbnails": [{"url": "https://img.test/1.jpg"}]},
    "channelId": "UCuAXFkgsw1L7xaCfnd5JJOw",
    "isPrivate": False,
}


def _initiator(settings, handler):
    return JobInitiator(settings, transport=httpx.MockTransport(handler))


def test_video_id_extraction():
    assert extract_video_id(URL) == "dQw4w9WgXcQ"
    assert extract_video_id("https://youtu.be/dQw4w9WgXcQ?t=10") == "dQw4w9WgXcQ"
    assert extract_video_id("https://www.youtube.com/embed/dQw4w9WgXcQ") == "dQw4w9WgXcQ"
    assert extract_video_id("https://example.com/watch") is None


def test_quality_mapping():
    assert map_quality("low") == "128kbps"
    assert map_quality(Quality.high) == "320kbps"
    assert map_quality("lossless") == "192kbps"


def test_parse_response_builds_converting_job():
    job = parse_job_response(RESPONSE, "dQw4w9WgXcQ", Quality.medium)
    assert job.id == "abc123"
    assert job.status is JobStatus.converting
    assert job.notification_channel == RESPONSE["linkDownloadProgress"]
    assert job.pollable_location == RESPONSE["linkDownload"]
    assert job.metadata["title"] == "Never Gonna Give You Up"
    assert job.metadata["duration"] == 213.0
    assert job.metadata["thumbnail"] == "https://img.test/1.jpg"


def test_parse_response_ready_and_synthesised_token():
    data = {"status": "done", "linkDownload": "https://cdn.test/a.mp3"}
    job = parse_job_response(data, "dQw4w9WgXcQ", Quality.low)
    assert job.status is JobStatus.ready
    assert job.asset_location == "https://cdn.test/a.mp3"
    assert job.id.startswith("dQw4w9WgXcQ_")
    assert job.metadata["title"] == "Unknown Title"


@pytest.mark.parametrize("data", [
    {"status": "failed", "linkDownload": "https://cdn.test/a.mp3"},
    {"error": "video is private"},
    {"title": "no links"},
])
def test_parse_response_rejections(data):
    with pytest.raises(UpstreamRejected):
        parse_job_response(data, "dQw4w9WgXcQ", Quality.medium)


@pytest.mark.asyncio
async def test_start_sends_rapidapi_request(settings):
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["key"] = request.headers["x-rapidapi-key"]
        return httpx.Response(200, json=RESPONSE)

    job = await _initiator(settings, handler).start(URL, "high")

    assert seen == {
        "method": "POST",
        "path": "/audio",
        "params": {"id": "dQw4w9WgXcQ", "quality": "320kbps", "ext": "mp3"},
        "key": "test-key",
    }
    assert job.quality is Quality.high
    assert job.video_id == "dQw4w9WgXcQ"


@pytest.mark.asyncio
async def test_start_validates_input(settings):
    initiator = _initiator(settings, lambda r: httpx.Response(200, json=RESPONSE))
    with pytest.raises(InvalidInput):
        await initiator.start("https://example.com/nope")
    with pytest.raises(InvalidInput):
        await initiator.start(URL, "ultra")


@pytest.mark.asyncio
async def test_start_without_key(settings):
    settings.CONVERTER_API_KEY = ""
    with pytest.raises(UpstreamUnavailable):
        await _initiator(settings, lambda r: httpx.Response(200, json=RESPONSE)).start(URL)


@pytest.mark.asyncio
@pytest.mark.parametrize("status,error,code", [
    (429, UpstreamRejected, 429),
    (403, UpstreamRejected, 403),
    (404, UpstreamRejected, 404),
    (400, UpstreamRejected, 400),
    (502, UpstreamUnavailable, None),
])
async def test_http_error_mapping(settings, status, error, code):
    initiator = _initiator(settings, lambda r: httpx.Response(status, json={"message": "nope"}))
    with pytest.raises(error) as exc:
        await initiator.start(URL)
    assert getattr(exc.value, "status_code", None) == code


@pytest.mark.asyncio
async def test_transport_failures_are_unavailable(settings):
    def timeout(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UpstreamUnavailable):
        await _initiator(settings, timeout).start(URL)


@pytest.mark.asyncio
async def test_non_json_body_rejected(settings):
    initiator = _initiator(settings, lambda r: httpx.Response(200, content=b"<html>"))
    with pytest.raises(UpstreamRejected):
        await initiator.start(URL)
