import httpx
import numpy as np
import pytest

from wavepeaks.services.audio.extraction import WaveformExtractionEngine
from wavepeaks.services.audio.models import PeaksSource

ASSET = "https://cdn.test/audio.mp3"


def _body(size: int) -> bytes:
    return np.random.default_rng(1).integers(0, 256, size=size, dtype=np.uint8).tobytes()


def _engine(settings, handler):
    return WaveformExtractionEngine(settings, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_sampled_peaks_from_asset(settings):
    body = _body(3_000_000)
    engine = _engine(settings, lambda request: httpx.Response(200, content=body))

    result = await engine.extract(ASSET, seed="dQw4w9WgXcQ")

    assert result.source is PeaksSource.sampled
    assert result.duration_seconds == 150.0
    assert result.length == 150
    assert all(0.0 <= p <= 1.0 for p in result.peaks)
    assert result.to_dict()["sampleRate"] == 44100


@pytest.mark.asyncio
async def test_unreachable_asset_falls_back(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = await _engine(settings, handler).extract(ASSET, seed="dQw4w9WgXcQ")

    assert result.source is PeaksSource.synthetic
    assert result.duration_seconds == 50.0
    assert result.length == 100
    assert all(-1.0 <= p <= 1.0 for p in result.peaks)


@pytest.mark.asyncio
async def test_http_error_falls_back_deterministically(settings):
    engine = _engine(settings, lambda request: httpx.Response(404))

    first = await engine.extract(ASSET, seed="abc")
    second = await engine.extract(ASSET, seed="abc")

    assert first.source is PeaksSource.synthetic
    assert first.peaks == second.peaks


@pytest.mark.asyncio
async def test_empty_body_falls_back(settings):
    result = await _engine(settings, lambda request: httpx.Response(200, content=b"")).extract(ASSET)
    assert result.source is PeaksSource.synthetic


@pytest.mark.asyncio
async def test_oversize_asset_uses_received_length(settings):
    settings.FETCH_MAX_BYTES = 1000
    engine = _engine(settings, lambda request: httpx.Response(200, content=_body(5000)))

    result = await engine.extract(ASSET, seed="abc")

    assert result.source is PeaksSource.synthetic
    assert result.byte_length == 5000
    assert result.peaks == engine.fallback("abc", 5000).peaks


@pytest.mark.asyncio
async def test_bad_location_falls_back(settings):
    def handler(request):
        raise httpx.UnsupportedProtocol("Request URL has an unsupported protocol 'ftp://'.")

    result = await _engine(settings, handler).extract("ftp://cdn.test/audio.mp3", seed="abc")
    assert result.source is PeaksSource.synthetic


@pytest.mark.asyncio
async def test_sampler_error_falls_back(settings, monkeypatch):
    engine = _engine(settings, lambda request: httpx.Response(200, content=_body(4000)))

    def broken(data):
        raise RuntimeError("sampler exploded")

    monkeypatch.setattr(engine, "sample", broken)
    result = await engine.extract(ASSET, seed="abc")

    assert result.source is PeaksSource.synthetic
    assert result.byte_length == 4000


@pytest.mark.asyncio
async def test_undecodable_bytes_use_byte_sampling(settings):
    settings.PEAKS_DECODE = True
    engine = _engine(settings, lambda request: httpx.Response(200, content=_body(600_000)))

    result = await engine.extract(ASSET)

    assert result.source is PeaksSource.sampled
    assert result.length == 100


@pytest.mark.asyncio
async def test_scratch_released_on_every_path(settings):
    opened = []

    class Tracking(WaveformExtractionEngine):
        def _scratch(self):
            f = super()._scratch()
            opened.append(f)
            return f

    ok = Tracking(settings, transport=httpx.MockTransport(lambda r: httpx.Response(200, content=_body(4000))))
    bad = Tracking(settings, transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    await ok.extract(ASSET)
    await bad.extract(ASSET)

    assert len(opened) == 2
    assert all(f.closed for f in opened)
