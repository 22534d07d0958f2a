from __future__ import annotations

import asyncio
import tempfile
from typing import IO

import httpx

from wavepeaks.core.config import Settings, settings as default_settings
from wavepeaks.core.logging import logger
from wavepeaks.core.perf import StageTimer
from wavepeaks.services.audio.models import PeaksResult, PeaksSource
from wavepeaks.services.audio.procedural import DEFAULT_BYTE_LENGTH, derive_seed, generate_waveform
from wavepeaks.services.audio.sampler import (
    decode_peaks,
    estimate_duration,
    sample_bytes,
    target_peak_count,
)

# Spool to disk once the download grows past this.
SPOOL_MAX_MEMORY = 8 * 1024 * 1024


class FetchError(Exception):
    def __init__(self, message: str, received: int = 0):
        super().__init__(message)
        self.received = received


class WaveformExtractionEngine:
    """
    Download a finished asset and turn it into peaks.

    `extract` always returns a PeaksResult. Fetch or sampling problems
    downgrade the result to a synthetic waveform; only task cancellation
    escapes.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or default_settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=httpx.Timeout(self.settings.FETCH_TIMEOUT_S, connect=10.0),
            headers={"User-Agent": self.settings.USER_AGENT},
            follow_redirects=True,
        )

    def _scratch(self) -> IO[bytes]:
        return tempfile.SpooledTemporaryFile(
            max_size=SPOOL_MAX_MEMORY,
            mode="w+b",
            dir=self.settings.SCRATCH_DIR,
            suffix=".mp3",
        )

    async def extract(self, asset_location: str, seed: str | None = None) -> PeaksResult:
        timer = StageTimer("extract")
        received: int | None = None

        with self._scratch() as scratch:
            try:
                received = await self._fetch(asset_location, scratch)
                timer.mark("downloaded", bytes=received)
            except FetchError as e:
                logger.warning(f"[extract] fetch failed url={asset_location!r}: {e}")
                return self.fallback(seed, e.received or None)
            except Exception as e:
                logger.exception(f"[extract] unexpected fetch error url={asset_location!r}: {e}")
                return self.fallback(seed, None)

            if received == 0:
                logger.warning(f"[extract] empty body url={asset_location!r}")
                return self.fallback(seed, None)

            try:
                scratch.seek(0)
                data = scratch.read()
                result = self.sample(data)
                timer.end("sampled", peaks=result.length)
                return result
            except Exception as e:
                logger.exception(f"[extract] sampling failed ({received} bytes): {e}")
                return self.fallback(seed, received)

    async def _fetch(self, url: str, sink: IO[bytes]) -> int:
        limit = self.settings.FETCH_MAX_BYTES
        received = 0
        try:
            async with asyncio.timeout(self.settings.FETCH_TIMEOUT_S):
                async with self._client() as client:
                    async with client.stream("GET", url) as response:
                        if response.status_code >= 400:
                            raise FetchError(f"HTTP {response.status_code}")
                        async for chunk in response.aiter_bytes():
                            received += len(chunk)
                            if received > limit:
                                raise FetchError(f"asset exceeds {limit} bytes", received)
                            sink.write(chunk)
        except TimeoutError:
            raise FetchError(f"fetch exceeded {self.settings.FETCH_TIMEOUT_S}s", received) from None
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as e:
            raise FetchError(f"{type(e).__name__}: {e}", received) from e
        return received

    def sample(self, data: bytes) -> PeaksResult:
        duration = estimate_duration(len(data))
        count = target_peak_count(duration, self.settings.PEAKS_MIN, self.settings.PEAKS_MAX)

        peaks = None
        if self.settings.PEAKS_DECODE:
            try:
                peaks = decode_peaks(data, count)
            except (RuntimeError, ValueError) as e:
                logger.info(f"[extract] decode unavailable, using byte sampling: {e}")
        if peaks is None:
            peaks = sample_bytes(data, count, stride=self.settings.SAMPLE_STRIDE)

        logger.info(f"[extract] {count} peaks from {len(data)} bytes ({duration:.0f}s estimated)")
        return PeaksResult(
            peaks=peaks.tolist(),
            duration_seconds=duration,
            source=PeaksSource.sampled,
            byte_length=len(data),
        )

    def fallback(self, seed: str | None, byte_length: int | None) -> PeaksResult:
        length = byte_length or DEFAULT_BYTE_LENGTH
        duration = estimate_duration(length)
        count = target_peak_count(duration, self.settings.PEAKS_MIN, self.settings.PEAKS_MAX)
        numeric_seed = derive_seed(seed, length)
        logger.info(
            f"[extract] synthetic waveform pattern={numeric_seed % 4} seed={numeric_seed} key={seed!r}"
        )
        return PeaksResult(
            peaks=generate_waveform(numeric_seed, count).tolist(),
            duration_seconds=duration,
            source=PeaksSource.synthetic,
            byte_length=byte_length,
        )
