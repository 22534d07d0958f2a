"""
Byte-stream amplitude approximation.

Compressed audio bytes are treated as if they were raw 8-bit amplitude. This is
far cheaper than decoding and good enough for a coarse waveform, which is all
the renderer needs.
"""
import io
import math

import numpy as np
import soundfile as sf

BYTES_PER_SECOND = 20000  # ~160kbps average
MIN_DURATION_S = 30.0
MAX_DURATION_S = 600.0
MIN_PEAKS = 100
MAX_PEAKS = 200
DEFAULT_STRIDE = 20
BYTE_CENTER = 128


def estimate_duration(byte_length: int) -> float:
    return float(min(MAX_DURATION_S, max(MIN_DURATION_S, byte_length / BYTES_PER_SECOND)))


def target_peak_count(duration_s: float, lo: int = MIN_PEAKS, hi: int = MAX_PEAKS) -> int:
    return int(min(hi, max(lo, math.floor(duration_s))))


def smooth_peaks(peaks: np.ndarray, radius: int = 1) -> np.ndarray:
    """Moving average over [i-radius, i+radius], window clipped at both ends."""
    peaks = np.asarray(peaks, dtype=np.float64)
    if peaks.size == 0 or radius <= 0:
        return peaks.copy()
    n = peaks.size
    csum = np.concatenate(([0.0], np.cumsum(peaks)))
    idx = np.arange(n)
    lo = np.maximum(0, idx - radius)
    hi = np.minimum(n, idx + radius + 1)
    return (csum[hi] - csum[lo]) / (hi - lo)


def sample_bytes(data: bytes, n_peaks: int, stride: int = DEFAULT_STRIDE) -> np.ndarray:
    """
    Chunked RMS over every `stride`-th byte.

    The buffer is split into n_peaks chunks of len(data) // n_peaks bytes (any
    remainder at the tail is ignored). Returns n_peaks values in [0, 1],
    already smoothed.
    """
    if n_peaks <= 0:
        raise ValueError(f"n_peaks must be positive, got {n_peaks}")
    if stride <= 0:
        raise ValueError(f"stride must be positive, got {stride}")

    raw = np.frombuffer(data, dtype=np.uint8)
    chunk = raw.size // n_peaks
    if chunk == 0:
        return np.zeros(n_peaks, dtype=np.float64)

    grid = raw[: chunk * n_peaks].reshape(n_peaks, chunk)[:, ::stride]
    centered = grid.astype(np.float64) - BYTE_CENTER
    rms = np.sqrt(np.mean(centered * centered, axis=1))
    normalized = np.clip(rms / BYTE_CENTER, 0.0, 1.0)
    return np.clip(smooth_peaks(normalized), 0.0, 1.0)


def decode_peaks(data: bytes, n_peaks: int) -> np.ndarray:
    """
    Decode-based alternative to sample_bytes: same cardinality, range and
    smoothing. Raises whatever soundfile raises when the bytes don't decode.
    """
    samples, _sr = sf.read(io.BytesIO(data), dtype="float32", always_2d=False)
    if samples.ndim > 1:
        samples = samples.mean(axis=1)
    if samples.size == 0:
        raise ValueError("decoded stream is empty")

    chunk = max(1, samples.size // n_peaks)
    out = np.zeros(n_peaks, dtype=np.float64)
    for i in range(n_peaks):
        window = samples[i * chunk:(i + 1) * chunk]
        if window.size:
            out[i] = float(np.sqrt(np.mean(np.square(window, dtype=np.float64))))
    return np.clip(smooth_peaks(out), 0.0, 1.0)
