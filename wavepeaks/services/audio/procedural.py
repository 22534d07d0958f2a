"""
Deterministic placeholder waveforms.

Used when the real asset can't be fetched or sampled. The same
(seed key, byte length, count) always yields the same peaks, and different
videos get visibly different shapes.
"""
from typing import Callable, Dict

import numpy as np

DEFAULT_BYTE_LENGTH = 1_000_000
DEFAULT_SEED_KEY = "default"
SEED_MODULUS = 10000
FADE_FRACTION = 0.05
BURST_PROBABILITY = 0.05


def string_hash(text: str) -> int:
    """32-bit signed rolling hash: h = h * 31 + code, wrapped."""
    h = 0
    for ch in text:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def derive_seed(seed_key: str | None, byte_length: int | None = None) -> int:
    key = seed_key or DEFAULT_SEED_KEY
    length = byte_length if byte_length else DEFAULT_BYTE_LENGTH
    return abs(string_hash(key) + length) % SEED_MODULUS


# ── pattern families ──────────────────────────────────────────────
# Each takes (progress, index, seed, rng) and returns raw amplitudes.

def smooth_wave(progress: np.ndarray, index: np.ndarray, seed: int, rng: np.random.Generator) -> np.ndarray:
    amp = 0.3 + 0.5 * np.sin(progress * np.pi * 6 + seed * 0.001)
    return amp + 0.2 * np.sin(progress * np.pi * 20 + seed * 0.002)


def sharp_peaks(progress: np.ndarray, index: np.ndarray, seed: int, rng: np.random.Generator) -> np.ndarray:
    amp = 0.2 + 0.6 * np.abs(np.sin(progress * np.pi * 12 + seed * 0.001))
    return amp * (1 + 0.3 * np.sin(progress * np.pi * 40 + seed * 0.003))


def gradual_build(progress: np.ndarray, index: np.ndarray, seed: int, rng: np.random.Generator) -> np.ndarray:
    amp = 0.1 + 0.7 * progress * np.sin(progress * np.pi * 8 + seed * 0.001)
    return amp + 0.3 * rng.random(progress.size) * (seed % 100) / 100


def random_spiky(progress: np.ndarray, index: np.ndarray, seed: int, rng: np.random.Generator) -> np.ndarray:
    amp = 0.2 + 0.5 * np.sin(progress * np.pi * 3 + seed * 0.001)
    return np.where((index + seed) % 20 < 3, amp * 1.8, amp)


PatternFn = Callable[[np.ndarray, np.ndarray, int, np.random.Generator], np.ndarray]

PATTERNS: Dict[int, PatternFn] = {
    0: smooth_wave,
    1: sharp_peaks,
    2: gradual_build,
    3: random_spiky,
}


def pattern_for(seed: int) -> PatternFn:
    return PATTERNS[seed % len(PATTERNS)]


def apply_fade(amplitude: np.ndarray, progress: np.ndarray) -> np.ndarray:
    fade_in = progress < FADE_FRACTION
    fade_out = progress > 1 - FADE_FRACTION
    out = amplitude.copy()
    out[fade_in] *= progress[fade_in] / FADE_FRACTION
    out[fade_out] *= (1 - progress[fade_out]) / FADE_FRACTION
    return out


def generate_waveform(seed: int, count: int) -> np.ndarray:
    if count <= 0:
        return np.zeros(0, dtype=np.float64)

    rng = np.random.default_rng(seed)
    index = np.arange(count)
    progress = index / count

    amplitude = pattern_for(seed)(progress, index, seed, rng)

    # position-locked jitter, then a few seeded bursts (drums, loud sections)
    jitter = ((seed + index) % 1000) / 1000
    amplitude = amplitude + (jitter - 0.5) * 0.3
    bursts = rng.random(count) < BURST_PROBABILITY
    amplitude = amplitude + np.where(bursts, rng.random(count) * 0.4, 0.0)

    amplitude = apply_fade(amplitude, progress)
    return np.clip(amplitude, -1.0, 1.0)
