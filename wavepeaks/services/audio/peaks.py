import math
from typing import List, Sequence

import numpy as np

# Peak arrays are kept as plain float lists at the API edge and as a small
# binary (int16) preview in the result store.


def normalize_peaks(peaks: Sequence[float]) -> List[float]:
    if len(peaks) == 0:
        return []
    arr = np.asarray(peaks, dtype=np.float64)
    top = float(np.max(np.abs(arr)))
    if top == 0.0:
        return arr.tolist()
    return (arr / top).tolist()


def resample_peaks(peaks: Sequence[float], target_length: int) -> List[float]:
    """Nearest-index resampling, no interpolation."""
    if target_length <= 0:
        raise ValueError(f"target_length must be positive, got {target_length}")
    if len(peaks) == 0:
        return []
    if len(peaks) == target_length:
        return list(peaks)
    ratio = len(peaks) / target_length
    return [peaks[min(len(peaks) - 1, math.floor(i * ratio))] for i in range(target_length)]


def encode_peak_preview(peaks: Sequence[float]) -> bytes:
    arr = np.clip(np.asarray(peaks, dtype=np.float64), -1.0, 1.0)
    return (arr * 32767.0).astype("<i2").tobytes()


def decode_peak_preview(blob: bytes) -> List[float]:
    if not blob:
        return []
    arr = np.frombuffer(blob, dtype="<i2").astype(np.float64) / 32767.0
    return arr.tolist()
