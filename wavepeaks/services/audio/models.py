import enum
from dataclasses import dataclass, field
from typing import List

# Descriptive constants handed to the renderer; they are not measured.
SAMPLE_RATE = 44100
CHANNEL_COUNT = 2
BIT_DEPTH = 16


class PeaksSource(str, enum.Enum):
    sampled = "sampled"
    synthetic = "synthetic"


@dataclass
class PeaksResult:
    peaks: List[float]
    duration_seconds: float
    source: PeaksSource
    sample_rate: int = SAMPLE_RATE
    channel_count: int = CHANNEL_COUNT
    bit_depth: int = BIT_DEPTH
    byte_length: int | None = field(default=None, compare=False)

    @property
    def length(self) -> int:
        return len(self.peaks)

    def to_dict(self) -> dict:
        return {
            "peaks": list(self.peaks),
            "duration": self.duration_seconds,
            "sampleRate": self.sample_rate,
            "channels": self.channel_count,
            "bits": self.bit_depth,
            "length": self.length,
            "source": self.source.value,
        }
