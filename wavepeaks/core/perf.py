from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List

from wavepeaks.core.config import settings
from wavepeaks.core.logging import logger


@dataclass
class StageMark:
    label: str
    delta_ms: float
    total_ms: float
    extras: Dict[str, Any] = field(default_factory=dict)


class StageTimer:
    """
    Lightweight stage timer.

        timer = StageTimer("extract")
        timer.mark("downloaded")
        timer.end("done")

    Marks are always recorded; they are only logged when PERF_LOGS is on
    (or enabled=True is passed).
    """

    def __init__(self, name: str, enabled: bool | None = None):
        self.name = name
        self.enabled = settings.PERF_LOGS if enabled is None else enabled
        self.started = time.perf_counter()
        self._last = self.started
        self.marks: List[StageMark] = []

    def mark(self, label: str, **extras: Any) -> StageMark:
        now = time.perf_counter()
        entry = StageMark(
            label=label,
            delta_ms=(now - self._last) * 1000.0,
            total_ms=(now - self.started) * 1000.0,
            extras=extras,
        )
        self.marks.append(entry)
        if self.enabled:
            logger.info(
                f"[perf] {self.name} - {label}: +{entry.delta_ms:.0f}ms (total {entry.total_ms:.0f}ms)"
            )
        self._last = now
        return entry

    def end(self, label: str = "end", **extras: Any) -> StageMark:
        return self.mark(label, **extras)

    def summary(self) -> dict:
        return {
            "name": self.name,
            "marks": [m.__dict__ for m in self.marks],
        }
