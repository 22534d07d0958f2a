from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from wavepeaks.core.errors import (
    Cancelled,
    InvalidInput,
    InvalidTransition,
    MonitorTimeout,
    UpstreamRejected,
    UpstreamUnavailable,
    WavepeaksError,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Quality(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


class JobStatus(str, enum.Enum):
    pending = "pending"
    converting = "converting"
    ready = "ready"
    failed = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.ready, JobStatus.failed)


_RANK = {
    JobStatus.pending: 0,
    JobStatus.converting: 1,
    JobStatus.ready: 2,
    JobStatus.failed: 2,
}


class FailureKind(str, enum.Enum):
    timeout = "timeout"
    connection_lost = "connection-lost"
    upstream_failure = "upstream-failure"
    exhausted = "exhausted"
    cancelled = "cancelled"
    invalid_location = "invalid-location"


@dataclass(frozen=True)
class Ready:
    asset_location: str


@dataclass(frozen=True)
class Failed:
    kind: FailureKind
    message: str = ""

    def as_error(self) -> WavepeaksError:
        text = self.message or self.kind.value
        if self.kind is FailureKind.timeout:
            return MonitorTimeout(text)
        if self.kind is FailureKind.cancelled:
            return Cancelled(text)
        if self.kind is FailureKind.upstream_failure:
            return UpstreamRejected(text)
        if self.kind is FailureKind.invalid_location:
            return InvalidInput(text)
        return UpstreamUnavailable(text)


MonitorOutcome = Union[Ready, Failed]


@dataclass(frozen=True)
class ProgressUpdate:
    job_id: str
    status: str
    progress: Optional[float] = None
    terminal: bool = False
    detail: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConversionJob:
    id: str
    video_id: str
    quality: Quality
    notification_channel: Optional[str] = None
    pollable_location: Optional[str] = None
    status: JobStatus = JobStatus.pending
    asset_location: Optional[str] = None
    failure: Optional[Failed] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.notification_channel and not self.pollable_location:
            raise InvalidInput(
                f"job {self.id} has neither a notification channel nor a pollable location"
            )
        self.quality = Quality(self.quality)
        self.status = JobStatus(self.status)

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    def _move(self, target: JobStatus) -> None:
        if self.status.terminal or _RANK[target] < _RANK[self.status]:
            raise InvalidTransition(f"job {self.id}: {self.status.value} -> {target.value}")
        self.status = target

    def mark_converting(self) -> None:
        if self.status is JobStatus.converting:
            return
        self._move(JobStatus.converting)

    def mark_ready(self, asset_location: str) -> None:
        if not asset_location:
            raise InvalidInput(f"job {self.id}: ready requires an asset location")
        self._move(JobStatus.ready)
        self.asset_location = asset_location
        self.completed_at = utcnow()

    def mark_failed(self, failure: Failed) -> None:
        self._move(JobStatus.failed)
        self.failure = failure
        self.completed_at = utcnow()

    def settle(self, outcome: MonitorOutcome) -> None:
        if isinstance(outcome, Ready):
            self.mark_ready(outcome.asset_location)
        else:
            self.mark_failed(outcome)
