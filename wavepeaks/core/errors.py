class WavepeaksError(Exception):
    """Base class for errors surfaced at the pipeline boundary."""


class InvalidInput(WavepeaksError):
    """Malformed identifier, URL or job handle."""


class InvalidTransition(InvalidInput):
    """A job status change that would move backwards or leave a terminal state."""


class UpstreamUnavailable(WavepeaksError):
    """Transport-level failure reaching the conversion or asset endpoint."""


class UpstreamRejected(WavepeaksError):
    """The conversion service answered with an explicit failure."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class MonitorTimeout(WavepeaksError):
    pass


class Cancelled(WavepeaksError):
    pass
