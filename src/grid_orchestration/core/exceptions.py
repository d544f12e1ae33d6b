"""
Error taxonomy for grid runs.

Every failure raised by the remote layer or the orchestrator derives from
GridError so the CLI can tell an aborted run apart from a programming error.
PollError is the only class the orchestrator recovers from.
"""

from typing import Optional


class GridError(RuntimeError):
    """Base class for all grid run failures.

    Args:
        message: Human readable description
        step: Run step that failed (e.g. 'submit', 'stage-in')
        host: Worker host involved, if any
    """

    def __init__(self, message: str, step: Optional[str] = None, host: Optional[str] = None):
        super().__init__(message)
        self.step = step
        self.host = host

    def describe(self) -> str:
        """Message prefixed with the failed step and host when known."""
        parts = []
        if self.step:
            parts.append(f"[{self.step}]")
        if self.host:
            parts.append(f"({self.host})")
        parts.append(str(self))
        return " ".join(parts)


class RemoteConnectionError(GridError):
    """The SSH channel to the entrypoint could not be opened."""


class RemoteExecError(GridError):
    """A remote command could not be started."""


class TransferError(GridError):
    """A file push or pull failed."""


class AuthError(GridError):
    """Grid proxy creation or destruction failed."""


class StagingError(GridError):
    """The GASS staging server could not be started or stopped."""


class SubmissionError(GridError):
    """A job could not be submitted to a worker."""


class PollError(GridError):
    """A job status query failed. Recoverable: retried on the next tick."""


class RenderError(GridError):
    """A job description template is malformed."""


class JobFailedError(GridError):
    """One or more jobs ended in the FAILED state."""

    def __init__(self, message: str, failed_hosts=None, step: Optional[str] = "poll"):
        super().__init__(message, step=step)
        self.failed_hosts = list(failed_hosts or [])


class AggregationError(GridError):
    """The external post-processing command failed."""
