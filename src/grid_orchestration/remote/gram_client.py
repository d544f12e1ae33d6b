"""
Job submission and status queries through the entrypoint's Globus GRAM tools.
"""

import shlex
import logging

from ..core.exceptions import GridError, PollError, SubmissionError
from .ssh_session import RemoteSession

logger = logging.getLogger(__name__)


class GramClient:
    """Thin wrapper over globusrun and globus-job-status."""

    def __init__(self, session: RemoteSession):
        self.session = session

    def submit(self, description_path: str, host: str) -> str:
        """Submit a batch job described by an RSL file on the entrypoint.

        Args:
            description_path: RSL file path on the entrypoint
            host: Worker host the job runs on

        Returns:
            Job handle (contact URI) used for status queries
        """
        command = f"globusrun -q -b -r {shlex.quote(host)} -f {shlex.quote(description_path)}"
        try:
            result = self.session.run(command)
        except GridError as e:
            raise SubmissionError(f"globusrun failed: {e}", step="submit", host=host) from e

        if not result.ok:
            raise SubmissionError(
                f"globusrun exited with {result.status.exit_code}: {result.stderr.strip()}",
                step="submit", host=host
            )

        handle = result.lines[0].strip()
        if not handle:
            raise SubmissionError("globusrun returned no job handle", step="submit", host=host)

        logger.debug(f"Submitted {description_path} to {host}: {handle}")
        return handle

    def status(self, handle: str) -> str:
        """Query a job's current status token (first output line)."""
        command = f"globus-job-status {shlex.quote(handle)}"
        try:
            result = self.session.run(command)
        except GridError as e:
            raise PollError(f"globus-job-status failed: {e}", step="poll") from e

        if not result.ok:
            raise PollError(
                f"globus-job-status exited with {result.status.exit_code}: {result.stderr.strip()}",
                step="poll"
            )

        status = result.lines[0].strip()
        if not status:
            raise PollError(f"Empty status for {handle}", step="poll")
        return status
