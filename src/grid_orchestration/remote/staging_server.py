"""
GASS staging server on the entrypoint. Workers pull staged inputs from it
and push their results back to it.
"""

import logging
from typing import Optional

from ..core.exceptions import GridError, StagingError
from .ssh_session import RemoteSession

logger = logging.getLogger(__name__)


class StagingServer:
    """Starts and stops globus-gass-server on the entrypoint.

    There is no guard against double starts or stopping an inactive server;
    callers sequence the calls. `active` and `port` mirror local belief only,
    and stop() does not confirm the process actually exited.
    """

    def __init__(self, session: RemoteSession):
        self.session = session
        self.active = False
        self.port: Optional[int] = None

    def has_gass(self) -> bool:
        return self.active

    def _run(self, command: str, step: str):
        try:
            result = self.session.run(command)
        except GridError as e:
            raise StagingError(f"{command} failed: {e}", step=step) from e

        if not result.ok:
            raise StagingError(
                f"{command} exited with {result.status.exit_code}: {result.stderr.strip()}",
                step=step
            )

    def start(self, port: int):
        """Start a read/write GASS server in the background on `port`."""
        port = int(port)
        command = f"nohup globus-gass-server -r -w -p {port} > /dev/null 2>&1 &"
        self._run(command, step="staging-start")
        self.active = True
        self.port = port
        logger.debug(f"GASS server started on port {port}")

    def stop(self):
        """Kill every GASS server running on the entrypoint."""
        self._run("kill -9 $(pidof globus-gass-server)", step="staging-stop")
        self.active = False
        self.port = None
