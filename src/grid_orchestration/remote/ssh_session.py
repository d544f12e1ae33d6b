"""
SSH access to the grid entrypoint.
Runs remote commands with streamed output and transfers files with scp.
Every operation spawns its own ssh/scp process; nothing is reused between calls.
"""

import os
import subprocess
import tempfile
import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional

from ..core.exceptions import RemoteConnectionError, RemoteExecError, TransferError
from ..core.models import Endpoint

# ssh and scp exit with 255 when the connection itself fails
SSH_CONNECTION_FAILED = 255


@dataclass(frozen=True)
class ExitStatus:
    """Close event of a remote command."""
    exit_code: Optional[int]
    signal: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.signal is None


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    status: ExitStatus

    @property
    def ok(self) -> bool:
        return self.status.ok

    @property
    def lines(self) -> List[str]:
        return self.stdout.split('\n')


class CommandStream:
    """Live output of one remote command.

    Iterating yields output chunks (one line each) as ssh produces them.
    close() waits for the process and returns its ExitStatus.
    """

    def __init__(self, process: subprocess.Popen, stderr_file, command: str,
                 timeout: Optional[float] = None):
        self._process = process
        self._stderr_file = stderr_file
        self._timeout = timeout
        self._status: Optional[ExitStatus] = None
        self.command = command
        self.stderr = ""

    def __iter__(self) -> Iterator[str]:
        if self._process.stdout is None:
            return
        for chunk in self._process.stdout:
            yield chunk

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> ExitStatus:
        if self._status is not None:
            return self._status

        try:
            returncode = self._process.wait(timeout=self._timeout)
        except subprocess.TimeoutExpired:
            self._process.kill()
            self._process.wait()
            self._collect_stderr()
            raise RemoteExecError(f"Timeout executing remote command: {self.command}")

        if self._process.stdout is not None:
            self._process.stdout.close()
        self._collect_stderr()

        # Negative return codes mean the local process died from a signal
        if returncode < 0:
            self._status = ExitStatus(exit_code=None, signal=-returncode)
        else:
            self._status = ExitStatus(exit_code=returncode)

        if returncode == SSH_CONNECTION_FAILED:
            raise RemoteConnectionError(
                f"SSH connection failed while running '{self.command}': {self.stderr.strip()}"
            )
        return self._status

    def _collect_stderr(self):
        if self._stderr_file is None:
            return
        self._stderr_file.seek(0)
        self.stderr = self._stderr_file.read()
        self._stderr_file.close()
        self._stderr_file = None


class RemoteSession:
    """Command execution and file transfer on the grid entrypoint.

    Authentication uses the SSH agent or an explicit key file. When the
    endpoint carries a password secret, ssh and scp are wrapped with
    `sshpass -e` and the secret travels in the SSHPASS environment variable.
    """

    def __init__(self, endpoint: Endpoint, timeout: Optional[float] = None):
        """Initialize the session for one entrypoint.

        Args:
            endpoint: Entrypoint host, port and login
            timeout: Optional per-call timeout in seconds (None waits forever)
        """
        self.logger = logging.getLogger(__name__)
        self.endpoint = endpoint
        self.timeout = timeout

        if not endpoint.host:
            raise RemoteConnectionError("Entrypoint host must be set (GRID_ENTRYPOINT_HOST)")
        if not endpoint.username:
            raise RemoteConnectionError("Entrypoint user must be set (GRID_ENTRYPOINT_USER)")

        self.ssh_target = endpoint.target

        # Disable host key checking, entrypoints are addressed by configuration
        self._ssh_options = ["-o", "StrictHostKeyChecking=no",
                             "-o", "UserKnownHostsFile=/dev/null"]
        if endpoint.key_path:
            self._ssh_options.extend(["-i", os.path.expanduser(endpoint.key_path)])
        if not endpoint.secret:
            self._ssh_options.extend(["-o", "BatchMode=yes"])

        self.logger.debug(f"Remote session for {self.ssh_target}:{endpoint.port}")

    @classmethod
    def connect(cls, endpoint: Endpoint, timeout: Optional[float] = None) -> "RemoteSession":
        return cls(endpoint, timeout=timeout)

    def _wrap(self, cmd: List[str]) -> List[str]:
        if self.endpoint.secret:
            return ["sshpass", "-e"] + cmd
        return cmd

    def _env(self) -> dict:
        env = os.environ.copy()
        if self.endpoint.secret:
            env["SSHPASS"] = self.endpoint.secret
        return env

    def _ssh_command(self, command: str) -> List[str]:
        cmd = ["ssh", "-p", str(self.endpoint.port)] + self._ssh_options
        cmd.append(self.ssh_target)
        cmd.append(command)
        return self._wrap(cmd)

    def _scp_command(self, source: str, destination: str) -> List[str]:
        cmd = ["scp", "-q", "-P", str(self.endpoint.port)] + self._ssh_options
        cmd.extend([source, destination])
        return self._wrap(cmd)

    def exec(self, command: str, stdin: Optional[str] = None) -> CommandStream:
        """Start a command on the entrypoint.

        Args:
            command: Shell command line to run remotely
            stdin: Optional text written to the command's stdin

        Returns:
            CommandStream yielding output lines; close() gives the exit status

        Raises:
            RemoteExecError: if the ssh process could not be started
        """
        self.logger.debug(f"Executing on {self.ssh_target}: {command}")
        stderr_file = tempfile.TemporaryFile(mode="w+")
        try:
            process = subprocess.Popen(
                self._ssh_command(command),
                stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=stderr_file,
                text=True,
                env=self._env()
            )
        except OSError as e:
            stderr_file.close()
            raise RemoteExecError(f"Could not start remote command '{command}': {e}")

        if stdin is not None:
            try:
                process.stdin.write(stdin)
                process.stdin.close()
            except OSError as e:
                self.logger.warning(f"Failed writing stdin for '{command}': {e}")

        return CommandStream(process, stderr_file, command, timeout=self.timeout)

    def run(self, command: str, stdin: Optional[str] = None) -> CommandResult:
        """Run a command to completion and collect its output."""
        stream = self.exec(command, stdin=stdin)
        chunks = []
        try:
            for chunk in stream:
                chunks.append(chunk)
        finally:
            status = stream.close()
        return CommandResult(stdout="".join(chunks), stderr=stream.stderr, status=status)

    def _transfer(self, source: str, destination: str, description: str):
        cmd = self._scp_command(source, destination)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self._env()
            )
        except subprocess.TimeoutExpired:
            raise TransferError(f"Timeout during {description}")
        except OSError as e:
            raise TransferError(f"Could not start scp for {description}: {e}")

        if result.returncode != 0:
            raise TransferError(f"Failed {description}: {result.stderr.strip()}")

    def push(self, local_path: str, remote_path: str):
        """Copy a local file to the entrypoint.

        Raises:
            TransferError: if the local file is missing or scp fails
        """
        if not os.path.isfile(local_path):
            raise TransferError(f"Local file not found: {local_path}")
        self.logger.debug(f"Pushing {local_path} -> {self.ssh_target}:{remote_path}")
        self._transfer(str(local_path), f"{self.ssh_target}:{remote_path}",
                       f"push {local_path} -> {remote_path}")

    def pull(self, remote_path: str, local_path: str):
        """Copy a file from the entrypoint to the local host.

        Raises:
            TransferError: if scp fails
        """
        parent = os.path.dirname(os.path.abspath(local_path))
        os.makedirs(parent, exist_ok=True)
        self.logger.debug(f"Pulling {self.ssh_target}:{remote_path} -> {local_path}")
        self._transfer(f"{self.ssh_target}:{remote_path}", str(local_path),
                       f"pull {remote_path} -> {local_path}")
