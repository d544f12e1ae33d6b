"""
Pytest configuration and shared fixtures for grid orchestration tests.

No test opens a real SSH connection: the remote layer is replaced by mocks
or subprocess is patched.
"""

import pytest
import sys
from pathlib import Path
from unittest.mock import MagicMock

# Add src to path so tests can import modules without an install
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from grid_orchestration.core.models import Credential, Endpoint, Identity
from grid_orchestration.core.settings import GridSettings
from grid_orchestration.jobs.renderer import JobSpecRenderer
from grid_orchestration.jobs.workload import Workload
from grid_orchestration.remote.ssh_session import CommandResult, ExitStatus


BASE_TEMPLATE = (
    "&(count=$COUNT)\n"
    " (executable=$EXEC)\n"
    " (arguments=$ARGS)\n"
    " (file_stage_in=((https://$HOST:$PORT/tmp/$INFILE $INFILE)))\n"
    " (file_stage_out=(($OUTFILE https://$HOST:$PORT/tmp/$OUTFILE)))\n"
)

HOSTS = ["node0.grid", "node1.grid", "node2.grid"]


def command_result(stdout: str = "", stderr: str = "", exit_code: int = 0) -> CommandResult:
    """Build the CommandResult a mocked session.run returns."""
    return CommandResult(stdout=stdout, stderr=stderr, status=ExitStatus(exit_code=exit_code))


@pytest.fixture
def make_result():
    return command_result


@pytest.fixture
def endpoint():
    return Endpoint(host="grid.example.org", port=2222, username="griduser")


@pytest.fixture
def mock_session(endpoint):
    """Mock RemoteSession: every command succeeds with empty output."""
    session = MagicMock()
    session.endpoint = endpoint
    session.run.return_value = command_result()
    session.push.return_value = None
    session.pull.return_value = None
    return session


@pytest.fixture
def settings(tmp_path):
    return GridSettings(
        _env_file=None,
        entrypoint_host="grid.example.org",
        entrypoint_port=2222,
        entrypoint_user="griduser",
        proxy_key_path="/home/griduser/.globus/userkey.pem",
        proxy_cert_path="/home/griduser/.globus/usercert.pem",
        proxy_passphrase="secret",
        staging_port=44000,
        poll_interval=0,
        etc_dir=tmp_path / "etc",
        work_dir=tmp_path / "work",
    )


@pytest.fixture
def renderer():
    return JobSpecRenderer(BASE_TEMPLATE)


@pytest.fixture
def workload():
    return Workload(
        name="montecarlo",
        count=1,
        executable="/usr/bin/octave",
        arguments="-q montecarlo.m",
        input_file="montecarlo.m",
        output_file="result_{index}.dlm",
    )


@pytest.fixture
def input_file(tmp_path):
    path = tmp_path / "montecarlo.m"
    path.write_text("disp(pi)\n")
    return path


@pytest.fixture
def mock_proxy_manager():
    """Mock ProxyManager tracking the active flag like the real one."""
    proxy = MagicMock()
    proxy.active = False

    def _init(key, cert, passphrase):
        proxy.active = True
        return Credential(identity=Identity("ES", "UPV", "DSIC", "Jane Doe"),
                          expiry="Tue Oct 20 12:00:00 2026")

    def _destroy():
        proxy.active = False

    proxy.init.side_effect = _init
    proxy.destroy.side_effect = _destroy
    return proxy


@pytest.fixture
def mock_staging_server():
    """Mock StagingServer tracking the active flag like the real one."""
    staging = MagicMock()
    staging.active = False

    def _start(port):
        staging.active = True

    def _stop():
        staging.active = False

    staging.start.side_effect = _start
    staging.stop.side_effect = _stop
    return staging


@pytest.fixture
def mock_gram_client():
    """Mock GramClient: submissions return handles, every job is DONE."""
    gram = MagicMock()
    gram.submit.side_effect = lambda path, host: f"https://{host}:40001/{path.rsplit('/', 1)[-1]}/"
    gram.status.return_value = "DONE"
    return gram
