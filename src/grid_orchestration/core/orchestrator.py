"""
Job Orchestrator - drives one grid run from rendering to teardown.

Sequence (every per-host step runs in ascending host order and stops the
whole run at the first failure):
    render -> proxy init -> staging start -> stage-in -> submit -> poll
    -> stage-out -> aggregate -> teardown

Teardown always runs. It stops the staging server and destroys the proxy
when the local mirrors say they are held.
"""

import shlex
import subprocess
import time
import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from .exceptions import AggregationError, GridError, JobFailedError, PollError, TransferError
from .models import JobStatus, Run
from .settings import GridSettings
from ..jobs.renderer import JobSpecRenderer
from ..jobs.workload import Workload, derive_job_specs
from ..remote.gram_client import GramClient
from ..remote.proxy_manager import ProxyManager
from ..remote.ssh_session import RemoteSession
from ..remote.staging_server import StagingServer

logger = logging.getLogger(__name__)

# Directory served by the GASS server; etc/base.rsl builds its URLs from it
REMOTE_DIR = "/tmp"


class JobOrchestrator:
    """Fan-out/fan-in of one job per worker through the grid entrypoint."""

    def __init__(self,
                 session: RemoteSession,
                 settings: GridSettings,
                 renderer: JobSpecRenderer,
                 proxy_manager: Optional[ProxyManager] = None,
                 staging_server: Optional[StagingServer] = None,
                 gram_client: Optional[GramClient] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            session: Session on the entrypoint used for file transfers
            settings: Run configuration (paths, proxy, polling)
            renderer: Job description renderer
            proxy_manager: Grid proxy lifecycle (built from session if omitted)
            staging_server: GASS server lifecycle (built from session if omitted)
            gram_client: Job submission/status (built from session if omitted)
            sleep: Wait function between poll ticks
        """
        self.session = session
        self.settings = settings
        self.renderer = renderer
        self.proxy_manager = proxy_manager or ProxyManager(session)
        self.staging_server = staging_server or StagingServer(session)
        self.gram_client = gram_client or GramClient(session)
        self._sleep = sleep

        self.work_dir = Path(settings.work_dir)
        self.etc_dir = Path(settings.etc_dir)

    # ===== Paths =====

    def _remote_path(self, name: str) -> str:
        return f"{REMOTE_DIR}/{name}"

    def _description_name(self, index: int) -> str:
        return f"run_{index}.rsl"

    # ===== Run =====

    def prepare(self, workload: Workload, hosts: List[str]) -> Tuple[Run, List[str]]:
        """Derive and render one job description per host.

        Makes no remote call, so a malformed template aborts before anything
        is acquired on the entrypoint.

        Returns:
            (Run, list of rendered descriptions)
        """
        if not hosts:
            raise GridError("No worker hosts available", step="hosts")

        specs = derive_job_specs(workload, hosts,
                                 staging_host=self.session.endpoint.host,
                                 staging_port=self.settings.staging_port)
        descriptions = [self.renderer.render(spec) for spec in specs]
        logger.info("> Loaded job specification.")
        return Run(hosts=list(hosts), specs=specs), descriptions

    def run(self, workload: Workload, hosts: List[str], input_path: Optional[Path] = None) -> Run:
        """Execute a complete run.

        Args:
            workload: Job description shared by every worker
            hosts: Worker hosts, in registry order
            input_path: Local input artifact (defaults to etc_dir/input_file)

        Returns:
            The finished Run

        Raises:
            GridError: on any fatal failure, after teardown
        """
        run, descriptions = self.prepare(workload, hosts)
        input_path = Path(input_path) if input_path else self.etc_dir / workload.input_file

        try:
            self._acquire()
            self.stage_in(run, input_path, descriptions)
            self.submit(run)
            self.poll(run)
            self._check_failures(run)
            self.stage_out(run)
            self.aggregate(run, workload.aggregate_command)
        except GridError as e:
            run.outcome = "aborted"
            run.error = e.describe()
            logger.error(f"> Run aborted: {e.describe()}")
            raise
        finally:
            self.teardown()

        run.outcome = "succeeded"
        logger.info("> Process completed")
        return run

    def _acquire(self):
        credential = self.proxy_manager.init(
            self.settings.proxy_key_path,
            self.settings.proxy_cert_path,
            self.settings.proxy_passphrase
        )
        logger.info(f"> Grid proxy created by {credential.summary()}.")

        self.staging_server.start(self.settings.staging_port)
        logger.info(f"> GASS server started on port {self.settings.staging_port}.")

    # ===== Stage-in =====

    def stage_in(self, run: Run, input_path: Path, descriptions: List[str]):
        """Push the shared input once, then each worker's description in order."""
        input_name = run.specs[0].input_file_name
        try:
            self.session.push(str(input_path), self._remote_path(input_name))
        except TransferError as e:
            e.step = "stage-in"
            raise
        logger.info(f'> "{input_name}" staged in.')

        self.work_dir.mkdir(parents=True, exist_ok=True)
        for index, (host, description) in enumerate(zip(run.hosts, descriptions)):
            name = self._description_name(index)
            local_path = self.work_dir / name
            local_path.write_text(description, encoding="utf-8")
            try:
                self.session.push(str(local_path), self._remote_path(name))
            except TransferError as e:
                e.step, e.host = "stage-in", host
                raise
        logger.info("> Job descriptions staged in.")

    # ===== Submit =====

    def submit(self, run: Run):
        """Submit each worker's job in host order; the first failure aborts."""
        for index, host in enumerate(run.hosts):
            handle = self.gram_client.submit(self._remote_path(self._description_name(index)), host)
            run.add_job(handle)
            logger.info(f"> Started job on {host}")

    # ===== Poll =====

    def poll(self, run: Run):
        """Poll job statuses until the run is complete.

        Scans are serialized: the next tick starts only after the previous
        scan finished. With failed_is_terminal disabled, a FAILED job keeps
        the loop running until it reports DONE.
        """
        failed_is_terminal = self.settings.failed_is_terminal
        while True:
            self._sleep(self.settings.poll_interval)
            self.scan(run)
            if run.is_complete(failed_is_terminal):
                break
        logger.info("> All jobs finished.")

    def scan(self, run: Run):
        """Query every non-terminal job once, in host order."""
        run.poll_count += 1
        failed_is_terminal = self.settings.failed_is_terminal
        for job in run.jobs:
            if job.is_terminal(failed_is_terminal):
                continue
            try:
                token = self.gram_client.status(job.handle)
            except PollError as e:
                logger.warning(f"> Failed to retrieve status from {job.worker}. Skipping. ({e})")
                continue

            status = JobStatus.parse(token)
            if status != job.status:
                if status == JobStatus.DONE:
                    logger.info(f"> Job finished on {job.worker}.")
                elif status == JobStatus.FAILED:
                    logger.warning(f"> Job failed on {job.worker}.")
                else:
                    logger.debug(f"Job on {job.worker}: {job.status} -> {status}")
            job.status = status

    def _check_failures(self, run: Run):
        failed = run.failed_jobs()
        if failed:
            hosts = [job.worker for job in failed]
            raise JobFailedError(f"Jobs failed on {', '.join(hosts)}", failed_hosts=hosts)

    # ===== Stage-out =====

    def stage_out(self, run: Run):
        """Pull each worker's output file in host order."""
        self.work_dir.mkdir(parents=True, exist_ok=True)
        for job in run.jobs:
            name = job.spec.output_file_name
            try:
                self.session.pull(self._remote_path(name), str(self.work_dir / name))
            except TransferError as e:
                e.step, e.host = "stage-out", job.worker
                raise
        logger.info("> Staged-out the result files.")

    # ===== Aggregate =====

    def aggregate(self, run: Run, command: Optional[str]):
        """Run the local post-processing command with the worker count appended."""
        if not command:
            logger.info("> No aggregation command configured, skipping post-processing.")
            return

        args = shlex.split(command) + [str(run.worker_count)]
        logger.debug(f"Running aggregation: {' '.join(args)}")
        try:
            subprocess.run(args, check=True, capture_output=True, text=True)
        except subprocess.CalledProcessError as e:
            raise AggregationError(
                f"Aggregation exited with {e.returncode}: {(e.stderr or '').strip()}",
                step="aggregate"
            ) from e
        except OSError as e:
            raise AggregationError(f"Could not run aggregation command: {e}", step="aggregate") from e
        logger.info("> Post-processing completed.")

    # ===== Teardown =====

    def teardown(self):
        """Release the staging server and proxy this process believes it holds.

        Failures are logged so both releases are always attempted.
        """
        if self.staging_server.active:
            try:
                self.staging_server.stop()
                logger.info("> GASS server stopped.")
            except GridError as e:
                logger.error(f"> Failed to stop GASS server: {e}")

        if self.proxy_manager.active:
            try:
                self.proxy_manager.destroy()
                logger.info("> Grid proxy destroyed.")
            except GridError as e:
                logger.error(f"> Failed to destroy grid proxy: {e}")
