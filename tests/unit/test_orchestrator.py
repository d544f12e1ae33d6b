"""
Job Orchestrator Tests

Mock: RemoteSession, ProxyManager, StagingServer, GramClient
Test: run sequencing, host ordering, polling termination and fail-fast teardown
"""

import pytest
from unittest.mock import MagicMock, call, patch

from grid_orchestration.core.exceptions import (
    AggregationError, AuthError, GridError, JobFailedError, PollError, RenderError, StagingError,
    SubmissionError, TransferError,
)
from grid_orchestration.core.models import JobStatus
from grid_orchestration.core.orchestrator import JobOrchestrator
from grid_orchestration.jobs.renderer import JobSpecRenderer
from grid_orchestration.remote.proxy_manager import ProxyManager
from grid_orchestration.remote.staging_server import StagingServer

HOSTS = ["node0.grid", "node1.grid", "node2.grid"]


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def orchestrator(mock_session, settings, renderer, mock_proxy_manager,
                 mock_staging_server, mock_gram_client, sleep):
    return JobOrchestrator(
        mock_session, settings, renderer,
        proxy_manager=mock_proxy_manager,
        staging_server=mock_staging_server,
        gram_client=mock_gram_client,
        sleep=sleep,
    )


def status_sequence(per_tick):
    """side_effect returning one status per call, tick by tick."""
    statuses = iter([status for tick in per_tick for status in tick])
    return lambda handle: next(statuses)


class TestSuccessfulRun:

    def test_all_done_on_first_tick(self, orchestrator, workload, input_file,
                                    mock_session, mock_gram_client, sleep):
        run = orchestrator.run(workload, HOSTS, input_path=input_file)

        assert run.outcome == "succeeded"
        assert run.poll_count == 1
        assert sleep.call_count == 1
        assert mock_gram_client.status.call_count == 3
        assert [job.status for job in run.jobs] == [JobStatus.DONE] * 3

        pulls = [c.args for c in mock_session.pull.call_args_list]
        assert [p[0] for p in pulls] == ["/tmp/result_0.dlm", "/tmp/result_1.dlm", "/tmp/result_2.dlm"]

    def test_stage_in_order(self, orchestrator, workload, input_file, mock_session, settings):
        orchestrator.run(workload, HOSTS, input_path=input_file)

        remote_targets = [c.args[1] for c in mock_session.push.call_args_list]
        assert remote_targets == ["/tmp/montecarlo.m", "/tmp/run_0.rsl", "/tmp/run_1.rsl", "/tmp/run_2.rsl"]
        assert mock_session.push.call_args_list[0].args[0] == str(input_file)

        rendered = (settings.work_dir / "run_1.rsl").read_text()
        assert "(arguments=-q montecarlo.m 1 3)" in rendered
        assert "result_1.dlm" in rendered

    def test_staged_paths_match_description_urls(self, orchestrator, workload, input_file,
                                                 mock_session, settings):
        orchestrator.run(workload, HOSTS, input_path=input_file)

        pushed_input = mock_session.push.call_args_list[0].args[1]
        pulled_output = mock_session.pull.call_args_list[0].args[0]
        rendered = (settings.work_dir / "run_0.rsl").read_text()

        assert f"https://grid.example.org:44000{pushed_input} montecarlo.m" in rendered
        assert f"result_0.dlm https://grid.example.org:44000{pulled_output}" in rendered

    def test_submission_order_and_handles(self, orchestrator, workload, input_file, mock_gram_client):
        run = orchestrator.run(workload, HOSTS, input_path=input_file)

        assert mock_gram_client.submit.call_args_list == [
            call("/tmp/run_0.rsl", "node0.grid"),
            call("/tmp/run_1.rsl", "node1.grid"),
            call("/tmp/run_2.rsl", "node2.grid"),
        ]
        assert [job.worker for job in run.jobs] == HOSTS
        assert run.jobs[2].handle == "https://node2.grid:40001/run_2.rsl/"

    def test_acquire_then_teardown(self, orchestrator, workload, input_file, settings,
                                   mock_proxy_manager, mock_staging_server):
        orchestrator.run(workload, HOSTS, input_path=input_file)

        mock_proxy_manager.init.assert_called_once_with(
            settings.proxy_key_path, settings.proxy_cert_path, "secret"
        )
        mock_staging_server.start.assert_called_once_with(44000)
        mock_staging_server.stop.assert_called_once()
        mock_proxy_manager.destroy.assert_called_once()
        assert not mock_proxy_manager.active
        assert not mock_staging_server.active

    def test_default_input_path_comes_from_etc_dir(self, orchestrator, workload, settings, mock_session):
        settings.etc_dir.mkdir(parents=True)
        (settings.etc_dir / "montecarlo.m").write_text("x")

        orchestrator.run(workload, HOSTS)

        assert mock_session.push.call_args_list[0].args[0] == str(settings.etc_dir / "montecarlo.m")

    def test_polls_until_every_job_done(self, orchestrator, workload, input_file, mock_gram_client):
        mock_gram_client.status.side_effect = status_sequence([
            ["PENDING", "ACTIVE", "STAGE_IN"],
            ["DONE", "ACTIVE", "STAGE_OUT"],
            ["DONE", "DONE"],
        ])

        run = orchestrator.run(workload, HOSTS, input_path=input_file)

        assert run.poll_count == 3
        # done jobs are not queried again: 3 + 3 + 2
        assert mock_gram_client.status.call_count == 8

    def test_unknown_status_token_is_kept_and_non_terminal(self, orchestrator, workload, input_file,
                                                            mock_gram_client):
        mock_gram_client.status.side_effect = status_sequence([
            ["WEIRD", "DONE", "DONE"],
            ["DONE"],
        ])

        run = orchestrator.run(workload, HOSTS, input_path=input_file)

        assert run.poll_count == 2

    def test_poll_error_is_retried_next_tick(self, orchestrator, workload, input_file, mock_gram_client):
        calls = {"n": 0}

        def status(handle):
            calls["n"] += 1
            if calls["n"] == 1:
                raise PollError("timeout")
            return "DONE"

        mock_gram_client.status.side_effect = status

        run = orchestrator.run(workload, HOSTS, input_path=input_file)

        assert run.outcome == "succeeded"
        assert run.poll_count == 2
        assert mock_gram_client.status.call_count == 4

    @patch("grid_orchestration.core.orchestrator.subprocess.run")
    def test_aggregate_runs_with_worker_count(self, mock_run, orchestrator, workload, input_file):
        workload = workload.model_copy(update={"aggregate_command": "octave -q ./etc/post.m"})

        orchestrator.run(workload, HOSTS, input_path=input_file)

        mock_run.assert_called_once()
        assert mock_run.call_args.args[0] == ["octave", "-q", "./etc/post.m", "3"]

    def test_summary(self, orchestrator, workload, input_file):
        run = orchestrator.run(workload, HOSTS, input_path=input_file)

        summary = run.summary()
        assert summary["outcome"] == "succeeded"
        assert summary["workers"] == 3
        assert summary["jobs"][0] == {
            "worker": "node0.grid",
            "handle": "https://node0.grid:40001/run_0.rsl/",
            "status": "DONE",
            "output_file": "result_0.dlm",
        }


class TestFailFast:

    def test_submission_failure_stops_later_hosts(self, orchestrator, workload, input_file,
                                                  mock_gram_client, mock_proxy_manager,
                                                  mock_staging_server):
        hosts = ["n0", "n1", "n2", "n3"]

        def submit(path, host):
            if host == "n1":
                raise SubmissionError("GRAM error", step="submit", host=host)
            return f"https://{host}/"

        mock_gram_client.submit.side_effect = submit

        with pytest.raises(SubmissionError):
            orchestrator.run(workload, hosts, input_path=input_file)

        submitted = [c.args[1] for c in mock_gram_client.submit.call_args_list]
        assert submitted == ["n0", "n1"]
        mock_gram_client.status.assert_not_called()
        mock_staging_server.stop.assert_called_once()
        mock_proxy_manager.destroy.assert_called_once()

    def test_stage_in_failure_names_host(self, orchestrator, workload, input_file, mock_session,
                                         mock_gram_client, mock_proxy_manager):
        mock_session.push.side_effect = [None, None, TransferError("disk full")]

        with pytest.raises(TransferError) as exc:
            orchestrator.run(workload, HOSTS, input_path=input_file)

        assert exc.value.step == "stage-in"
        assert exc.value.host == "node1.grid"
        mock_gram_client.submit.assert_not_called()
        mock_proxy_manager.destroy.assert_called_once()

    def test_stage_out_failure_aborts(self, orchestrator, workload, input_file, mock_session,
                                      mock_staging_server, mock_proxy_manager):
        mock_session.pull.side_effect = [None, TransferError("missing"), None]

        with pytest.raises(TransferError) as exc:
            orchestrator.run(workload, HOSTS, input_path=input_file)

        assert exc.value.step == "stage-out"
        assert exc.value.host == "node1.grid"
        assert mock_session.pull.call_count == 2
        mock_staging_server.stop.assert_called_once()
        mock_proxy_manager.destroy.assert_called_once()

    def test_render_error_before_any_remote_call(self, mock_session, settings, workload,
                                                 mock_proxy_manager, mock_staging_server,
                                                 mock_gram_client, input_file):
        renderer = JobSpecRenderer("$COUNT $EXEC $ARGS $HOST $PORT $INFILE $OUTFILE")
        orchestrator = JobOrchestrator(mock_session, settings, renderer,
                                       proxy_manager=mock_proxy_manager,
                                       staging_server=mock_staging_server,
                                       gram_client=mock_gram_client)
        bad = workload.model_copy(update={"arguments": "$PORT"})

        with pytest.raises(RenderError):
            orchestrator.run(bad, HOSTS, input_path=input_file)

        mock_proxy_manager.init.assert_not_called()
        mock_staging_server.start.assert_not_called()
        mock_session.push.assert_not_called()
        mock_session.run.assert_not_called()

    def test_no_hosts(self, orchestrator, workload, input_file, mock_proxy_manager):
        with pytest.raises(GridError, match="No worker hosts"):
            orchestrator.run(workload, [], input_path=input_file)

        mock_proxy_manager.init.assert_not_called()

    def test_unreadable_proxy_acknowledgement_still_destroys_proxy(self, mock_session, settings,
                                                                   renderer, workload, input_file,
                                                                   make_result, mock_gram_client):
        commands = []

        def run(command, stdin=None):
            commands.append(command.split()[0])
            return make_result("Creating proxy ....... Done\n")

        mock_session.run.side_effect = run
        orchestrator = JobOrchestrator(mock_session, settings, renderer,
                                       proxy_manager=ProxyManager(mock_session),
                                       staging_server=StagingServer(mock_session),
                                       gram_client=mock_gram_client,
                                       sleep=lambda seconds: None)

        with pytest.raises(AuthError):
            orchestrator.run(workload, HOSTS, input_path=input_file)

        assert commands == ["grid-proxy-init", "grid-proxy-destroy"]
        assert not orchestrator.proxy_manager.active

    def test_staging_start_failure_destroys_proxy_only(self, orchestrator, workload, input_file,
                                                       mock_staging_server, mock_proxy_manager):
        mock_staging_server.start.side_effect = StagingError("port in use")

        with pytest.raises(StagingError):
            orchestrator.run(workload, HOSTS, input_path=input_file)

        mock_staging_server.stop.assert_not_called()
        mock_proxy_manager.destroy.assert_called_once()

    def test_teardown_failure_does_not_skip_proxy_destroy(self, orchestrator, workload, input_file,
                                                          mock_staging_server, mock_proxy_manager):
        mock_staging_server.stop.side_effect = StagingError("kill failed")

        run = orchestrator.run(workload, HOSTS, input_path=input_file)

        assert run.outcome == "succeeded"
        mock_proxy_manager.destroy.assert_called_once()

    @patch("grid_orchestration.core.orchestrator.subprocess.run")
    def test_aggregation_failure_aborts(self, mock_run, orchestrator, workload, input_file,
                                        mock_proxy_manager):
        import subprocess
        mock_run.side_effect = subprocess.CalledProcessError(1, "octave", stderr="parse error")
        workload = workload.model_copy(update={"aggregate_command": "octave -q post.m"})

        with pytest.raises(AggregationError, match="parse error"):
            orchestrator.run(workload, HOSTS, input_path=input_file)

        mock_proxy_manager.destroy.assert_called_once()


class TestFailedJobs:

    def test_failed_is_terminal_ends_run_with_report(self, orchestrator, workload, input_file,
                                                     mock_gram_client, mock_session,
                                                     mock_proxy_manager):
        mock_gram_client.status.side_effect = status_sequence([
            ["DONE", "FAILED", "ACTIVE"],
            ["DONE"],
        ])

        with pytest.raises(JobFailedError) as exc:
            orchestrator.run(workload, HOSTS, input_path=input_file)

        assert exc.value.failed_hosts == ["node1.grid"]
        assert mock_gram_client.status.call_count == 4
        mock_session.pull.assert_not_called()
        mock_proxy_manager.destroy.assert_called_once()

    def test_failed_job_keeps_polling_when_not_terminal(self, orchestrator, workload, input_file,
                                                        settings, mock_gram_client):
        settings.failed_is_terminal = False
        mock_gram_client.status.side_effect = status_sequence([
            ["DONE", "FAILED", "DONE"],
            ["FAILED"],
            ["FAILED"],
            ["FAILED"],
            ["DONE"],
        ])

        run = orchestrator.run(workload, HOSTS, input_path=input_file)

        # FAILED never ends polling under this rule; only DONE does
        assert run.poll_count == 5
        assert run.outcome == "succeeded"

    def test_scan_updates_status_in_place(self, orchestrator, workload, mock_gram_client):
        run, _ = orchestrator.prepare(workload, HOSTS)
        for host in HOSTS:
            run.add_job(f"https://{host}/")
        mock_gram_client.status.side_effect = ["ACTIVE", "SUSPENDED", "STAGE_OUT"]

        orchestrator.scan(run)

        assert [job.status for job in run.jobs] == [
            JobStatus.ACTIVE, JobStatus.SUSPENDED, JobStatus.STAGE_OUT
        ]
        assert not run.is_complete()
