"""
Command line entry point.

    grid-orchestration run workloads/montecarlo.yaml
    grid-orchestration hosts
    grid-orchestration render workloads/raytracer.yaml --hosts node1 node2
    grid-orchestration status https://node1:40001/16001/1700000000/
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .core.exceptions import GridError
from .core.orchestrator import JobOrchestrator
from .core.settings import GridSettings
from .jobs.renderer import JobSpecRenderer
from .jobs.workload import load_workload
from .logging_setup import setup_logging
from .remote.gram_client import GramClient
from .remote.host_directory import HostDirectory
from .remote.ssh_session import RemoteSession

logger = logging.getLogger(__name__)


def _session(settings: GridSettings) -> RemoteSession:
    return RemoteSession.connect(settings.endpoint(), timeout=settings.command_timeout)


def _fetch_hosts(settings: GridSettings, session: RemoteSession):
    try:
        hosts = HostDirectory(session, settings.host_registry_path).fetch()
    except GridError as e:
        logger.error(f"> Failed to retrieve host list: {e}")
        raise
    logger.info("> Retrieved host list.")
    return hosts


def cmd_run(args, settings: GridSettings) -> int:
    workload = load_workload(args.workload)
    renderer = JobSpecRenderer.from_file(settings.template_path)
    session = _session(settings)
    hosts = _fetch_hosts(settings, session)

    orchestrator = JobOrchestrator(session, settings, renderer)
    run = orchestrator.run(workload, hosts, input_path=args.input)
    print(json.dumps(run.summary(), indent=2))
    return 0


def cmd_hosts(args, settings: GridSettings) -> int:
    hosts = _fetch_hosts(settings, _session(settings))
    for host in hosts:
        print(host)
    return 0


def cmd_render(args, settings: GridSettings) -> int:
    workload = load_workload(args.workload)
    renderer = JobSpecRenderer.from_file(settings.template_path)
    session = _session(settings)
    hosts = args.hosts or _fetch_hosts(settings, session)

    orchestrator = JobOrchestrator(session, settings, renderer)
    run, descriptions = orchestrator.prepare(workload, hosts)

    out_dir = Path(args.out or settings.work_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    for index, description in enumerate(descriptions):
        path = out_dir / f"run_{index}.rsl"
        path.write_text(description, encoding="utf-8")
        print(f"{run.hosts[index]}\t{path}")
    return 0


def cmd_status(args, settings: GridSettings) -> int:
    print(GramClient(_session(settings)).status(args.handle))
    return 0


def build_parser():
    p = argparse.ArgumentParser("grid-orchestration")
    p.add_argument("--log-level", default=None, help="Overrides GRID_LOG_LEVEL")
    sp = p.add_subparsers(dest="cmd")

    # run
    s_run = sp.add_parser("run", help="Run a workload on every grid worker")
    s_run.add_argument("workload", help="Workload recipe (YAML or JSON)")
    s_run.add_argument("--input", default=None,
                       help="Local input file (defaults to <etc_dir>/<input_file>)")
    s_run.set_defaults(func=cmd_run)

    # hosts
    s_hosts = sp.add_parser("hosts", help="List worker hosts from the entrypoint registry")
    s_hosts.set_defaults(func=cmd_hosts)

    # render
    s_render = sp.add_parser("render", help="Render job descriptions locally without submitting")
    s_render.add_argument("workload")
    s_render.add_argument("--hosts", nargs="+", default=None,
                          help="Worker hosts (skips the registry lookup)")
    s_render.add_argument("--out", default=None, help="Output directory (defaults to work_dir)")
    s_render.set_defaults(func=cmd_render)

    # status
    s_status = sp.add_parser("status", help="Query one job's status")
    s_status.add_argument("handle")
    s_status.set_defaults(func=cmd_status)

    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 2

    settings = GridSettings()
    setup_logging(args.log_level or settings.log_level)

    try:
        return args.func(args, settings)
    except GridError as e:
        logger.error(f"> Aborted: {e.describe()}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
