"""
Data model for grid runs: entrypoint, credential, job specs, jobs and runs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class JobStatus(str, Enum):
    """Status tokens reported by globus-job-status."""
    UNSUBMITTED = "UNSUBMITTED"
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    STAGE_IN = "STAGE_IN"
    STAGE_OUT = "STAGE_OUT"
    SUSPENDED = "SUSPENDED"
    FAILED = "FAILED"
    DONE = "DONE"

    @classmethod
    def parse(cls, token: str) -> Union["JobStatus", str]:
        """Map a raw status token to a JobStatus.

        Unknown tokens are returned as-is and treated as non-terminal.
        """
        token = (token or "").strip()
        try:
            return cls(token)
        except ValueError:
            return token


@dataclass(frozen=True)
class Endpoint:
    """The single grid entrypoint. Immutable for a run."""
    host: str
    port: int = 22
    username: str = ""
    secret: str = field(default="", repr=False)
    key_path: Optional[str] = None

    @property
    def target(self) -> str:
        return f"{self.username}@{self.host}"


@dataclass
class Identity:
    country: str = ""
    organization: str = ""
    unit: str = ""
    name: str = ""


@dataclass
class Credential:
    """A grid proxy as acknowledged by grid-proxy-init."""
    identity: Identity
    expiry: str = ""

    @property
    def expires_at(self) -> Optional[datetime]:
        """Expiry parsed from the ctime-like text grid-proxy-init prints, if possible."""
        if not self.expiry:
            return None
        try:
            return datetime.strptime(" ".join(self.expiry.split()), "%a %b %d %H:%M:%S %Y")
        except ValueError:
            return None

    def summary(self) -> str:
        return (f"{self.identity.name} from {self.identity.organization} "
                f"({self.identity.country}), valid until {self.expiry}")


@dataclass(frozen=True)
class JobSpec:
    """Parameters rendered into one worker's job description."""
    replica_count: int
    executable_path: str
    argument_string: str
    worker_host: str
    staging_host: str
    staging_port: int
    input_file_name: str
    output_file_name: str


@dataclass
class Job:
    """A submitted job. Status is only mutated by the polling loop."""
    worker: str
    spec: JobSpec
    handle: str
    status: Union[JobStatus, str] = JobStatus.UNSUBMITTED

    @property
    def is_done(self) -> bool:
        return self.status == JobStatus.DONE

    @property
    def is_failed(self) -> bool:
        return self.status == JobStatus.FAILED

    def is_terminal(self, failed_is_terminal: bool = True) -> bool:
        if self.is_done:
            return True
        return failed_is_terminal and self.is_failed

    def to_dict(self) -> Dict[str, Any]:
        status = self.status.value if isinstance(self.status, JobStatus) else self.status
        return {
            "worker": self.worker,
            "handle": self.handle,
            "status": status,
            "output_file": self.spec.output_file_name,
        }


@dataclass
class Run:
    """Shared context of one in-flight run.

    Job i always targets host i and uses spec i.
    """
    hosts: List[str]
    specs: List[JobSpec]
    jobs: List[Job] = field(default_factory=list)
    poll_count: int = 0
    outcome: str = "pending"
    error: Optional[str] = None

    def __post_init__(self):
        if len(self.hosts) != len(self.specs):
            raise ValueError(
                f"Run needs one spec per host (hosts={len(self.hosts)}, specs={len(self.specs)})"
            )
        for index, (host, spec) in enumerate(zip(self.hosts, self.specs)):
            if spec.worker_host != host:
                raise ValueError(f"Spec {index} targets {spec.worker_host}, expected {host}")

    @property
    def worker_count(self) -> int:
        return len(self.hosts)

    def add_job(self, handle: str) -> Job:
        """Record the job for the next host in index order."""
        index = len(self.jobs)
        if index >= len(self.hosts):
            raise ValueError("All hosts already have a job")
        job = Job(worker=self.hosts[index], spec=self.specs[index], handle=handle,
                  status=JobStatus.PENDING)
        self.jobs.append(job)
        return job

    def is_complete(self, failed_is_terminal: bool = True) -> bool:
        if len(self.jobs) != len(self.hosts):
            return False
        return all(job.is_terminal(failed_is_terminal) for job in self.jobs)

    def failed_jobs(self) -> List[Job]:
        return [job for job in self.jobs if job.is_failed]

    def summary(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome,
            "error": self.error,
            "workers": self.worker_count,
            "polls": self.poll_count,
            "jobs": [job.to_dict() for job in self.jobs],
        }
