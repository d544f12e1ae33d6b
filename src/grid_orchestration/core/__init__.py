"""
Core run logic: settings, data model, errors and the job orchestrator.
"""

from .exceptions import GridError
from .models import Credential, Endpoint, Identity, Job, JobSpec, JobStatus, Run
from .settings import GridSettings

__all__ = [
    "GridError",
    "Credential",
    "Endpoint",
    "Identity",
    "Job",
    "JobSpec",
    "JobStatus",
    "Run",
    "GridSettings",
]
