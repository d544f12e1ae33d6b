"""
Workload recipes and per-worker job spec derivation.

A workload recipe is a YAML (or JSON) file describing the job every worker
runs. One JobSpec is derived per worker: the worker index and the total
worker count are appended to the arguments, and the output file name gets the
worker index.
"""

import os
import logging
from pathlib import Path
from typing import List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..core.exceptions import GridError
from ..core.models import JobSpec

logger = logging.getLogger(__name__)

INDEX_PLACEHOLDER = "{index}"


class Workload(BaseModel):
    """Job description shared by all workers."""
    name: str = Field(default="workload", description="Workload name used in reports")
    count: int = Field(default=1, ge=1, description="Number of times the job runs on each worker")
    executable: str = Field(..., description="Path to the executable on the workers")
    arguments: str = Field(default="", description="Arguments before the worker index and total")
    argument_suffix: str = Field(default="", description="Text appended after the worker index and total")
    input_file: str = Field(..., description="Input file staged to every worker")
    output_file: str = Field(..., description="Output file name, '{index}' is replaced by the worker index")
    staging_host: Optional[str] = Field(default=None, description="GASS host workers stage from (defaults to the entrypoint)")
    aggregate_command: Optional[str] = Field(default=None, description="Local command run with the worker count after stage-out")

    @field_validator('count', mode='before')
    @classmethod
    def coerce_to_int(cls, v):
        """Coerce string values to integers."""
        if isinstance(v, str):
            return int(v)
        return v

    @field_validator('input_file', 'output_file')
    @classmethod
    def plain_file_name(cls, v):
        if not v or os.path.basename(v) != v:
            raise ValueError(f"expected a plain file name, got {v!r}")
        return v


def load_workload(path: Union[str, Path]) -> Workload:
    """Load and validate a workload recipe.

    Raises:
        GridError: if the file cannot be read or fails validation
    """
    path = Path(path)
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise GridError(f"Cannot read workload {path}: {e}", step="workload")
    except yaml.YAMLError as e:
        raise GridError(f"Failed to parse workload {path}: {e}", step="workload")

    if not data:
        raise GridError(f"Workload file is empty: {path}", step="workload")
    if not isinstance(data, dict):
        raise GridError(f"Workload must be a mapping, got {type(data).__name__}: {path}",
                        step="workload")

    data.setdefault('name', path.stem)
    try:
        return Workload(**data)
    except ValidationError as e:
        raise GridError(f"Workload validation failed for {path}: {e}", step="workload")


def output_file_for(template: str, index: int) -> str:
    """Per-worker output file name.

    'result_{index}.dlm' -> 'result_3.dlm'; without the placeholder the
    index is inserted before the extension: 'result.dlm' -> 'result_3.dlm'.
    """
    if INDEX_PLACEHOLDER in template:
        return template.replace(INDEX_PLACEHOLDER, str(index))
    stem, ext = os.path.splitext(template)
    return f"{stem}_{index}{ext}"


def derive_job_specs(workload: Workload, hosts: List[str], staging_host: str,
                     staging_port: int) -> List[JobSpec]:
    """Build one JobSpec per host, in host order."""
    total = len(hosts)
    host_for_staging = workload.staging_host or staging_host
    specs = []
    for index, host in enumerate(hosts):
        arguments = f"{workload.arguments} {index} {total}"
        specs.append(JobSpec(
            replica_count=workload.count,
            executable_path=workload.executable,
            argument_string=arguments + workload.argument_suffix,
            worker_host=host,
            staging_host=host_for_staging,
            staging_port=staging_port,
            input_file_name=workload.input_file,
            output_file_name=output_file_for(workload.output_file, index),
        ))
    return specs
