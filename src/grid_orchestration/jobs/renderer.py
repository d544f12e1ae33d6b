"""
RSL job description rendering.

The base template carries the placeholders $COUNT $EXEC $ARGS $HOST $PORT
$INFILE $OUTFILE. $INFILE and $OUTFILE normally appear twice (remote staging
source and local target). Every occurrence is substituted in one pass.
"""

import re
import logging
from pathlib import Path
from typing import Dict, Union

from ..core.exceptions import RenderError
from ..core.models import JobSpec

logger = logging.getLogger(__name__)

PLACEHOLDERS = ("COUNT", "EXEC", "ARGS", "HOST", "PORT", "INFILE", "OUTFILE")

# Longest names first so $INFILE never matches as a shorter token
_PLACEHOLDER_RE = re.compile(
    r"\$(" + "|".join(sorted(PLACEHOLDERS, key=len, reverse=True)) + r")(?![A-Za-z0-9_])"
)


class JobSpecRenderer:
    """Renders a JobSpec into RSL text. Pure and deterministic."""

    def __init__(self, template: str):
        self.template = template
        self.validate()

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "JobSpecRenderer":
        path = Path(path)
        try:
            template = path.read_text(encoding="utf-8")
        except OSError as e:
            raise RenderError(f"Cannot read job description template {path}: {e}", step="render")
        return cls(template)

    def validate(self):
        """Check the template holds every placeholder at least once.

        Raises:
            RenderError: naming the missing placeholders
        """
        found = set(_PLACEHOLDER_RE.findall(self.template))
        missing = [name for name in PLACEHOLDERS if name not in found]
        if missing:
            raise RenderError(
                "Template is missing placeholders: " + ", ".join(f"${m}" for m in missing),
                step="render"
            )

    @staticmethod
    def values(spec: JobSpec) -> Dict[str, str]:
        return {
            "COUNT": str(spec.replica_count),
            "EXEC": spec.executable_path,
            "ARGS": spec.argument_string,
            "HOST": spec.staging_host,
            "PORT": str(spec.staging_port),
            "INFILE": spec.input_file_name,
            "OUTFILE": spec.output_file_name,
        }

    def render(self, spec: JobSpec) -> str:
        """Substitute every placeholder occurrence with the spec's values.

        Raises:
            RenderError: if a placeholder token is left in the output
        """
        values = self.values(spec)
        result = _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], self.template)

        residual = _PLACEHOLDER_RE.findall(result)
        if residual:
            raise RenderError(
                f"Rendered description for {spec.worker_host} still contains "
                + ", ".join(f"${r}" for r in sorted(set(residual))),
                step="render", host=spec.worker_host
            )
        return result
