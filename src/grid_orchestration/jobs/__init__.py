from .renderer import JobSpecRenderer
from .workload import Workload, load_workload, derive_job_specs

__all__ = ["JobSpecRenderer", "Workload", "load_workload", "derive_job_specs"]
