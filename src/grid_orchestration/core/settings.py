"""
Configuration settings for grid runs.
"""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings

from .models import Endpoint


class GridSettings(BaseSettings):
    """Grid run configuration loaded from environment variables (GRID_*) or .env."""

    # Entrypoint
    entrypoint_host: str = ""
    entrypoint_port: int = 22
    entrypoint_user: str = ""
    entrypoint_secret: str = ""
    ssh_key_path: Optional[str] = None
    command_timeout: Optional[float] = None

    # Grid proxy (paths on the entrypoint file system)
    proxy_key_path: str = ""
    proxy_cert_path: str = ""
    proxy_passphrase: str = ""

    # Staging and polling
    staging_port: int = 44000
    poll_interval: float = 5.0
    failed_is_terminal: bool = True

    # Paths
    host_registry_path: str = "/etc/hosts"
    template_path: Path = Path("./etc/base.rsl")
    etc_dir: Path = Path("./etc")
    work_dir: Path = Path("./tmp")

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "GRID_"
        case_sensitive = False

    def endpoint(self) -> Endpoint:
        return Endpoint(
            host=self.entrypoint_host,
            port=self.entrypoint_port,
            username=self.entrypoint_user,
            secret=self.entrypoint_secret,
            key_path=self.ssh_key_path,
        )
