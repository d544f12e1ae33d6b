"""
Remote operations on the grid entrypoint over SSH.
"""

from .ssh_session import RemoteSession, CommandStream, CommandResult, ExitStatus
from .proxy_manager import ProxyManager, parse_credential_ack
from .staging_server import StagingServer
from .gram_client import GramClient
from .host_directory import HostDirectory, parse_host_registry

__all__ = [
    "RemoteSession",
    "CommandStream",
    "CommandResult",
    "ExitStatus",
    "ProxyManager",
    "parse_credential_ack",
    "StagingServer",
    "GramClient",
    "HostDirectory",
    "parse_host_registry",
]
