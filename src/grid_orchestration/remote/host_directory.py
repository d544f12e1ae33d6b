"""
Worker discovery from the entrypoint's host registry.

MDS is not used; the registry is a plain hosts file where each line holds an
address and a host name separated by a tab.
"""

import shlex
import logging
from typing import List, Optional

from ..core.exceptions import GridError
from .ssh_session import RemoteSession

logger = logging.getLogger(__name__)


def _host_field(line: str) -> Optional[str]:
    fields = line.split('\t')
    if len(fields) < 2:
        return None
    return fields[1].split('\r')[0]


def parse_host_registry(text: str) -> List[str]:
    """Parse a host registry body into an ordered list of hosts.

    The first and last lines are discarded (header and trailing line).
    Lines without a tab separated second field are skipped.

    >>> parse_host_registry("header\\nA\\tAddr1\\r\\nB\\tAddr2\\r\\nfooter\\n")
    ['Addr1', 'Addr2']
    """
    lines = (text or "").split('\n')
    hosts = []
    for line in lines[1:-1]:
        host = _host_field(line)
        if host:
            hosts.append(host)
    return hosts


class HostDirectory:
    """Fetches the worker list from the entrypoint."""

    def __init__(self, session: RemoteSession, registry_path: str = "/etc/hosts"):
        self.session = session
        self.registry_path = registry_path

    def fetch(self) -> List[str]:
        """Read and parse the registry.

        Raises:
            GridError: if the registry cannot be read
        """
        result = self.session.run(f"cat {shlex.quote(self.registry_path)}")
        if not result.ok:
            raise GridError(
                f"Could not read {self.registry_path}: {result.stderr.strip()}",
                step="hosts"
            )
        hosts = parse_host_registry(result.stdout)
        logger.debug(f"Host registry lists {len(hosts)} workers: {hosts}")
        return hosts
