"""
Grid proxy lifecycle on the entrypoint (grid-proxy-init / grid-proxy-destroy).
"""

import shlex
import logging
from typing import List

from ..core.exceptions import AuthError, GridError
from ..core.models import Credential, Identity
from .ssh_session import RemoteSession

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = ("country", "organization", "unit", "name")


def parse_credential_ack(text: str) -> Credential:
    """Parse the acknowledgement printed by grid-proxy-init.

    Expected shape:
        Your identity: /C=ES/O=UPV/OU=DSIC/CN=Jane Doe
        Your proxy is valid until: Tue Oct 20 12:00:00 2026

    Line 0 must mention 'identity' and hold four key=value segments
    (country, organization, unit, name, in this order). Line 1 is optional;
    when it mentions 'valid' the text after ': ' is the expiry.

    Raises:
        AuthError: if the identity line is missing or malformed
    """
    lines = (text or "").split('\n')
    first = lines[0].strip('\r')

    if "identity" not in first or ": " not in first:
        raise AuthError(f"Unexpected grid-proxy-init output: {first!r}", step="proxy-init")

    subject = first.split(": ", 1)[1].strip()
    segments = [s for s in subject.split('/') if s]
    if len(segments) < len(IDENTITY_FIELDS):
        raise AuthError(f"Identity has {len(segments)} segments, expected 4: {subject!r}",
                        step="proxy-init")

    values: List[str] = []
    for segment in segments[:len(IDENTITY_FIELDS)]:
        if "=" not in segment:
            raise AuthError(f"Malformed identity segment {segment!r}", step="proxy-init")
        values.append(segment.split("=", 1)[1])

    expiry = ""
    if len(lines) > 1:
        second = lines[1].strip('\r')
        if "valid" in second and ": " in second:
            expiry = second.split(": ", 1)[1].strip()

    return Credential(identity=Identity(*values), expiry=expiry)


class ProxyManager:
    """Creates and destroys the grid proxy on the entrypoint.

    `active` mirrors what this process believes about the remote proxy. It is
    not verified against the entrypoint and can drift if a destroy fails
    without reporting an error.
    """

    def __init__(self, session: RemoteSession):
        self.session = session
        self.active = False
        self.credential = None

    def has_proxy(self) -> bool:
        return self.active

    def init(self, key_path: str, cert_path: str, passphrase: str = "") -> Credential:
        """Create a proxy from the user key and certificate on the entrypoint.

        Args:
            key_path: Path to the user key on the entrypoint
            cert_path: Path to the user certificate on the entrypoint
            passphrase: Key passphrase; sent on stdin only when non-empty

        Raises:
            AuthError: if the command fails or its output cannot be parsed
        """
        command = (f"grid-proxy-init -key {shlex.quote(key_path)} "
                   f"-cert {shlex.quote(cert_path)} -pwstdin")
        stdin = passphrase + "\n" if passphrase != "" else None

        try:
            result = self.session.run(command, stdin=stdin)
        except AuthError:
            raise
        except GridError as e:
            raise AuthError(f"grid-proxy-init failed: {e}", step="proxy-init") from e

        if not result.ok:
            raise AuthError(
                f"grid-proxy-init exited with {result.status.exit_code}: {result.stderr.strip()}",
                step="proxy-init"
            )

        # The proxy exists once the command succeeded, even if its output is unreadable
        self.active = True
        credential = parse_credential_ack(result.stdout)
        self.credential = credential
        logger.debug(f"Proxy created for {credential.identity.name}")
        return credential

    def destroy(self):
        """Destroy all proxies on the entrypoint.

        Raises:
            AuthError: if the command fails; the local mirror stays active
        """
        try:
            result = self.session.run("grid-proxy-destroy")
        except GridError as e:
            raise AuthError(f"grid-proxy-destroy failed: {e}", step="proxy-destroy") from e

        if not result.ok:
            raise AuthError(
                f"grid-proxy-destroy exited with {result.status.exit_code}: {result.stderr.strip()}",
                step="proxy-destroy"
            )

        self.active = False
        self.credential = None
