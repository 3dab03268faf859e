from __future__ import annotations

import logging

from .errors import RemoteUnreachable
from .shell import SSH_PROBE_CONNECT_TIMEOUT, SshSession, ssh_failure_hint


logger = logging.getLogger(__name__)


def check_connectivity(session: SshSession) -> None:
    """Non-interactive SSH login probe; any failure is fatal."""
    logger.info("Testing SSH access to %s...", session.target)
    result = session.probe()
    if result.ok:
        return

    message = f"SSH connection to {session.target} failed (exit code {result.returncode})."
    if result.detail:
        message = f"{message} {result.detail}"
    hint = ssh_failure_hint(result.detail)
    if hint:
        message = f"{message} {hint}"
    else:
        message = f"{message} Check the key and that the server accepts it within {SSH_PROBE_CONNECT_TIMEOUT}s."
    raise RemoteUnreachable(message)
