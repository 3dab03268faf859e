from __future__ import annotations

import logging
import shlex
import shutil
from dataclasses import dataclass
from pathlib import Path

from .errors import TransferFailed
from .shell import SshSession


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferResult:
    method: str
    mirrored_deletions: bool


def ensure_remote_dir_cmd(*, remote_dir: str, user: str) -> str:
    quoted_dir = shlex.quote(remote_dir)
    quoted_owner = shlex.quote(f"{user}:{user}")
    return f"sudo mkdir -p {quoted_dir} && sudo chown {quoted_owner} {quoted_dir}"


def transfer_project(
    session: SshSession,
    *,
    local_dir: Path,
    remote_dir: str,
    rsync_available: bool | None = None,
) -> TransferResult:
    """Mirror *local_dir* into *remote_dir* on the remote host.

    rsync runs with ``--delete``.  The scp fallback cannot delete, so files
    removed locally stay behind on the remote side.
    """
    logger.info("Sending project files to %s:%s", session.target, remote_dir)
    prepared = session.run(ensure_remote_dir_cmd(remote_dir=remote_dir, user=session.user))
    if not prepared.ok:
        raise TransferFailed(f"Failed to create remote project directory {remote_dir}: {prepared.detail}")

    if rsync_available is None:
        rsync_available = shutil.which("rsync") is not None

    if rsync_available:
        result = session.sync_tree(local_dir, remote_dir)
        outcome = TransferResult(method="rsync", mirrored_deletions=True)
    else:
        logger.warning(
            "rsync not available locally; falling back to scp. Files deleted locally will remain in %s.",
            remote_dir,
        )
        result = session.copy_tree(local_dir, remote_dir)
        outcome = TransferResult(method="scp", mirrored_deletions=False)

    if not result.ok:
        raise TransferFailed(
            f"{outcome.method} to {session.target}:{remote_dir} failed (exit code {result.returncode}). {result.detail}".strip()
        )
    return outcome
