"""Local and remote command execution.

Every remote operation is a single blocking ``ssh``/``scp``/``rsync`` call whose
exit status and output are returned as a :class:`CommandResult`; callers decide
whether a failure is fatal.

Security note: host-key verification is disabled on every connection
(``StrictHostKeyChecking=no``).  This trades MITM protection for unattended
first-contact deploys to fresh hosts.
"""
from __future__ import annotations

import enum
import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path


logger = logging.getLogger(__name__)

SSH_PROBE_CONNECT_TIMEOUT = 10
SSH_PROBE_TIMEOUT = 20
# Never shipped to the host: the checkout's origin URL may carry the access token.
TRANSFER_EXCLUDES = (".git",)


@dataclass(frozen=True)
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def detail(self) -> str:
        return str(self.stderr or "").strip() or str(self.stdout or "").strip()


class Outcome(enum.Enum):
    SUCCEEDED = "succeeded"
    SKIPPED_ABSENT = "skipped-absent"
    FAILED_IGNORED = "failed-ignored"


@dataclass(frozen=True)
class StepResult:
    name: str
    outcome: Outcome
    detail: str = ""


def _subprocess_error_text(exc: subprocess.CalledProcessError | subprocess.TimeoutExpired) -> str:
    stderr = exc.stderr.decode("utf-8", errors="replace") if isinstance(exc.stderr, bytes) else str(exc.stderr or "")
    stdout = exc.stdout.decode("utf-8", errors="replace") if isinstance(exc.stdout, bytes) else str(exc.stdout or "")
    return (stderr.strip() or stdout.strip() or "").strip()


def ssh_failure_hint(error_text: str) -> str:
    lowered = error_text.lower()
    if "no route to host" in lowered:
        return "No route to host. Check VPN/LAN reachability and REMOTE_HOST."
    if "timed out" in lowered:
        return "SSH timed out. Verify the server is online and port 22 is reachable."
    if "connection refused" in lowered:
        return "SSH connection refused. Confirm SSH daemon is running and port 22 is open."
    if "permission denied" in lowered:
        return "SSH authentication failed. Verify SSH_KEY is authorized for REMOTE_USER."
    if "could not resolve hostname" in lowered:
        return "Host resolution failed. Check REMOTE_HOST for typos/DNS issues."
    if "host key verification failed" in lowered:
        return "Host key mismatch. Remove the stale entry from ~/.ssh/known_hosts."
    return ""


def run_local(
    cmd: list[str],
    *,
    cwd: Path | None = None,
    timeout: float | None = None,
) -> CommandResult:
    logger.debug("$ %s", shlex.join(cmd))
    completed = subprocess.run(
        cmd,
        cwd=str(cwd) if cwd else None,
        capture_output=True,
        text=True,
        check=False,
        timeout=timeout,
    )
    result = CommandResult(
        args=list(cmd),
        returncode=completed.returncode,
        stdout=str(completed.stdout or ""),
        stderr=str(completed.stderr or ""),
    )
    for line in (result.stdout + result.stderr).splitlines():
        if line.strip():
            logger.debug("  %s", line)
    return result


@dataclass(frozen=True)
class SshSession:
    user: str
    host: str
    key_path: Path

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}"

    def ssh_options(self) -> list[str]:
        return ["-i", str(self.key_path), "-o", "StrictHostKeyChecking=no"]

    def transport(self) -> str:
        """The ``ssh`` invocation handed to ``rsync -e``."""
        return shlex.join(["ssh", *self.ssh_options()])

    def build_ssh_cmd(self, remote_command: str) -> list[str]:
        return ["ssh", *self.ssh_options(), self.target, remote_command]

    def build_probe_cmd(self) -> list[str]:
        return [
            "ssh",
            "-i", str(self.key_path),
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={SSH_PROBE_CONNECT_TIMEOUT}",
            "-o", "StrictHostKeyChecking=no",
            self.target,
            "echo ok",
        ]

    def build_scp_cmd(self, local_path: Path, remote_path: str) -> list[str]:
        return ["scp", *self.ssh_options(), str(local_path), f"{self.target}:{remote_path}"]

    def build_scp_tree_cmd(self, sources: list[str], remote_dir: str) -> list[str]:
        return ["scp", *self.ssh_options(), "-r", *sources, f"{self.target}:{remote_dir.rstrip('/')}/"]

    def build_rsync_cmd(self, local_dir: Path, remote_dir: str) -> list[str]:
        # Trailing slashes sync directory contents rather than the directory itself.
        # --delete-excluded also drops a .git left by an earlier unfiltered sync.
        return [
            "rsync",
            "-az",
            "--delete",
            "-e",
            self.transport(),
            *(f"--exclude={name}" for name in TRANSFER_EXCLUDES),
            "--delete-excluded",
            f"{str(local_dir).rstrip('/')}/",
            f"{self.target}:{remote_dir.rstrip('/')}/",
        ]

    def run(self, remote_command: str) -> CommandResult:
        return run_local(self.build_ssh_cmd(remote_command))

    def probe(self) -> CommandResult:
        try:
            return run_local(self.build_probe_cmd(), timeout=SSH_PROBE_TIMEOUT)
        except subprocess.TimeoutExpired as exc:
            return CommandResult(
                args=self.build_probe_cmd(),
                returncode=255,
                stderr=_subprocess_error_text(exc) or f"timed out after {SSH_PROBE_TIMEOUT}s",
            )

    def copy_file(self, local_path: Path, remote_path: str) -> CommandResult:
        return run_local(self.build_scp_cmd(local_path, remote_path))

    def copy_tree(self, local_dir: Path, remote_dir: str) -> CommandResult:
        # Top-level entries are passed individually so excluded names can be skipped.
        sources = sorted(str(entry) for entry in local_dir.iterdir() if entry.name not in TRANSFER_EXCLUDES)
        return run_local(self.build_scp_tree_cmd(sources, remote_dir))

    def sync_tree(self, local_dir: Path, remote_dir: str) -> CommandResult:
        return run_local(self.build_rsync_cmd(local_dir, remote_dir))


def best_effort(
    session: SshSession,
    name: str,
    command: str,
    *,
    presence_check: str | None = None,
) -> StepResult:
    """Run *command*, never raising.

    With *presence_check*, a non-zero exit from that command first marks the
    target absent and skips the step.
    """
    if presence_check is not None:
        present = session.run(presence_check)
        if not present.ok:
            logger.info("%s: nothing to do", name)
            return StepResult(name=name, outcome=Outcome.SKIPPED_ABSENT)

    result = session.run(command)
    if result.ok:
        return StepResult(name=name, outcome=Outcome.SUCCEEDED)

    logger.warning("%s failed (exit code %d), continuing. %s", name, result.returncode, result.detail)
    return StepResult(name=name, outcome=Outcome.FAILED_IGNORED, detail=result.detail)


def remove_remote_file(session: SshSession, name: str, path: str) -> StepResult:
    quoted = shlex.quote(path)
    # -L catches a symlink left dangling by an earlier partial cleanup.
    return best_effort(session, name, f"sudo rm -f {quoted}", presence_check=f"sudo test -e {quoted} -o -L {quoted}")
