from __future__ import annotations

import sys
from pathlib import Path

import pytest


def pytest_configure() -> None:
    # Allow tests to import `vps_deploy` without installing the package.
    repo_root = Path(__file__).parents[2]
    if str(repo_root) not in sys.path:
        sys.path.append(str(repo_root))


class FakeSession:
    """Scripted stand-in for ``SshSession``.

    ``respond(needle, ...)`` registers a canned result for any remote command
    containing *needle*; the first matching rule wins.  A rule with *times*
    is dropped after that many matches.  Unmatched commands succeed with
    empty output.
    """

    def __init__(self, *, user: str = "deploy", host: str = "203.0.113.10") -> None:
        from vps_deploy.shell import CommandResult

        self._result_cls = CommandResult
        self.user = user
        self.host = host
        self.key_path = Path("/keys/id_ed25519")
        self.rules: list[list] = []
        self.calls: list[str] = []
        self.uploads: dict[str, str] = {}
        self.probe_returncode = 0
        self.probe_stderr = ""
        self.copy_returncode = 0

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}"

    def respond(
        self,
        needle: str,
        *,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        times: int | None = None,
    ) -> "FakeSession":
        self.rules.append([needle, returncode, stdout, stderr, times])
        return self

    def run(self, remote_command: str):
        self.calls.append(remote_command)
        for rule in self.rules:
            needle, returncode, stdout, stderr, times = rule
            if needle in remote_command:
                if times is not None:
                    rule[4] = times - 1
                    if rule[4] <= 0:
                        self.rules.remove(rule)
                return self._result_cls(args=["ssh", remote_command], returncode=returncode, stdout=stdout, stderr=stderr)
        return self._result_cls(args=["ssh", remote_command], returncode=0)

    def probe(self):
        self.calls.append("<probe>")
        return self._result_cls(args=["ssh"], returncode=self.probe_returncode, stderr=self.probe_stderr)

    def copy_file(self, local_path: Path, remote_path: str):
        self.calls.append(f"<scp {remote_path}>")
        self.uploads[remote_path] = Path(local_path).read_text(encoding="utf-8")
        return self._result_cls(args=["scp"], returncode=self.copy_returncode)

    def copy_tree(self, local_dir: Path, remote_dir: str):
        self.calls.append(f"<scp -r {remote_dir}>")
        return self._result_cls(args=["scp"], returncode=self.copy_returncode)

    def sync_tree(self, local_dir: Path, remote_dir: str):
        self.calls.append(f"<rsync {remote_dir}>")
        return self._result_cls(args=["rsync"], returncode=self.copy_returncode)


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()
