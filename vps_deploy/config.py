"""Deployment inputs.

Each field resolves in order: process environment -> deploy dotenv file
(``.env.deploy`` by default) -> interactive prompt.  The result is a frozen
:class:`DeployConfig` that is passed explicitly to every step.
"""
from __future__ import annotations

import getpass
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping

from dotenv import dotenv_values

from .errors import InvalidField, MissingRequiredField


ENV_GIT_URL = "GIT_URL"
ENV_PAT = "PAT"
ENV_BRANCH = "BRANCH"
ENV_REMOTE_USER = "REMOTE_USER"
ENV_REMOTE_HOST = "REMOTE_HOST"
ENV_SSH_KEY = "SSH_KEY"
ENV_CONTAINER_PORT = "CONTAINER_PORT"
ENV_REMOTE_PROJECT_DIR = "REMOTE_PROJECT_DIR"

DEFAULT_BRANCH = "main"
DEFAULT_ENV_FILE = ".env.deploy"


@dataclass(frozen=True)
class _Field:
    key: str
    prompt: str
    secret: bool = False
    required: bool = False


# Collection order matters: it is the order the operator is prompted in.
FIELDS: tuple[_Field, ...] = (
    _Field(ENV_GIT_URL, "Git repository to deploy (https://...): ", required=True),
    _Field(ENV_PAT, "Personal Access Token (press Enter if public): ", secret=True),
    _Field(ENV_BRANCH, f"Branch [{DEFAULT_BRANCH}]: "),
    _Field(ENV_REMOTE_USER, "Remote SSH username: ", required=True),
    _Field(ENV_REMOTE_HOST, "Remote server IP/hostname: ", required=True),
    _Field(ENV_SSH_KEY, "SSH key path (e.g. ~/.ssh/id_rsa): ", required=True),
    _Field(ENV_CONTAINER_PORT, "App port inside container (e.g. 3000): ", required=True),
    _Field(ENV_REMOTE_PROJECT_DIR, "Remote project directory (optional): "),
)


@dataclass(frozen=True)
class DeployConfig:
    repo_url: str
    ssh_user: str
    ssh_host: str
    ssh_key: Path
    container_port: int
    project_id: str
    remote_dir: str
    branch: str = DEFAULT_BRANCH
    access_token: str = field(default="", repr=False)

    @property
    def ssh_target(self) -> str:
        return f"{self.ssh_user}@{self.ssh_host}"

    @property
    def public_url(self) -> str:
        return f"http://{self.ssh_host}"


def derive_project_id(repo_url: str) -> str:
    """``https://example.com/acme/app.git`` -> ``app``; SSH form works too."""
    trimmed = repo_url.strip().rstrip("/")
    name = re.split(r"[/:]", trimmed)[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return name


def default_remote_dir(ssh_user: str, project_id: str) -> str:
    return f"/home/{ssh_user}/{project_id}"


def read_dotenv_key(*, dotenv_path: Path, key: str) -> str:
    if not dotenv_path.exists():
        return ""
    raw = dotenv_values(dotenv_path)
    return str(raw.get(key) or "").strip()


def _ask(prompt_fn: Callable[[str], str], text: str) -> str:
    try:
        return str(prompt_fn(text) or "").strip()
    except EOFError:
        return ""


def resolve_inputs(
    *,
    env: Mapping[str, str],
    dotenv_path: Path | None,
    interactive: bool,
    prompt: Callable[[str], str] = input,
    secret_prompt: Callable[[str], str] = getpass.getpass,
) -> dict[str, str]:
    values: dict[str, str] = {}
    for spec in FIELDS:
        resolved = str(env.get(spec.key) or "").strip()
        if not resolved and dotenv_path is not None:
            resolved = read_dotenv_key(dotenv_path=dotenv_path, key=spec.key)
        if not resolved and interactive:
            resolved = _ask(secret_prompt if spec.secret else prompt, spec.prompt)
        values[spec.key] = resolved
    return values


def parse_port(raw: str) -> int:
    try:
        port = int(raw)
    except ValueError:
        raise InvalidField(f"{ENV_CONTAINER_PORT} must be an integer, got {raw!r}")
    if port < 1 or port > 65535:
        raise InvalidField(f"{ENV_CONTAINER_PORT} must be in range 1-65535, got {port}")
    return port


def build_config(values: Mapping[str, str]) -> DeployConfig:
    missing = [spec.key for spec in FIELDS if spec.required and not str(values.get(spec.key) or "").strip()]
    if missing:
        raise MissingRequiredField(missing)

    repo_url = values[ENV_GIT_URL].strip()
    project_id = derive_project_id(repo_url)
    if not project_id:
        raise InvalidField(f"Cannot derive a project name from {ENV_GIT_URL}={repo_url!r}")

    ssh_key = Path(values[ENV_SSH_KEY].strip()).expanduser()
    if not ssh_key.is_file() or not os.access(ssh_key, os.R_OK):
        raise InvalidField(f"{ENV_SSH_KEY} does not reference a readable private key: {ssh_key}")

    ssh_user = values[ENV_REMOTE_USER].strip()
    remote_dir = str(values.get(ENV_REMOTE_PROJECT_DIR) or "").strip() or default_remote_dir(ssh_user, project_id)

    return DeployConfig(
        repo_url=repo_url,
        access_token=str(values.get(ENV_PAT) or "").strip(),
        branch=str(values.get(ENV_BRANCH) or "").strip() or DEFAULT_BRANCH,
        ssh_user=ssh_user,
        ssh_host=values[ENV_REMOTE_HOST].strip(),
        ssh_key=ssh_key,
        container_port=parse_port(values[ENV_CONTAINER_PORT].strip()),
        project_id=project_id,
        remote_dir=remote_dir,
    )


def collect_config(
    *,
    env: Mapping[str, str] | None = None,
    dotenv_path: Path | None = None,
    interactive: bool = True,
    prompt: Callable[[str], str] = input,
    secret_prompt: Callable[[str], str] = getpass.getpass,
) -> DeployConfig:
    values = resolve_inputs(
        env=os.environ if env is None else env,
        dotenv_path=dotenv_path,
        interactive=interactive,
        prompt=prompt,
        secret_prompt=secret_prompt,
    )
    return build_config(values)
