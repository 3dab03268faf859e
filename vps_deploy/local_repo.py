"""Local side of a deploy: tooling check, clone/update, build descriptor."""
from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

import yaml

from .config import DeployConfig
from .errors import SyncFailed, ToolNotFound
from .logs import redact
from .shell import run_local


logger = logging.getLogger(__name__)

REQUIRED_LOCAL_TOOLS = ("git", "ssh", "scp")
COMPOSE_FILENAMES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")
DOCKERFILE_NAME = "Dockerfile"
DEFAULT_APP_PORT = 3000

DEFAULT_DOCKERFILE = f"""\
FROM node:18-alpine
WORKDIR /app
COPY package*.json ./
RUN npm ci --only=production || npm install --production || true
COPY . .
EXPOSE {DEFAULT_APP_PORT}
CMD ["npm","start"]
"""

_HTTP_URL = re.compile(r"^(https?)://", re.IGNORECASE)


@dataclass(frozen=True)
class LocalRepo:
    path: Path
    default_dockerfile_created: bool = False
    compose_file: str = ""
    compose_services: list[str] = field(default_factory=list)


def check_local_tools(tools: tuple[str, ...] = REQUIRED_LOCAL_TOOLS) -> None:
    for tool in tools:
        if shutil.which(tool) is None:
            raise ToolNotFound(tool)


def authenticated_url(repo_url: str, token: str) -> str:
    if not token or not _HTTP_URL.match(repo_url):
        return repo_url
    return _HTTP_URL.sub(lambda m: f"{m.group(1)}://{quote(token, safe='')}@", repo_url, count=1)


def _git(args: list[str], *, cwd: Path | None, action: str, secrets: list[str]) -> None:
    result = run_local(["git", *args], cwd=cwd)
    if not result.ok:
        detail = redact(result.detail, secrets)
        message = f"{action} (exit code {result.returncode})."
        if detail:
            message = f"{message} {detail}"
        raise SyncFailed(message)


def sync_repository(config: DeployConfig, work_dir: Path) -> Path:
    """Clone the repo into ``<work_dir>/<project_id>`` or fast-forward it."""
    repo_path = work_dir / config.project_id
    clone_url = authenticated_url(config.repo_url, config.access_token)
    secrets = [config.access_token, quote(config.access_token, safe="")] if config.access_token else []

    if (repo_path / ".git").is_dir():
        logger.info("Repo exists at %s. Pulling latest changes for %s...", repo_path, config.branch)
        _git(["remote", "set-url", "origin", clone_url], cwd=repo_path, action="Failed to set origin URL", secrets=secrets)
        _git(["fetch", "--all", "--prune"], cwd=repo_path, action="Git fetch failed", secrets=secrets)
        _git(["checkout", config.branch], cwd=repo_path, action=f"Git checkout of {config.branch} failed", secrets=secrets)
        _git(
            ["pull", "--ff-only", "origin", config.branch],
            cwd=repo_path,
            action=f"Git pull of {config.branch} failed",
            secrets=secrets,
        )
        return repo_path

    logger.info("Cloning %s (branch: %s)...", redact(config.repo_url, secrets), config.branch)
    work_dir.mkdir(parents=True, exist_ok=True)
    _git(
        ["clone", "--depth", "1", "--no-single-branch", "--branch", config.branch, clone_url, str(repo_path)],
        cwd=work_dir,
        action="Git clone failed",
        secrets=secrets,
    )
    return repo_path


def find_compose_file(repo_path: Path) -> str:
    for name in COMPOSE_FILENAMES:
        if (repo_path / name).is_file():
            return name
    return ""


def read_compose_services(compose_path: Path) -> list[str]:
    try:
        payload = yaml.safe_load(compose_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise SyncFailed(f"{compose_path.name} is not valid YAML: {exc}")
    if not isinstance(payload, dict):
        raise SyncFailed(f"{compose_path.name} is not a valid compose mapping")
    services = payload.get("services")
    if not isinstance(services, dict):
        return []
    return [str(name) for name in services]


def ensure_build_descriptor(repo_path: Path) -> bool:
    """Write a default Dockerfile when the repo has no build descriptor.

    Returns True only when a default was created.
    """
    if (repo_path / DOCKERFILE_NAME).is_file() or find_compose_file(repo_path):
        return False
    (repo_path / DOCKERFILE_NAME).write_text(DEFAULT_DOCKERFILE, encoding="utf-8")
    return True


def prepare_local_repo(config: DeployConfig, work_dir: Path) -> LocalRepo:
    repo_path = sync_repository(config, work_dir)
    created = ensure_build_descriptor(repo_path)
    if created:
        logger.info("No Dockerfile or compose file found. Created a default Node.js Dockerfile (port %d).", DEFAULT_APP_PORT)

    compose_file = find_compose_file(repo_path)
    services: list[str] = []
    if compose_file:
        services = read_compose_services(repo_path / compose_file)
        logger.info("Docker setup found: %s (services: %s)", compose_file, ", ".join(services) or "none")
    elif not created:
        logger.info("Docker setup found: %s", DOCKERFILE_NAME)

    return LocalRepo(
        path=repo_path,
        default_dockerfile_created=created,
        compose_file=compose_file,
        compose_services=services,
    )
