"""Idempotent remote bootstrap of Docker, Docker Compose and Nginx.

Each component is probed first; if present only its version is reported.
Otherwise it is installed, its service enabled, and the probe repeated.
"""
from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass

from .errors import BootstrapFailed, UnsupportedRemoteOS
from .shell import CommandResult, SshSession, StepResult, best_effort


logger = logging.getLogger(__name__)

DOCKER_INSTALL_SCRIPT_URL = "https://get.docker.com"
COMPOSE_RELEASE_URL = "https://github.com/docker/compose/releases/latest/download/docker-compose-{os}-{arch}"
COMPOSE_INSTALL_PATH = "/usr/local/bin/docker-compose"
COMPOSE_LINK_PATH = "/usr/bin/docker-compose"
NGINX_PROBE_CMD = "sudo nginx -v"

# Probed in order; first match wins.
NGINX_INSTALL_COMMANDS: tuple[tuple[str, str, str], ...] = (
    ("apt-get", "debian", "sudo apt-get update -y && sudo apt-get install -y nginx"),
    ("dnf", "rhel", "sudo dnf install -y nginx"),
    ("yum", "rhel", "sudo yum install -y epel-release nginx"),
)


@dataclass(frozen=True)
class ComponentStatus:
    name: str
    version: str
    installed: bool
    steps: tuple[StepResult, ...] = ()


@dataclass(frozen=True)
class RemotePlatform:
    os_name: str
    arch: str


def _version_text(result: CommandResult) -> str:
    text = str(result.stdout or "").strip() or str(result.stderr or "").strip()
    return text.splitlines()[0] if text else ""


def _probe(session: SshSession, command: str) -> str | None:
    result = session.run(command)
    if not result.ok:
        return None
    return _version_text(result)


def _require(session: SshSession, component: str, command: str) -> None:
    result = session.run(command)
    if not result.ok:
        raise BootstrapFailed(component, result.detail or f"'{command}' exited with {result.returncode}")


def _enable_service(session: SshSession, component: str, service: str) -> None:
    _require(session, component, f"sudo systemctl enable --now {shlex.quote(service)}")


def _confirm_installed(session: SshSession, component: str, probe_command: str) -> str:
    version = _probe(session, probe_command)
    if version is None:
        raise BootstrapFailed(component, f"'{probe_command}' still fails after install")
    return version


def ensure_docker(session: SshSession) -> ComponentStatus:
    version = _probe(session, "docker --version")
    if version is not None:
        logger.info("Docker already installed: %s", version)
        return ComponentStatus(name="docker", version=version, installed=False)

    logger.info("Docker not found. Installing...")
    _require(
        session,
        "docker",
        f"curl -fsSL {DOCKER_INSTALL_SCRIPT_URL} -o /tmp/get-docker.sh && sudo sh /tmp/get-docker.sh",
    )
    _enable_service(session, "docker", "docker")
    # Later docker calls use sudo, so group membership is a convenience only.
    group_step = best_effort(
        session,
        "add deploy user to docker group",
        f"sudo usermod -aG docker {shlex.quote(session.user)}",
    )
    version = _confirm_installed(session, "docker", "docker --version")
    logger.info("Docker installed: %s", version)
    return ComponentStatus(name="docker", version=version, installed=True, steps=(group_step,))


def detect_platform(session: SshSession) -> RemotePlatform:
    result = session.run("uname -sm")
    parts = str(result.stdout or "").split()
    if not result.ok or len(parts) != 2:
        raise BootstrapFailed("docker-compose", f"could not detect remote platform: {result.detail or result.stdout!r}")
    return RemotePlatform(os_name=parts[0], arch=parts[1])


def compose_download_url(platform: RemotePlatform) -> str:
    # Release assets are named with a lowercase OS, e.g. docker-compose-linux-x86_64.
    return COMPOSE_RELEASE_URL.format(os=platform.os_name.lower(), arch=platform.arch)


def ensure_compose(session: SshSession) -> ComponentStatus:
    version = _probe(session, "docker-compose --version")
    if version is not None:
        logger.info("Docker Compose found: %s", version)
        return ComponentStatus(name="docker-compose", version=version, installed=False)

    platform = detect_platform(session)
    url = compose_download_url(platform)
    logger.info("Installing Docker Compose from %s...", url)
    _require(session, "docker-compose", f"sudo curl -fsSL {shlex.quote(url)} -o {COMPOSE_INSTALL_PATH}")
    _require(session, "docker-compose", f"sudo chmod +x {COMPOSE_INSTALL_PATH}")
    _require(session, "docker-compose", f"sudo ln -sf {COMPOSE_INSTALL_PATH} {COMPOSE_LINK_PATH}")
    version = _confirm_installed(session, "docker-compose", "docker-compose --version")
    logger.info("Docker Compose installed: %s", version)
    return ComponentStatus(name="docker-compose", version=version, installed=True)


def detect_nginx_install_command(session: SshSession) -> tuple[str, str]:
    """Return ``(family, install_command)`` for the remote package manager."""
    for manager, family, install_cmd in NGINX_INSTALL_COMMANDS:
        if session.run(f"command -v {manager}").ok:
            return family, install_cmd
    raise UnsupportedRemoteOS(
        f"Unsupported OS on {session.host} for Nginx install: none of "
        f"{', '.join(m for m, _, _ in NGINX_INSTALL_COMMANDS)} found"
    )


def ensure_nginx(session: SshSession) -> ComponentStatus:
    # nginx lives in /usr/sbin, which only sudo's secure_path covers for non-root
    # logins on Debian.  nginx -v reports on stderr.
    version = _probe(session, NGINX_PROBE_CMD)
    if version is not None:
        logger.info("Nginx found: %s", version)
        return ComponentStatus(name="nginx", version=version, installed=False)

    family, install_cmd = detect_nginx_install_command(session)
    logger.info("Installing Nginx (%s family)...", family)
    _require(session, "nginx", install_cmd)
    _enable_service(session, "nginx", "nginx")
    version = _confirm_installed(session, "nginx", NGINX_PROBE_CMD)
    logger.info("Nginx installed: %s", version)
    return ComponentStatus(name="nginx", version=version, installed=True)


def ensure_remote_environment(session: SshSession) -> list[ComponentStatus]:
    return [ensure_docker(session), ensure_compose(session), ensure_nginx(session)]
