"""Remote container deployment keyed by project id.

A deploy first removes every container and image whose name or reference
contains the project id, then launches either the compose stack found at the
remote project root or a freshly built ``<project_id>:latest`` image.
Container names carry a unix timestamp suffix so a new container never
collides with one whose removal failed.
"""
from __future__ import annotations

import logging
import shlex
import time
from dataclasses import dataclass
from typing import Callable

from .errors import DeployFailed
from .local_repo import COMPOSE_FILENAMES
from .shell import Outcome, SshSession, StepResult, best_effort


logger = logging.getLogger(__name__)

LIST_CONTAINERS_CMD = "sudo docker ps -a --format '{{.ID}}\\t{{.Names}}'"
LIST_IMAGES_CMD = "sudo docker images --format '{{.ID}}\\t{{.Repository}}:{{.Tag}}'"
STATUS_TABLE_CMD = "sudo docker ps --format 'table {{.Names}}\\t{{.Image}}\\t{{.Status}}'"
RESTART_POLICY = "on-failure"


@dataclass(frozen=True)
class DeploymentResult:
    mode: str
    image_tag: str = ""
    container_name: str = ""
    compose_file: str = ""
    teardown: tuple[StepResult, ...] = ()


def parse_id_rows(stdout: str) -> list[tuple[str, str]]:
    """Parse tab-separated ``<id> <name-or-ref>`` rows from a docker ``--format`` listing."""
    rows: list[tuple[str, str]] = []
    for line in str(stdout or "").splitlines():
        parts = line.strip().split(None, 1)
        if len(parts) != 2:
            continue
        rows.append((parts[0], parts[1]))
    return rows


def matching_ids(rows: list[tuple[str, str]], project_id: str) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for row_id, label in rows:
        if project_id not in label or row_id in seen:
            continue
        seen.add(row_id)
        out.append(row_id)
    return out


def _remove_matching(
    session: SshSession,
    *,
    name: str,
    list_cmd: str,
    remove_cmd: str,
    project_id: str,
) -> StepResult:
    listing = session.run(list_cmd)
    if not listing.ok:
        logger.warning("%s: listing failed, continuing. %s", name, listing.detail)
        return StepResult(name=name, outcome=Outcome.FAILED_IGNORED, detail=listing.detail)

    ids = matching_ids(parse_id_rows(listing.stdout), project_id)
    if not ids:
        return StepResult(name=name, outcome=Outcome.SKIPPED_ABSENT)

    logger.info("%s: %s", name, " ".join(ids))
    return best_effort(session, name, f"{remove_cmd} {' '.join(shlex.quote(i) for i in ids)}")


def remove_matching_containers(session: SshSession, project_id: str) -> StepResult:
    return _remove_matching(
        session,
        name="remove old containers",
        list_cmd=LIST_CONTAINERS_CMD,
        remove_cmd="sudo docker rm -f",
        project_id=project_id,
    )


def remove_matching_images(session: SshSession, project_id: str) -> StepResult:
    return _remove_matching(
        session,
        name="remove old images",
        list_cmd=LIST_IMAGES_CMD,
        remove_cmd="sudo docker rmi -f",
        project_id=project_id,
    )


def teardown_prior(session: SshSession, project_id: str) -> list[StepResult]:
    logger.info("Cleaning old containers and images...")
    return [remove_matching_containers(session, project_id), remove_matching_images(session, project_id)]


def list_remote_files(session: SshSession, remote_dir: str) -> set[str]:
    result = session.run(f"ls -1A {shlex.quote(remote_dir)}")
    if not result.ok:
        raise DeployFailed(f"Cannot list remote project directory {remote_dir}: {result.detail}")
    return {line.strip() for line in result.stdout.splitlines() if line.strip()}


def find_remote_compose_file(session: SshSession, remote_dir: str) -> str:
    present = list_remote_files(session, remote_dir)
    for name in COMPOSE_FILENAMES:
        if name in present:
            return name
    return ""


def in_dir(remote_dir: str, command: str) -> str:
    return f"cd {shlex.quote(remote_dir)} && {command}"


def build_compose_cmd(*, remote_dir: str, compose_file: str, args: str) -> str:
    return in_dir(remote_dir, f"sudo docker-compose -f {shlex.quote(compose_file)} {args}")


def build_image_cmd(*, remote_dir: str, image_tag: str) -> str:
    return in_dir(remote_dir, f"sudo docker build -t {shlex.quote(image_tag)} .")


def build_run_cmd(*, container_name: str, image_tag: str, port: int) -> str:
    return (
        f"sudo docker run -d --name {shlex.quote(container_name)} --restart {RESTART_POLICY} "
        f"-p {port}:{port} {shlex.quote(image_tag)}"
    )


def _require(session: SshSession, command: str, action: str) -> None:
    result = session.run(command)
    if not result.ok:
        message = f"{action} (exit code {result.returncode})."
        if result.detail:
            message = f"{message} {result.detail}"
        raise DeployFailed(message)


def report_running_containers(session: SshSession) -> str:
    result = session.run(STATUS_TABLE_CMD)
    table = str(result.stdout or "").rstrip()
    for line in table.splitlines():
        logger.info("  %s", line)
    return table


def deploy_containers(
    session: SshSession,
    *,
    project_id: str,
    remote_dir: str,
    port: int,
    clock: Callable[[], float] = time.time,
) -> DeploymentResult:
    teardown = tuple(teardown_prior(session, project_id))

    compose_file = find_remote_compose_file(session, remote_dir)
    if compose_file:
        logger.info("Using docker-compose (%s)...", compose_file)
        best_effort(
            session,
            "compose down",
            build_compose_cmd(remote_dir=remote_dir, compose_file=compose_file, args="down"),
        )
        _require(
            session,
            build_compose_cmd(remote_dir=remote_dir, compose_file=compose_file, args="up -d --build"),
            "docker-compose up failed",
        )
        result = DeploymentResult(mode="compose", compose_file=compose_file, teardown=teardown)
    else:
        image_tag = f"{project_id}:latest"
        container_name = f"{project_id}_{int(clock())}"
        logger.info("Using Dockerfile: building %s...", image_tag)
        _require(session, build_image_cmd(remote_dir=remote_dir, image_tag=image_tag), f"docker build of {image_tag} failed")
        _require(
            session,
            build_run_cmd(container_name=container_name, image_tag=image_tag, port=port),
            f"docker run of {container_name} failed",
        )
        result = DeploymentResult(
            mode="dockerfile",
            image_tag=image_tag,
            container_name=container_name,
            teardown=teardown,
        )

    report_running_containers(session)
    return result
