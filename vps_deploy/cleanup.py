"""Tear down a deployment.  Every step is best-effort; nothing here raises
because a target is already gone."""
from __future__ import annotations

import logging
import shlex

from .docker_deploy import remove_matching_containers, remove_matching_images
from .nginx_register import site_available_path, site_enabled_path
from .shell import SshSession, StepResult, best_effort, remove_remote_file


logger = logging.getLogger(__name__)


def cleanup_remote(session: SshSession, *, project_id: str, remote_dir: str) -> list[StepResult]:
    quoted_dir = shlex.quote(remote_dir)
    steps = [
        remove_matching_containers(session, project_id),
        remove_matching_images(session, project_id),
        remove_remote_file(session, "remove enabled nginx site", site_enabled_path()),
        remove_remote_file(session, "remove available nginx site", site_available_path()),
        best_effort(session, "reload nginx", "sudo nginx -t && sudo systemctl reload nginx"),
        best_effort(
            session,
            "remove project directory",
            f"sudo rm -rf {quoted_dir}",
            presence_check=f"test -d {quoted_dir}",
        ),
    ]
    for step in steps:
        logger.info("%s: %s", step.name, step.outcome.value)
    return steps
