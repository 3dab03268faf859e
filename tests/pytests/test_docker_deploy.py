from __future__ import annotations

import pytest

from vps_deploy import docker_deploy
from vps_deploy.errors import DeployFailed
from vps_deploy.shell import Outcome


REMOTE_DIR = "/home/deploy/app"


def _clock() -> float:
    return 1700000000.5


def test_matching_ids_substring_and_dedup() -> None:
    rows = docker_deploy.parse_id_rows("a1 app_1699\nb2 web\na1 app:latest\n\nbroken\n")
    assert rows == [("a1", "app_1699"), ("b2", "web"), ("a1", "app:latest")]
    assert docker_deploy.matching_ids(rows, "app") == ["a1"]


def test_build_run_cmd_publishes_port_with_restart_policy() -> None:
    cmd = docker_deploy.build_run_cmd(container_name="app_1700000000", image_tag="app:latest", port=3000)
    assert cmd == "sudo docker run -d --name app_1700000000 --restart on-failure -p 3000:3000 app:latest"


def test_deploy_dockerfile_mode_tears_down_then_builds_and_runs(fake_session) -> None:
    fake_session.respond("docker ps -a", stdout="c1\tapp_1699999999\nc2\tweb\n")
    fake_session.respond("docker images", stdout="i1\tapp:latest\ni2\tnginx:alpine\n")
    fake_session.respond("ls -1A", stdout="Dockerfile\npackage.json\n")

    result = docker_deploy.deploy_containers(
        fake_session,
        project_id="app",
        remote_dir=REMOTE_DIR,
        port=3000,
        clock=_clock,
    )

    assert result.mode == "dockerfile"
    assert result.image_tag == "app:latest"
    assert result.container_name == "app_1700000000"
    calls = fake_session.calls
    rm = calls.index("sudo docker rm -f c1")
    rmi = calls.index("sudo docker rmi -f i1")
    build = calls.index("cd /home/deploy/app && sudo docker build -t app:latest .")
    run = calls.index("sudo docker run -d --name app_1700000000 --restart on-failure -p 3000:3000 app:latest")
    assert rm < rmi < build < run
    assert [s.outcome for s in result.teardown] == [Outcome.SUCCEEDED, Outcome.SUCCEEDED]


def test_deploy_compose_mode_uses_remote_compose_file(fake_session) -> None:
    fake_session.respond("ls -1A", stdout="compose.yaml\nsrc\n")

    result = docker_deploy.deploy_containers(fake_session, project_id="app", remote_dir=REMOTE_DIR, port=3000)

    assert result.mode == "compose"
    assert result.compose_file == "compose.yaml"
    assert "cd /home/deploy/app && sudo docker-compose -f compose.yaml down" in fake_session.calls
    assert "cd /home/deploy/app && sudo docker-compose -f compose.yaml up -d --build" in fake_session.calls
    assert not any("docker build" in c for c in fake_session.calls)


def test_compose_down_failure_is_ignored_but_up_failure_is_fatal(fake_session) -> None:
    fake_session.respond("ls -1A", stdout="docker-compose.yml\n")
    fake_session.respond("compose.yml down", returncode=1, stderr="no such service")
    fake_session.respond("up -d --build", returncode=1, stderr="port is already allocated")

    with pytest.raises(DeployFailed) as excinfo:
        docker_deploy.deploy_containers(fake_session, project_id="app", remote_dir=REMOTE_DIR, port=3000)

    assert "docker-compose up failed" in str(excinfo.value)
    assert "port is already allocated" in str(excinfo.value)


def test_first_deploy_skips_teardown_removals(fake_session) -> None:
    fake_session.respond("ls -1A", stdout="Dockerfile\n")

    result = docker_deploy.deploy_containers(fake_session, project_id="app", remote_dir=REMOTE_DIR, port=8080, clock=_clock)

    assert [s.outcome for s in result.teardown] == [Outcome.SKIPPED_ABSENT, Outcome.SKIPPED_ABSENT]
    assert not any("docker rm" in c for c in fake_session.calls)


def test_failed_listing_does_not_stop_deploy(fake_session) -> None:
    fake_session.respond("docker ps -a", returncode=1, stderr="Cannot connect to the Docker daemon")
    fake_session.respond("ls -1A", stdout="Dockerfile\n")

    result = docker_deploy.deploy_containers(fake_session, project_id="app", remote_dir=REMOTE_DIR, port=8080, clock=_clock)

    assert result.teardown[0].outcome is Outcome.FAILED_IGNORED


def test_build_failure_is_fatal(fake_session) -> None:
    fake_session.respond("ls -1A", stdout="Dockerfile\n")
    fake_session.respond("docker build", returncode=1, stderr="npm ERR! missing script: start")

    with pytest.raises(DeployFailed) as excinfo:
        docker_deploy.deploy_containers(fake_session, project_id="app", remote_dir=REMOTE_DIR, port=3000, clock=_clock)

    assert "docker build of app:latest failed" in str(excinfo.value)
    assert not any("docker run" in c for c in fake_session.calls)


def test_unlistable_remote_dir_is_fatal(fake_session) -> None:
    fake_session.respond("ls -1A", returncode=2, stderr="No such file or directory")

    with pytest.raises(DeployFailed):
        docker_deploy.deploy_containers(fake_session, project_id="app", remote_dir=REMOTE_DIR, port=3000)


def test_redeploy_replaces_the_previous_instance(fake_session) -> None:
    fake_session.respond("ls -1A", stdout="Dockerfile\n")
    first = docker_deploy.deploy_containers(
        fake_session, project_id="app", remote_dir=REMOTE_DIR, port=3000, clock=lambda: 1700000000.0
    )

    fake_session.respond("docker ps -a", stdout=f"c9\t{first.container_name}\n")
    fake_session.calls.clear()
    second = docker_deploy.deploy_containers(
        fake_session, project_id="app", remote_dir=REMOTE_DIR, port=3000, clock=lambda: 1700000600.0
    )

    assert second.container_name != first.container_name
    calls = fake_session.calls
    assert calls.index("sudo docker rm -f c9") < next(i for i, c in enumerate(calls) if c.startswith("sudo docker run"))
    assert sum(c.startswith("sudo docker run") for c in calls) == 1
