from __future__ import annotations

from vps_deploy.cleanup import cleanup_remote
from vps_deploy.shell import Outcome


def _outcomes(steps) -> dict[str, Outcome]:
    return {step.name: step.outcome for step in steps}


def test_cleanup_removes_everything_in_order(fake_session) -> None:
    fake_session.respond("docker ps -a", stdout="c1 app_1700000000\n")
    fake_session.respond("docker images", stdout="i1 app:latest\n")

    steps = cleanup_remote(fake_session, project_id="app", remote_dir="/home/deploy/app")

    assert [s.name for s in steps] == [
        "remove old containers",
        "remove old images",
        "remove enabled nginx site",
        "remove available nginx site",
        "reload nginx",
        "remove project directory",
    ]
    assert all(s.outcome is Outcome.SUCCEEDED for s in steps)
    calls = fake_session.calls
    assert calls.index("sudo docker rm -f c1") < calls.index("sudo docker rmi -f i1")
    assert "sudo rm -f /etc/nginx/sites-enabled/app.conf" in calls
    assert "sudo rm -f /etc/nginx/sites-available/app.conf" in calls
    assert calls[-1] == "sudo rm -rf /home/deploy/app"


def test_cleanup_without_prior_deployment_never_raises(fake_session) -> None:
    fake_session.respond("sudo test -e", returncode=1)
    fake_session.respond("test -d", returncode=1)

    steps = cleanup_remote(fake_session, project_id="app", remote_dir="/home/deploy/app")

    outcomes = _outcomes(steps)
    assert outcomes["remove old containers"] is Outcome.SKIPPED_ABSENT
    assert outcomes["remove enabled nginx site"] is Outcome.SKIPPED_ABSENT
    assert outcomes["remove project directory"] is Outcome.SKIPPED_ABSENT
    assert not any(c.startswith("sudo rm") for c in fake_session.calls)


def test_cleanup_continues_past_failures(fake_session) -> None:
    fake_session.respond("docker ps -a", returncode=1, stderr="Cannot connect to the Docker daemon")
    fake_session.respond("nginx -t", returncode=1, stderr="nginx: command not found")

    steps = cleanup_remote(fake_session, project_id="app", remote_dir="/home/deploy/app")

    outcomes = _outcomes(steps)
    assert outcomes["remove old containers"] is Outcome.FAILED_IGNORED
    assert outcomes["reload nginx"] is Outcome.FAILED_IGNORED
    assert outcomes["remove project directory"] is Outcome.SUCCEEDED
