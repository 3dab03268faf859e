from __future__ import annotations

import io
import logging
import re
from datetime import datetime
from pathlib import Path

import pytest

from vps_deploy import logs


LINE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\S* (DEBUG|INFO|DONE|WARNING|ERROR): ")


@pytest.fixture
def run_log(tmp_path: Path):
    stream = io.StringIO()
    path = logs.configure_run_logging(tmp_path / "logs", stream=stream, now=datetime(2024, 1, 2, 3, 4, 5))
    yield path, stream
    logs.close_run_logging()


def test_log_file_is_named_by_timestamp(run_log) -> None:
    path, _ = run_log
    assert path.name == "deploy_20240102_030405.log"
    assert path.parent.is_dir()


def test_debug_goes_to_file_only_and_lines_are_prefixed(run_log) -> None:
    path, stream = run_log
    logger = logs.get_logger()

    logger.debug("$ git fetch --all")
    logger.info("Testing SSH access")
    logs.close_run_logging()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert all(LINE_RE.match(line) for line in lines)
    assert "git fetch" not in stream.getvalue()
    assert "INFO: Testing SSH access" in stream.getvalue()


def test_registered_secret_is_redacted_from_child_loggers(run_log) -> None:
    path, stream = run_log
    logs.register_secret("ghp_abc123")

    logging.getLogger("vps_deploy.local_repo").info("cloning https://%s@example.com/app.git", "ghp_abc123")
    logs.close_run_logging()

    text = path.read_text(encoding="utf-8")
    assert "ghp_abc123" not in text
    assert "https://****@example.com/app.git" in text
    assert "ghp_abc123" not in stream.getvalue()


def test_step_logger_numbers_steps_and_marks_done(run_log) -> None:
    path, stream = run_log
    steps = logs.StepLogger()

    steps.step("Checking SSH connectivity", icon="🔌")
    steps.step("Preparing remote server", icon="🛠️")
    steps.done("Remote environment ready.")

    out = stream.getvalue()
    assert "Step 1: Checking SSH connectivity" in out
    assert "Step 2: Preparing remote server" in out
    assert "DONE: ✅ Remote environment ready." in out


def test_reconfigure_replaces_handlers(tmp_path: Path) -> None:
    logs.configure_run_logging(tmp_path, stream=io.StringIO())
    logs.configure_run_logging(tmp_path, stream=io.StringIO())
    try:
        assert len(logs.get_logger().handlers) == 2
    finally:
        logs.close_run_logging()
    assert logs.get_logger().handlers == []


def test_redact_replaces_every_secret() -> None:
    assert logs.redact("a tok b tok", ["tok", ""]) == "a **** b ****"
