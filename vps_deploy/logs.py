"""Run log for a deploy invocation.

Each run appends ``<UTC timestamp> <LEVEL>: <message>`` lines to its own
``deploy_<YYYYmmdd_HHMMSS>.log`` and echoes them to stdout.  Subprocess output
is logged at DEBUG and only lands in the file.
"""
from __future__ import annotations

import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Iterable, TextIO


LOGGER_NAME = "vps_deploy"
LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"

# Completed-step marker between INFO and WARNING.
DONE = 25
logging.addLevelName(DONE, "DONE")

REDACTED = "****"


class UtcFormatter(logging.Formatter):
    converter = time.gmtime


class SecretRedactingFilter(logging.Filter):
    """Replace every known secret in a record with ``****``."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self.secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True
        record.msg = redact(record.getMessage(), self.secrets)
        record.args = None
        return True


def redact(text: str, secrets: Iterable[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def get_logger() -> logging.Logger:
    return logging.getLogger(LOGGER_NAME)


def log_file_name(now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"deploy_{stamp}.log"


def configure_run_logging(
    log_dir: Path,
    *,
    secrets: Iterable[str] = (),
    stream: TextIO | None = None,
    now: datetime | None = None,
) -> Path:
    """Attach a fresh file + console handler pair and return the log path."""
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / log_file_name(now)

    close_run_logging()
    logger = get_logger()
    logger.setLevel(logging.DEBUG)

    formatter = UtcFormatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    # Handler-level so records from child loggers are redacted too.
    redactor = SecretRedactingFilter(secrets)

    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)

    console = logging.StreamHandler(stream or sys.stdout)
    console.setLevel(logging.INFO)

    for handler in (file_handler, console):
        handler.setFormatter(formatter)
        handler.addFilter(redactor)
        logger.addHandler(handler)

    return log_path


def close_run_logging() -> None:
    logger = get_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def register_secret(secret: str) -> None:
    """Redact *secret* from everything logged from now on."""
    if not secret:
        return
    for handler in get_logger().handlers:
        for flt in handler.filters:
            if isinstance(flt, SecretRedactingFilter) and secret not in flt.secrets:
                flt.secrets.append(secret)


class StepLogger:
    """Numbered step headers, e.g. ``Step 3: Preparing remote server``."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or get_logger()
        self.step_number = 0

    def step(self, message: str, *, icon: str = "🚀") -> None:
        self.step_number += 1
        self.logger.info("%s Step %d: %s", icon, self.step_number, message)

    def info(self, message: str, *, icon: str = "ℹ️") -> None:
        self.logger.info("%s %s", icon, message)

    def done(self, message: str) -> None:
        self.logger.log(DONE, "✅ %s", message)
