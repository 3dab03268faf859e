from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

import requests

from .errors import ServiceNotActive
from .shell import SshSession


logger = logging.getLogger(__name__)

SETTLE_SECONDS = 5
HTTP_PROBE_TIMEOUT = 10
REQUIRED_SERVICES = ("docker", "nginx")


@dataclass(frozen=True)
class ValidationResult:
    url: str
    reachable: bool
    status_code: int | None = None
    detail: str = ""


def check_service_active(session: SshSession, service: str) -> None:
    result = session.run(f"sudo systemctl is-active {service}")
    state = str(result.stdout or "").strip()
    if not result.ok or state != "active":
        raise ServiceNotActive(service, state or result.detail)


def probe_http(url: str, *, timeout: float = HTTP_PROBE_TIMEOUT) -> ValidationResult:
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as exc:
        return ValidationResult(url=url, reachable=False, detail=str(exc))

    if response.ok:
        return ValidationResult(url=url, reachable=True, status_code=int(response.status_code))
    return ValidationResult(
        url=url,
        reachable=False,
        status_code=int(response.status_code),
        detail=f"HTTP {response.status_code}",
    )


def validate_deployment(
    session: SshSession,
    *,
    url: str,
    settle_seconds: float = SETTLE_SECONDS,
    sleep: Callable[[float], None] | None = None,
) -> ValidationResult:
    """Fatal service checks, then a single non-fatal HTTP probe."""
    (sleep or time.sleep)(settle_seconds)
    for service in REQUIRED_SERVICES:
        check_service_active(session, service)

    logger.info("Testing app at %s", url)
    result = probe_http(url)
    if result.reachable:
        logger.info("App reachable at %s (HTTP %s)", url, result.status_code)
    else:
        logger.warning("App not reachable at %s (%s). Check firewall or port mapping.", url, result.detail)
    return result
