"""Install the host-level Nginx site that fronts the deployed app.

Renders a single ``server`` block proxying port 80 to the container's
published port, stages it in ``/tmp``, moves it into ``sites-available``,
enables it, and reloads Nginx only after ``nginx -t`` passes.  A config that
fails validation is never loaded; the running config stays in effect.

Called by :func:`vps_deploy.cli.run_deploy` after the containers are up.
"""
from __future__ import annotations

import logging
import os
import shlex
import tempfile
from pathlib import Path

from .errors import ProxyConfigInvalid
from .shell import CommandResult, SshSession, remove_remote_file


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SITES_AVAILABLE = "/etc/nginx/sites-available"
SITES_ENABLED = "/etc/nginx/sites-enabled"
# One proxied app per host: the site file is overwritten on every configure.
SITE_NAME = "app.conf"
LOG_PREFIX = "[NGINX]"


logger = logging.getLogger(__name__)

# Template for the site block.  Placeholder: {port}.
SITE_BLOCK_TEMPLATE = """\
server {{
    listen 80;
    server_name _;

    location / {{
        proxy_pass http://127.0.0.1:{port};
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
    }}
}}
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def site_available_path(site_name: str = SITE_NAME) -> str:
    return f"{SITES_AVAILABLE}/{site_name}"


def site_enabled_path(site_name: str = SITE_NAME) -> str:
    return f"{SITES_ENABLED}/{site_name}"


def staging_path(project_id: str) -> str:
    return f"/tmp/nginx_{project_id}.conf"


def render_site_config(port: int) -> str:
    return SITE_BLOCK_TEMPLATE.format(port=int(port))


def install_site_cmd(*, staged: str, site_name: str = SITE_NAME) -> str:
    available = shlex.quote(site_available_path(site_name))
    return (
        f"sudo mkdir -p {SITES_AVAILABLE} {SITES_ENABLED} && "
        f"sudo mv {shlex.quote(staged)} {available} && "
        f"sudo ln -sf {available} {shlex.quote(site_enabled_path(site_name))}"
    )


def _check(result: CommandResult, action: str) -> None:
    if not result.ok:
        raise ProxyConfigInvalid(f"{action} (exit code {result.returncode}). {result.detail}".strip())


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_proxy(session: SshSession, *, project_id: str, port: int) -> str:
    """Route host port 80 to ``127.0.0.1:<port>``.

    Returns the rendered config.  Raises :class:`ProxyConfigInvalid` when the
    file cannot be installed, fails ``nginx -t``, or the reload fails.
    """
    config_text = render_site_config(port)
    staged = staging_path(project_id)

    # 1. Stage the rendered file on the host  ─────────────────────────────
    fd, local_path = tempfile.mkstemp(prefix=f"nginx_{project_id}_", suffix=".conf")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(config_text)
        _check(session.copy_file(Path(local_path), staged), f"Failed to upload Nginx config to {staged}")
    finally:
        Path(local_path).unlink(missing_ok=True)

    # 2. Move into sites-available and enable  ───────────────────────────
    _check(session.run(install_site_cmd(staged=staged)), "Failed to install Nginx site config")

    # The stock default site also listens on :80 and would shadow ours.
    remove_remote_file(session, "remove default nginx site", site_enabled_path("default"))

    # 3. Validate before reload  ─────────────────────────────────────────
    validation = session.run("sudo nginx -t")
    if not validation.ok:
        logger.error("%s nginx -t rejected the new config; not reloading.", LOG_PREFIX)
        raise ProxyConfigInvalid(
            "Nginx config validation failed; the running config was left in place: "
            f"{validation.detail}. Inspect {site_available_path()} on the host."
        )

    # 4. Reload  ─────────────────────────────────────────────────────────
    _check(session.run("sudo systemctl reload nginx"), "Failed to reload Nginx")

    logger.info("%s Proxying :80 -> 127.0.0.1:%s", LOG_PREFIX, port)
    return config_text
