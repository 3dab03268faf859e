"""Deploy a Git-hosted web app to a remote Linux host over SSH.

Clones or updates the repo locally, bootstraps Docker, Docker Compose and
Nginx on the host, syncs the code, (re)starts the container or compose stack
and puts Nginx on port 80 in front of it.  ``--cleanup`` tears all of that
down again.

Security note: this script shells out to ``git``, ``ssh``, ``scp`` and
``rsync`` and disables SSH host-key checking.
"""

from __future__ import annotations

import argparse
import os
import traceback
from pathlib import Path
from urllib.parse import quote

from .bootstrap import ensure_remote_environment
from .cleanup import cleanup_remote
from .config import DEFAULT_ENV_FILE, DeployConfig, collect_config
from .connectivity import check_connectivity
from .docker_deploy import deploy_containers
from .errors import DeployError
from .local_repo import check_local_tools, prepare_local_repo
from .logs import StepLogger, close_run_logging, configure_run_logging, get_logger, register_secret
from .nginx_register import configure_proxy
from .shell import SshSession
from .transfer import transfer_project
from .validate import ValidationResult, validate_deployment


EXIT_OK = 0
EXIT_UNEXPECTED = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vps-deploy",
        description="Deploy a containerized web app to a remote host behind Nginx.",
    )
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Remove the app's containers, images, Nginx site and remote project directory instead of deploying",
    )
    parser.add_argument(
        "--env-file",
        default=DEFAULT_ENV_FILE,
        help=(
            "Dotenv file with deploy inputs (GIT_URL, PAT, BRANCH, REMOTE_USER, REMOTE_HOST, SSH_KEY, "
            "CONTAINER_PORT, REMOTE_PROJECT_DIR). Resolution: env var -> this file -> prompt"
        ),
    )
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Never prompt; fail if a required input is not set in the environment or env file",
    )
    parser.add_argument("--work-dir", default=".", help="Directory the repository is cloned into")
    parser.add_argument("--log-dir", default="logs", help="Directory for per-run deploy_<timestamp>.log files")
    return parser


def session_for(config: DeployConfig) -> SshSession:
    return SshSession(user=config.ssh_user, host=config.ssh_host, key_path=config.ssh_key)


def run_deploy(
    config: DeployConfig,
    *,
    session: SshSession,
    work_dir: Path,
    steps: StepLogger,
) -> ValidationResult:
    steps.step(f"Getting repo ready for {config.project_id} (branch: {config.branch})", icon="📥")
    local = prepare_local_repo(config, work_dir)
    steps.done(f"Local repo ready at {local.path}")

    steps.step("Checking SSH connectivity", icon="🔌")
    check_connectivity(session)
    steps.done("SSH connection works.")

    steps.step("Preparing remote server", icon="🛠️")
    ensure_remote_environment(session)
    steps.done("Remote environment ready.")

    steps.step(f"Syncing project files to {config.remote_dir}", icon="📦")
    transfer_project(session, local_dir=local.path, remote_dir=config.remote_dir)
    steps.done("Project transferred.")

    steps.step("Deploying containers", icon="🏗️")
    deployment = deploy_containers(
        session,
        project_id=config.project_id,
        remote_dir=config.remote_dir,
        port=config.container_port,
    )
    steps.done(f"Deployment done ({deployment.mode}).")

    steps.step("Configuring Nginx reverse proxy", icon="🌐")
    configure_proxy(session, project_id=config.project_id, port=config.container_port)
    steps.done("Nginx configured (HTTP only).")

    steps.step("Validating deployment", icon="🩺")
    return validate_deployment(session, url=config.public_url)


def run_cleanup(config: DeployConfig, *, session: SshSession, steps: StepLogger) -> None:
    steps.step("Checking SSH connectivity", icon="🔌")
    check_connectivity(session)
    steps.done("SSH connection works.")

    steps.step(f"Cleaning remote host {config.ssh_host}", icon="🧹")
    cleanup_remote(session, project_id=config.project_id, remote_dir=config.remote_dir)
    steps.done("Remote cleanup done.")


def _failing_line(exc: BaseException) -> str:
    frames = traceback.extract_tb(exc.__traceback__)
    if not frames:
        return "unknown location"
    last = frames[-1]
    return f"{Path(last.filename).name}:{last.lineno}"


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    log_path = configure_run_logging(Path(args.log_dir))
    logger = get_logger()
    steps = StepLogger(logger)

    try:
        config = collect_config(
            env=os.environ,
            dotenv_path=Path(args.env_file),
            interactive=not args.non_interactive,
        )
        if config.access_token:
            register_secret(config.access_token)
            register_secret(quote(config.access_token, safe=""))

        session = session_for(config)
        if args.cleanup:
            check_local_tools(("ssh",))
            run_cleanup(config, session=session, steps=steps)
            steps.done("Finished cleanup.")
        else:
            check_local_tools()
            steps.info("Local tools ready.")
            run_deploy(config, session=session, work_dir=Path(args.work_dir), steps=steps)
            steps.done("Deployment complete.")
            steps.info(f"You can access the app at: {config.public_url}")
        steps.info(f"Logs are saved at: {log_path}")
        return EXIT_OK
    except DeployError as exc:
        logger.error("%s", exc)
        return exc.exit_code
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED
    except Exception as exc:
        logger.debug("Traceback", exc_info=True)
        logger.error("Unexpected error at %s: %s. See %s", _failing_line(exc), exc, log_path)
        return EXIT_UNEXPECTED
    finally:
        close_run_logging()
