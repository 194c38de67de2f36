"""Deploying a checkpoint to the production location.

The target comes from ``.env_project_tools`` in the project directory:

    PROD_LOCATION=user@server:~/project/     # remote, over ssh/scp
    PROD_LOCATION=/srv/project               # local, through bash

Deployment steps, in order:

1. create the backup directory next to the target        (fatal)
2. tar the current target into prod_backup_<ts>.tar.gz   (warning)
3. docker compose down in the target                     (warning)
4. clear the target                                      (warning)
5. copy the archive to /tmp on the target host           (fatal)
6. extract it into the target, dropping the top folder   (fatal)
7. download fresh tooling scripts into the target        (warning)
8. run the target's clean script if it has one           (fatal)

Steps 2-4 only prepare the target, so a target that is empty, not yet
created or half broken does not block a deployment. Step 7 only refreshes
helper scripts; an unreachable tools host must not keep the stack from
being restarted in step 8.
"""

from __future__ import annotations

import logging
import shlex
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from dotenv import dotenv_values

from projtools.config import CLEAN_SCRIPT, ProjectContext
from projtools.errors import Result, ToolsError, err, ok
from projtools.process import CommandResult, command_error, run_command
from projtools.tools import remote_pull_command

logger = logging.getLogger(__name__)

DEPLOY_CONFIG_NAME = ".env_project_tools"
TARGET_VARIABLE = "PROD_LOCATION"
BACKUP_DIR_NAME = "prod_backup"


@dataclass(frozen=True)
class DeployTarget:
    """Where a checkpoint gets deployed."""

    path: str
    user_host: str | None = None  # "user@server" for remote targets

    @property
    def is_remote(self) -> bool:
        return self.user_host is not None

    @classmethod
    def parse(cls, location: str) -> DeployTarget:
        """Parse ``user@host:path`` or a bare local path."""
        at = location.find("@")
        if at != -1 and ":" in location[at + 1 :]:
            user_host, _ = location.rsplit(":", 1)
            _, path = location.split(":", 1)
            return cls(path=path, user_host=user_host)
        return cls(path=location)

    def __str__(self) -> str:
        return f"{self.user_host}:{self.path}" if self.is_remote else self.path


@dataclass(frozen=True)
class DeployConfig:
    """Deployment settings read from ``.env_project_tools``."""

    target: DeployTarget
    source: Path

    @classmethod
    def load(cls, work_dir: Path) -> Result[DeployConfig, ToolsError]:
        """Read the deployment target for a project.

        The file is shell-style ``KEY=VALUE``; only PROD_LOCATION is used.
        """
        config_path = work_dir / DEPLOY_CONFIG_NAME
        if not config_path.is_file():
            return err(
                ToolsError(
                    code="DEPLOY_CONFIG_MISSING",
                    message=(
                        f"{DEPLOY_CONFIG_NAME} file not found. "
                        f"Please create it with {TARGET_VARIABLE} variable."
                    ),
                    context={"path": str(config_path)},
                )
            )

        values = dotenv_values(config_path)
        location = (values.get(TARGET_VARIABLE) or "").strip()
        if not location:
            return err(
                ToolsError(
                    code="DEPLOY_TARGET_MISSING",
                    message=(
                        f"{TARGET_VARIABLE} not set in {DEPLOY_CONFIG_NAME} file "
                        f"(example: {TARGET_VARIABLE}=user@server:~/project/)"
                    ),
                    context={"path": str(config_path)},
                )
            )

        return ok(cls(target=DeployTarget.parse(location), source=config_path))


def shell_path(path: str) -> str:
    """Quote a path for the target shell, keeping a leading ``~/`` expandable."""
    if path == "~":
        return "~"
    if path.startswith("~/"):
        rest = path[2:]
        return "~/" + shlex.quote(rest) if rest else "~/"
    return shlex.quote(path)


class TargetRunner:
    """Runs shell snippets and copies files on the deployment target.

    Remote targets go through ``ssh``/``scp``; local targets through
    ``bash -c`` and a plain file copy. The choice is made once per target.
    """

    def __init__(self, target: DeployTarget):
        self.target = target

    def run(self, command: str) -> CommandResult:
        if self.target.is_remote:
            return run_command(["ssh", self.target.user_host, command])
        return run_command(["bash", "-c", command])

    def copy(self, source: Path, destination: str) -> CommandResult:
        if self.target.is_remote:
            return run_command(["scp", str(source), f"{self.target.user_host}:{destination}"])

        args = ("cp", str(source), destination)
        try:
            shutil.copy(source, Path(destination).expanduser())
        except OSError as e:
            logger.error(f"Copy to {destination} failed: {e}")
            return CommandResult(args=args, returncode=1, stderr=str(e))
        return CommandResult(args=args, returncode=0)


@dataclass(frozen=True)
class DeployResult:
    """Outcome of a deployment."""

    archive: Path
    target: DeployTarget
    backup_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)


def deploy_checkpoint(
    ctx: ProjectContext,
    archive: Path,
    target: DeployTarget,
    runner: TargetRunner | None = None,
    timestamp: str | None = None,
) -> Result[DeployResult, ToolsError]:
    """Deploy ``archive`` to ``target``.

    Args:
        ctx: Project the archive belongs to (supplies the tools settings)
        archive: Local checkpoint archive to deploy
        target: Deployment target
        runner: Command runner (defaults to TargetRunner(target))
        timestamp: Suffix for backup/temp names (defaults to now, yymmdd_HHMMSS)

    Returns:
        DeployResult, or Err carrying the failing step and its exit code
    """
    runner = runner or TargetRunner(target)
    timestamp = timestamp or datetime.now().strftime("%y%m%d_%H%M%S")
    warnings: list[str] = []

    path = shell_path(target.path)
    backup_dir = shell_path(f"{target.path.rstrip('/')}/../{BACKUP_DIR_NAME}")
    backup_name = f"prod_backup_{timestamp}.tar.gz"
    temp_archive = f"/tmp/checkpoint_{timestamp}.tar.gz"

    def fatal(step: str, result: CommandResult) -> ToolsError:
        logger.error(f"Deployment step '{step}' failed (exit {result.returncode})")
        return command_error(
            "DEPLOY_STEP_FAILED",
            f"Deployment failed at step '{step}'",
            result,
            step=step,
            target=str(target),
        )

    def tolerate(step: str, result: CommandResult) -> None:
        if not result.succeeded:
            message = f"{step} failed (exit {result.returncode}); continuing"
            logger.warning(message)
            warnings.append(message)

    logger.info(f"Deploying {archive.name} to {target}")

    logger.info("Creating backup directory...")
    result = runner.run(f"mkdir -p {backup_dir}")
    if not result.succeeded:
        return err(fatal("create backup directory", result))

    logger.info("Backing up current production...")
    tolerate(
        "backup",
        runner.run(
            f'if [ -d {path} ] && [ -n "$(ls -A {path} 2>/dev/null)" ]; then '
            f"tar -czf {backup_dir}/{backup_name} -C {path} . && "
            f"echo 'Backup created: {backup_name}'; "
            f"else echo 'No existing files to backup'; fi"
        ),
    )

    logger.info("Stopping Docker containers...")
    tolerate(
        "docker compose down",
        runner.run(
            f"cd {path} && "
            "if [ -f docker-compose.yml ] || [ -f compose.yaml ] || [ -f compose.yml ]; then "
            "docker compose down; else echo 'No compose file found'; fi"
        ),
    )

    logger.info("Clearing production directory...")
    tolerate("clear target", runner.run(f"rm -rf {path}/* {path}/.[!.]*"))

    logger.info("Copying checkpoint to production...")
    result = runner.copy(archive, temp_archive)
    if not result.succeeded:
        return err(fatal("copy archive", result))

    logger.info("Extracting checkpoint...")
    result = runner.run(
        f"mkdir -p {path} && cd {path} && "
        f"tar -xzf {temp_archive} --strip-components=1 && rm {temp_archive}"
    )
    if not result.succeeded:
        return err(fatal("extract archive", result))

    config = ctx.config
    if config.tools_repo:
        logger.info("Downloading fresh script copies...")
        tolerate(
            "refresh tools",
            runner.run(
                f"cd {path} && "
                + remote_pull_command(config.tools_repo, config.tools_branch, config.tools_pattern)
            ),
        )
    else:
        logger.info("No tools repository configured, skipping script refresh.")

    logger.info(f"Running {CLEAN_SCRIPT} for final setup...")
    result = runner.run(
        f"cd {path} && if [ -f {CLEAN_SCRIPT} ]; then ./{CLEAN_SCRIPT}; "
        f"else echo '{CLEAN_SCRIPT} not found, skipping'; fi"
    )
    if not result.succeeded:
        return err(fatal("clean script", result))

    return ok(
        DeployResult(
            archive=archive,
            target=target,
            backup_name=backup_name,
            warnings=tuple(warnings),
        )
    )
