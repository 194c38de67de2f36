"""External command helpers.

Every call to docker, git, ssh, scp, tmux, ttyd and bash goes through
run_command() so that exit statuses are reported the same way everywhere.
Commands stream to the terminal unless ``capture`` is set.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from projtools.errors import Result, ToolsError, err, ok

logger = logging.getLogger(__name__)

# Exit status used when the executable itself could not be started
COMMAND_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


def run_command(
    args: list[str],
    cwd: Path | None = None,
    capture: bool = False,
    timeout: float | None = None,
) -> CommandResult:
    """Run a command and return its exit status.

    Args:
        args: Program and arguments (never passed through a shell)
        cwd: Working directory (defaults to current)
        capture: Capture stdout/stderr instead of inheriting the terminal
        timeout: Seconds before giving up; None waits forever

    Returns:
        CommandResult; a missing executable yields returncode 127
    """
    logger.debug(f"Running: {' '.join(args)}" + (f" (cwd={cwd})" if cwd else ""))
    try:
        # Security: shell=False (default), arguments are passed as a list
        completed = subprocess.run(  # noqa: S603
            args,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        logger.debug(f"Command not found: {e}")
        return CommandResult(args=tuple(args), returncode=COMMAND_NOT_FOUND, stderr=str(e))
    except subprocess.TimeoutExpired as e:
        logger.warning(f"Command timed out after {timeout}s: {' '.join(args)}")
        return CommandResult(args=tuple(args), returncode=124, stderr=str(e))

    result = CommandResult(
        args=tuple(args),
        returncode=completed.returncode,
        stdout=(completed.stdout or "").strip() if capture else "",
        stderr=(completed.stderr or "").strip() if capture else "",
    )
    if not result.succeeded:
        logger.debug(f"Command exited {result.returncode}: {' '.join(args)}")
    return result


def has_command(name: str) -> bool:
    """Check whether an executable is on PATH."""
    return shutil.which(name) is not None


def require_commands(*names: str) -> Result[None, ToolsError]:
    """Fail with COMMAND_MISSING if any executable is not on PATH."""
    missing = [name for name in names if not has_command(name)]
    if missing:
        return err(
            ToolsError(
                code="COMMAND_MISSING",
                message=f"'{missing[0]}' is required but not installed/in PATH",
                context={"missing": missing},
            )
        )
    return ok(None)


def command_error(code: str, message: str, result: CommandResult, **context) -> ToolsError:
    """Build a ToolsError that carries a failed command's exit status."""
    return ToolsError(
        code=code,
        message=message,
        context={"returncode": result.returncode, "command": list(result.args), **context},
    )
