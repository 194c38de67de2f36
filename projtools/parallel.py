"""Running ``git push`` and the stack clean side by side.

Both tasks start together and the caller waits for both; the combined run
succeeds only if both do. Their output is interleaved on the terminal.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from projtools.compose import clean_stack
from projtools.process import COMMAND_NOT_FOUND

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskOutcome:
    """Exit status of one of the concurrent tasks."""

    name: str
    returncode: int

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0

    @property
    def summary(self) -> str:
        if self.succeeded:
            return "SUCCESS"
        return f"FAILED (exit code: {self.returncode})"


@dataclass(frozen=True)
class PushCleanResult:
    """Outcome of push_and_clean()."""

    push: TaskOutcome
    clean: TaskOutcome

    @property
    def succeeded(self) -> bool:
        return self.push.succeeded and self.clean.succeeded


async def _git_push(directory: Path) -> TaskOutcome:
    logger.info("--- GIT PUSH STARTING ---")
    try:
        process = await asyncio.create_subprocess_exec("git", "push", cwd=directory)
        returncode = await process.wait()
    except FileNotFoundError:
        returncode = COMMAND_NOT_FOUND

    outcome = TaskOutcome(name="git push", returncode=returncode)
    logger.info(f"--- GIT PUSH {'COMPLETED SUCCESSFULLY' if outcome.succeeded else 'FAILED'} ---")
    return outcome


async def _clean(directory: Path) -> TaskOutcome:
    logger.info("--- CLEAN STARTING ---")
    result = await asyncio.to_thread(clean_stack, directory)
    returncode = 0 if result.is_ok() else result.unwrap_err().exit_code

    outcome = TaskOutcome(name="clean", returncode=returncode)
    logger.info(f"--- CLEAN {'COMPLETED SUCCESSFULLY' if outcome.succeeded else 'FAILED'} ---")
    return outcome


async def run_push_and_clean(directory: Path) -> PushCleanResult:
    """Launch both tasks and wait for both to finish."""
    push, clean = await asyncio.gather(_git_push(directory), _clean(directory))
    return PushCleanResult(push=push, clean=clean)


def push_and_clean(directory: Path) -> PushCleanResult:
    """Synchronous entry point for run_push_and_clean()."""
    return asyncio.run(run_push_and_clean(directory))
