"""Docker Compose stack control.

Stopping a stack is always best effort: the stack may not be running, the
compose file may be broken, or docker may be missing. Cleaning (prune,
image removal, pull, up) treats prune, pull and up as required.
"""

from __future__ import annotations

import logging
from pathlib import Path

from projtools.errors import Result, ToolsError, err, ok
from projtools.process import command_error, has_command, run_command

logger = logging.getLogger(__name__)

COMPOSE_FILES = ("docker-compose.yml", "compose.yaml", "compose.yml")


def find_compose_file(directory: Path) -> Path | None:
    """Return the first compose file present in ``directory``."""
    for name in COMPOSE_FILES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def compose_down(directory: Path) -> bool:
    """Stop the compose stack in ``directory`` if there is one.

    Returns:
        True if the stack was stopped or there was nothing to stop,
        False if ``docker compose down`` failed (the caller continues)
    """
    if not has_command("docker"):
        logger.info("Docker not found. Skipping docker compose down.")
        return True

    if find_compose_file(directory) is None:
        logger.info("No compose file found. Skipping docker compose down.")
        return True

    logger.info("Stopping containers via: docker compose down")
    result = run_command(["docker", "compose", "down"], cwd=directory)
    if not result.succeeded:
        logger.warning("docker compose down failed; continuing.")
        return False
    return True


def list_images() -> list[str]:
    """IDs of all local docker images."""
    result = run_command(["docker", "images", "-q"], capture=True)
    if not result.succeeded or not result.stdout:
        return []
    return result.stdout.split()


def clean_stack(directory: Path) -> Result[None, ToolsError]:
    """Stop, prune, drop every image, pull and restart the stack.

    Args:
        directory: Directory holding the compose file

    Returns:
        Ok(None), or Err with the failing docker command's exit code
    """
    compose_file = find_compose_file(directory)

    if compose_file is not None:
        logger.info("Stopping containers via: docker compose down")
        if not run_command(["docker", "compose", "down"], cwd=directory).succeeded:
            logger.warning("docker compose down failed; continuing.")
    else:
        logger.info(
            "No compose file found (docker-compose.yml/compose.yaml/compose.yml). "
            "Skipping docker compose down."
        )

    logger.info("Pruning unused Docker data...")
    prune = run_command(["docker", "system", "prune", "-f"])
    if not prune.succeeded:
        return err(command_error("DOCKER_FAILED", "docker system prune failed", prune))

    images = list_images()
    if images:
        logger.info(f"Removing {len(images)} Docker image(s)...")
        if not run_command(["docker", "rmi", *images]).succeeded:
            logger.warning("Some images could not be removed; continuing.")
    else:
        logger.info("No images to remove.")

    if compose_file is None:
        logger.info("No compose file found, skipping pull/up.")
        return ok(None)

    for args, label in (
        (["docker", "compose", "pull"], "docker compose pull"),
        (["docker", "compose", "up", "-d"], "docker compose up -d"),
    ):
        logger.info(f"Running {label}...")
        result = run_command(args, cwd=directory)
        if not result.succeeded:
            return err(command_error("DOCKER_FAILED", f"{label} failed", result))

    return ok(None)
