"""Checkpoint archive creation.

Archives are gzip-compressed tarballs of the whole working directory,
rooted at its parent so the single top-level entry is the directory's own
name. Protected tooling scripts at that top level are never archived.

Archives are written to a hidden temp file in the checkpoint directory and
renamed into place, so an interrupted run leaves no half-written archive
under a versioned name.
"""

from __future__ import annotations

import logging
import math
import os
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path

from projtools.config import ProjectContext
from projtools.errors import Result, ToolsError, err, ok
from projtools.versioning import (
    ARCHIVE_SUFFIX,
    ArchiveName,
    format_archive_name,
    next_version,
    sanitize_message,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveInfo:
    """A freshly written checkpoint archive."""

    path: Path
    name: ArchiveName
    size: int  # Bytes
    checkpoint_dir_size: int  # Bytes, all files in the checkpoint directory

    @property
    def summary(self) -> str:
        """Human-readable sizes like '1.2M (total 40M)'."""
        return f"{human_size(self.size)} (total {human_size(self.checkpoint_dir_size)})"


def human_size(num_bytes: int) -> str:
    """Format an apparent byte count with binary K/M/G suffixes, rounding up."""
    units = ["", "K", "M", "G", "T", "P"]
    size = float(num_bytes)
    index = 0
    while size >= 1024 and index < len(units) - 1:
        size /= 1024
        index += 1

    if index == 0:
        return str(int(size))

    if size < 10:
        rounded = math.ceil(size * 10) / 10
        if rounded < 10:
            return f"{rounded:.1f}{units[index]}"
        size = rounded

    rounded_int = math.ceil(size)
    if rounded_int >= 1024 and index < len(units) - 1:
        return f"1.0{units[index + 1]}"
    return f"{rounded_int}{units[index]}"


def directory_size(path: Path) -> int:
    """Total size in bytes of all regular files below ``path``."""
    total = 0
    for root, _, files in os.walk(path):
        for name in files:
            try:
                total += (Path(root) / name).lstat().st_size
            except OSError:
                continue
    return total


def reserve_archive_path(checkpoint_dir: Path, name: ArchiveName) -> tuple[Path, ArchiveName]:
    """Find the first unused filename for ``name``.

    Tries ``<base>.tar.gz``, then ``<base>_1.tar.gz``, ``<base>_2.tar.gz`` ...

    Returns:
        (path, name with the dedupe counter that was used)
    """
    candidate = ArchiveName(version=name.version, message=name.message)
    counter = 0
    while (checkpoint_dir / format_archive_name(candidate)).exists():
        counter += 1
        candidate = ArchiveName(version=name.version, message=name.message, dedupe=counter)
    return checkpoint_dir / format_archive_name(candidate), candidate


def write_archive(
    work_dir: Path,
    target: Path,
    protected: tuple[str, ...] = (),
) -> Result[Path, ToolsError]:
    """Write ``work_dir`` as a tar.gz to ``target``.

    Args:
        work_dir: Directory to archive; becomes the archive's top-level entry
        target: Final archive path (must not exist)
        protected: Top-level file names to leave out

    Returns:
        Ok(target) on success, Err(ToolsError) if the archive could not be written
    """
    work_dir = work_dir.resolve()
    top = work_dir.name
    excluded = {f"{top}/{name}" for name in protected}

    def _exclude(info: tarfile.TarInfo) -> tarfile.TarInfo | None:
        if info.name in excluded:
            logger.debug(f"Excluding protected file: {info.name}")
            return None
        return info

    temp_path: str | None = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=target.parent,
            prefix=".",
            suffix=f"{ARCHIVE_SUFFIX}.tmp",
        )
        with os.fdopen(fd, "wb") as raw, tarfile.open(fileobj=raw, mode="w:gz") as tar:
            tar.add(work_dir, arcname=top, filter=_exclude)

        os.rename(temp_path, target)
        temp_path = None
        logger.debug(f"Archive written: {target}")
        return ok(target)

    except (OSError, tarfile.TarError) as e:
        logger.error(f"Archiving {work_dir} failed: {e}")
        return err(
            ToolsError(
                code="ARCHIVE_FAILED",
                message=f"Failed to archive {work_dir}: {e}",
                context={"work_dir": str(work_dir), "target": str(target)},
            )
        )

    finally:
        if temp_path is not None:
            _cleanup_temp(temp_path)


def create_checkpoint(
    ctx: ProjectContext,
    message: str,
    backup: bool = False,
    fallback: str | None = None,
) -> Result[ArchiveInfo, ToolsError]:
    """Create the next versioned checkpoint of the project.

    Args:
        ctx: Project to checkpoint
        message: Free-text message; sanitized into the filename
        backup: Tag the version with ``b`` (backup before restore)
        fallback: Message used when sanitizing leaves nothing
            (defaults to the configured default message)

    Returns:
        ArchiveInfo for the new archive
    """
    if not ctx.work_dir.is_dir():
        return err(
            ToolsError(
                code="WORK_DIR_MISSING",
                message=f"Working directory not found: {ctx.work_dir}",
                context={"work_dir": str(ctx.work_dir)},
            )
        )

    try:
        ctx.checkpoint_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Creating {ctx.checkpoint_dir} failed: {e}")
        return err(
            ToolsError(
                code="ARCHIVE_FAILED",
                message=f"Failed to create checkpoint directory {ctx.checkpoint_dir}: {e}",
                context={"checkpoint_dir": str(ctx.checkpoint_dir)},
            )
        )

    safe_message = sanitize_message(message, fallback=fallback or ctx.config.default_message)
    version = next_version(ctx.checkpoint_dir, backup=backup)
    path, name = reserve_archive_path(
        ctx.checkpoint_dir, ArchiveName(version=version, message=safe_message)
    )

    result = write_archive(ctx.work_dir, path, ctx.protected)
    if result.is_err():
        return err(result.unwrap_err())

    info = ArchiveInfo(
        path=path,
        name=name,
        size=path.stat().st_size,
        checkpoint_dir_size=directory_size(ctx.checkpoint_dir),
    )
    logger.info(f"Created checkpoint {name.filename} ({info.summary})")
    return ok(info)


def _cleanup_temp(temp_path: str) -> None:
    """Remove a leftover temp archive, ignoring errors."""
    try:
        os.unlink(temp_path)
        logger.debug(f"Cleaned up temp file: {temp_path}")
    except OSError:
        pass
