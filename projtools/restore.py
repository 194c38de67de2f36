"""Listing, resolving and restoring checkpoint archives.

A restore always starts by checkpointing the current state under a ``b``
version, so every restore can itself be undone by restoring that backup.
"""

from __future__ import annotations

import logging
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path

from projtools.archive import ArchiveInfo, create_checkpoint
from projtools.compose import compose_down
from projtools.config import ProjectContext
from projtools.errors import Result, ToolsError, err, ok
from projtools.versioning import ARCHIVE_SUFFIX, Version, display_version, parse_archive_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveEntry:
    """One archive in a checkpoint directory listing."""

    path: Path
    version: str | None  # "1.3" / "1.3b", None if the name is unparseable

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class RestoreResult:
    """Outcome of a restore."""

    restored: Path  # Archive that was extracted
    backup: ArchiveInfo  # Checkpoint taken before clearing
    compose_stopped: bool  # False if compose down failed


def list_archives(checkpoint_dir: Path) -> list[ArchiveEntry]:
    """All ``*.tar.gz`` files in a checkpoint directory, sorted by name."""
    if not checkpoint_dir.is_dir():
        return []
    return [
        ArchiveEntry(path=path, version=display_version(path.name))
        for path in sorted(checkpoint_dir.glob(f"*{ARCHIVE_SUFFIX}"))
        if path.is_file()
    ]


def _recency_key(path: Path) -> tuple[int, int]:
    parsed = parse_archive_name(path.name)
    dedupe = parsed.dedupe if parsed and parsed.dedupe is not None else 0
    return (path.stat().st_mtime_ns, dedupe)


def resolve_version(checkpoint_dir: Path, version: Version) -> Result[Path, ToolsError]:
    """Pick the archive to restore for ``version``.

    Among archives named ``<version>_*.tar.gz`` the most recently modified
    wins; equal mtimes go to the higher dedupe counter.
    """
    candidates = [
        path
        for path in checkpoint_dir.glob(f"{version}_*{ARCHIVE_SUFFIX}")
        if path.is_file()
    ]
    if not candidates:
        return err(
            ToolsError(
                code="NO_MATCHING_ARCHIVE",
                message=f"No archive for {version}",
                context={"version": str(version), "checkpoint_dir": str(checkpoint_dir)},
            )
        )

    selected = max(candidates, key=_recency_key)
    logger.debug(f"Resolved {version} to {selected.name} among {len(candidates)} candidate(s)")
    return ok(selected)


def clear_directory(work_dir: Path, protected: tuple[str, ...] = ()) -> int:
    """Delete everything in ``work_dir`` except the protected names.

    Hidden entries are removed too. Symlinks are unlinked, never followed.

    Returns:
        Number of top-level entries removed
    """
    removed = 0
    for entry in work_dir.iterdir():
        if entry.name in protected:
            continue
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed += 1
    logger.debug(f"Cleared {removed} entries from {work_dir}")
    return removed


def extract_archive(
    archive: Path,
    destination: Path,
    protected: tuple[str, ...] = (),
) -> Result[int, ToolsError]:
    """Extract a checkpoint archive into ``destination``.

    Existing files are overwritten. Protected scripts directly under the
    archive's top-level directory are skipped so the copies on disk stay
    untouched. Members that would escape ``destination`` are rejected;
    symlinks keep their targets, absolute ones included.

    Returns:
        Number of members extracted
    """
    try:
        with tarfile.open(archive, "r:gz") as tar:
            members = []
            for member in tar.getmembers():
                parts = member.name.split("/")
                if len(parts) == 2 and parts[1] in protected:
                    logger.debug(f"Keeping protected file: {member.name}")
                    continue
                members.append(member)
            tar.extractall(destination, members=members, filter="tar")
    except (OSError, tarfile.TarError) as e:
        logger.error(f"Extracting {archive} failed: {e}")
        return err(
            ToolsError(
                code="EXTRACT_FAILED",
                message=f"Failed to extract {archive.name}: {e}",
                context={"archive": str(archive), "destination": str(destination)},
            )
        )

    return ok(len(members))


def restore_checkpoint(
    ctx: ProjectContext,
    version: Version,
    backup_message: str | None = None,
) -> Result[RestoreResult, ToolsError]:
    """Restore ``version`` into the working directory.

    Sequence:
    1. docker compose down (failure is a warning)
    2. checkpoint the current state as ``<next>b_<message>``
    3. clear the working directory, keeping protected scripts
    4. extract the selected archive over it

    Nothing is touched if the checkpoint directory or the archive is missing.

    Args:
        ctx: Project to restore
        version: Version to restore ("1.3" or "1.3b")
        backup_message: Message for the backup archive
            (defaults to the configured backup message)

    Returns:
        RestoreResult with the restored archive and the backup taken
    """
    if not ctx.checkpoint_dir.is_dir():
        return err(
            ToolsError(
                code="CHECKPOINT_DIR_MISSING",
                message=f"No checkpoint dir: {ctx.checkpoint_dir}",
                context={"checkpoint_dir": str(ctx.checkpoint_dir)},
            )
        )

    resolved = resolve_version(ctx.checkpoint_dir, version)
    if resolved.is_err():
        return err(resolved.unwrap_err())
    archive = resolved.unwrap()
    logger.info(f"Selected: {archive.name}")

    compose_stopped = compose_down(ctx.work_dir)

    default_message = ctx.config.backup_message
    backup = create_checkpoint(
        ctx,
        backup_message or default_message,
        backup=True,
        fallback=default_message,
    )
    if backup.is_err():
        return err(backup.unwrap_err())
    backup_info = backup.unwrap()
    logger.info(f"Backup saved: {backup_info.path}")

    try:
        clear_directory(ctx.work_dir, ctx.protected)
    except OSError as e:
        logger.error(f"Clearing {ctx.work_dir} failed: {e}")
        return err(
            ToolsError(
                code="CLEAR_FAILED",
                message=f"Failed to clear {ctx.work_dir}: {e}",
                context={"work_dir": str(ctx.work_dir), "backup": str(backup_info.path)},
            )
        )

    extracted = extract_archive(archive, ctx.work_dir.parent, ctx.protected)
    if extracted.is_err():
        return err(extracted.unwrap_err())

    logger.info(f"Restored: {archive.name}")
    return ok(RestoreResult(restored=archive, backup=backup_info, compose_stopped=compose_stopped))
