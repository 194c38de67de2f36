"""Shared fixtures for projtools tests."""

import os
import tarfile
from pathlib import Path

import pytest

from projtools.config import ProjectContext, ToolsConfig


@pytest.fixture
def project(tmp_path: Path) -> ProjectContext:
    """A small project folder with the three protected scripts."""
    work_dir = tmp_path / "myproj"
    (work_dir / "src").mkdir(parents=True)
    (work_dir / "src" / "app.py").write_text("print('v1')\n")
    (work_dir / "README.md").write_text("# myproj\n")
    (work_dir / ".env").write_text("SECRET=1\n")
    for name in ("checkpoint.sh", "restore.sh", "clean.sh"):
        (work_dir / name).write_text(f"#!/bin/sh\necho {name}\n")

    return ProjectContext.for_directory(work_dir, config=ToolsConfig())


@pytest.fixture
def no_user_config(tmp_path: Path, monkeypatch):
    """Point the user-level config directory at an empty temp dir."""
    tools_dir = tmp_path / "home" / ".projtools"
    monkeypatch.setattr("projtools.config.TOOLS_DIR", tools_dir)
    monkeypatch.setattr("projtools.cli.TOOLS_DIR", tools_dir)
    return tools_dir


def make_archive(checkpoint_dir: Path, filename: str, mtime: float | None = None) -> Path:
    """Write an empty but valid tar.gz archive."""
    checkpoint_dir.mkdir(parents=True, exist_ok=True)
    path = checkpoint_dir / filename
    with tarfile.open(path, "w:gz"):
        pass
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def archive_members(path: Path) -> dict[str, bytes | None]:
    """Member name -> file content (None for directories)."""
    members = {}
    with tarfile.open(path, "r:gz") as tar:
        for member in tar.getmembers():
            if member.isfile():
                members[member.name] = tar.extractfile(member).read()
            else:
                members[member.name] = None
    return members
