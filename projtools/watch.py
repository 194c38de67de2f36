"""Recently modified files, refreshed on a fixed interval.

This is a plain poll: every refresh walks the tree, sorts by modification
time and colours each path by how recently it changed.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.text import Text

logger = logging.getLogger(__name__)

# Directory names never descended into
EXCLUDED_DIRS = frozenset({"node_modules", ".git", "logs", "__pycache__"})
# Compared case-insensitively
EXCLUDED_DIRS_CI = frozenset({"work log"})

EXCLUDED_FILE_PATTERNS = ("*.pyc", "*.pyo", "ttyd*")
# Compared case-insensitively
EXCLUDED_FILES_CI = frozenset({"filewatch.sh", "file_watch.sh"})

# (max age in seconds, style)
RECENCY_STYLES = (
    (60, "bold red"),
    (600, "bold yellow"),
    (3600, "bold green"),
)
OLDER_STYLE = "bold blue"


@dataclass(frozen=True)
class RecentFile:
    """A file and when it last changed."""

    path: str  # Relative to the watched root, "./"-prefixed
    mtime: float


def _skip_dir(name: str) -> bool:
    return name in EXCLUDED_DIRS or name.lower() in EXCLUDED_DIRS_CI


def _skip_file(name: str) -> bool:
    if name.lower() in EXCLUDED_FILES_CI:
        return True
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in EXCLUDED_FILE_PATTERNS)


def collect_recent_files(root: Path, limit: int = 15) -> list[RecentFile]:
    """The ``limit`` most recently modified files below ``root``, newest first."""
    files: list[RecentFile] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if not _skip_dir(d)]
        rel_dir = os.path.relpath(dirpath, root)
        for name in filenames:
            if _skip_file(name):
                continue
            full = Path(dirpath) / name
            try:
                mtime = full.stat().st_mtime
            except OSError:
                continue  # Removed between listing and stat
            rel = name if rel_dir == "." else os.path.join(rel_dir, name)
            files.append(RecentFile(path=f"./{rel}", mtime=mtime))

    files.sort(key=lambda f: f.mtime, reverse=True)
    return files[:limit]


def recency_style(age_seconds: float) -> str:
    """Rich style for a file changed ``age_seconds`` ago."""
    for max_age, style in RECENCY_STYLES:
        if age_seconds <= max_age:
            return style
    return OLDER_STYLE


def render_recent_files(console: Console, files: list[RecentFile], now: float) -> None:
    """Print the header and one coloured line per file."""
    console.print(Text("Recently Modified Files", style="bold"))
    console.print("-----------------------------------")
    for recent in files:
        console.print(Text(recent.path, style=recency_style(now - int(recent.mtime))))


def watch(
    root: Path,
    interval: float = 10,
    limit: int = 15,
    console: Console | None = None,
    iterations: int | None = None,
) -> None:
    """Redraw the recent-files list every ``interval`` seconds.

    Runs until interrupted, or for ``iterations`` refreshes when given.
    """
    console = console or Console()
    count = 0
    while iterations is None or count < iterations:
        console.clear()
        render_recent_files(console, collect_recent_files(root, limit), time.time())
        count += 1
        if iterations is not None and count >= iterations:
            break
        time.sleep(interval)
