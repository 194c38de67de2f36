"""Checkpoint versions and archive names.

Archive names carry all checkpoint metadata:

    <major>.<minor>[b]_<message>[_<n>].tar.gz

- ``major.minor`` is the version; ordering uses ``10 * major + minor``
- ``b`` marks a backup taken automatically before a restore
- ``message`` is the sanitized user message
- ``n`` disambiguates two archives that would otherwise share a name

The next version is never stored; it is recomputed from the names already
in the checkpoint directory. The minor part is a single digit, so 1.9 is
followed by 2.0.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from projtools.errors import Result, ToolsError, err, ok

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"

# Version prefix used when scanning a checkpoint directory
SCAN_PATTERN = re.compile(r"^([0-9]+)\.([0-9])b?_")

# Version + message split used when listing archives
DISPLAY_PATTERN = re.compile(r"^([0-9]+\.[0-9]b?)_(.+)\.tar\.gz$")

# User-entered version token
TOKEN_PATTERN = re.compile(r"^([0-9]+)\.([0-9])(b?)$")

# Full name grammar, with the optional dedupe counter split off
_NAME_PATTERN = re.compile(r"^([0-9]+)\.([0-9])(b?)_(.+?)(?:_([0-9]+))?\.tar\.gz$")

_DISALLOWED = re.compile(r"[^A-Za-z0-9_.\-]")

FIRST_VALUE = 10  # 1.0


@dataclass(frozen=True, order=True)
class Version:
    """A checkpoint version such as 1.3 or 1.3b."""

    major: int
    minor: int
    backup: bool = False

    @property
    def value(self) -> int:
        """Ordering key shared by normal and backup versions."""
        return 10 * self.major + self.minor

    @classmethod
    def from_value(cls, value: int, backup: bool = False) -> Version:
        """Decode an ordering key back into major.minor."""
        return cls(major=value // 10, minor=value % 10, backup=backup)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}{'b' if self.backup else ''}"


@dataclass(frozen=True)
class ArchiveName:
    """Metadata encoded in a checkpoint archive filename."""

    version: Version
    message: str
    dedupe: int | None = None

    @property
    def base(self) -> str:
        """Name without dedupe counter or extension."""
        return f"{self.version}_{self.message}"

    @property
    def filename(self) -> str:
        return format_archive_name(self)


def format_archive_name(name: ArchiveName) -> str:
    """Render an ArchiveName as a filename."""
    suffix = f"_{name.dedupe}" if name.dedupe is not None else ""
    return f"{name.base}{suffix}{ARCHIVE_SUFFIX}"


def parse_archive_name(filename: str) -> ArchiveName | None:
    """Parse a checkpoint archive filename.

    A trailing ``_<digits>`` is always read as the dedupe counter, so a
    message ending in ``_<digits>`` does not survive a round trip.

    Returns:
        ArchiveName, or None if the name does not follow the grammar
    """
    match = _NAME_PATTERN.match(filename)
    if not match:
        return None

    major, minor, backup, message, dedupe = match.groups()
    return ArchiveName(
        version=Version(int(major), int(minor), backup == "b"),
        message=message,
        dedupe=int(dedupe) if dedupe is not None else None,
    )


def display_version(filename: str) -> str | None:
    """Version label shown next to an archive in listings (e.g. "1.3b")."""
    match = DISPLAY_PATTERN.match(filename)
    return match.group(1) if match else None


def sanitize_message(text: str, fallback: str = "no_msg") -> str:
    """Make a user message safe for use in a filename.

    Spaces become underscores and anything outside ``[A-Za-z0-9_.-]`` is
    dropped. An empty result falls back to ``fallback``.
    """
    sanitized = _DISALLOWED.sub("", text.replace(" ", "_"))
    return sanitized or fallback


def parse_version_token(text: str) -> Result[Version, ToolsError]:
    """Parse a version typed by the user ("1.3" or "1.3b").

    Whitespace anywhere in the input is ignored.
    """
    token = "".join(text.split())
    match = TOKEN_PATTERN.match(token)
    if not match:
        return err(
            ToolsError(
                code="INVALID_VERSION",
                message=f"Invalid version '{text}'. Use x.y or x.yb",
                context={"input": text},
            )
        )

    major, minor, backup = match.groups()
    return ok(Version(int(major), int(minor), backup == "b"))


def scan_max_value(directory: Path) -> int | None:
    """Highest version value among the entries of a checkpoint directory.

    Only immediate children are considered. Names that do not start with a
    version prefix are ignored. A missing directory counts as empty.
    """
    if not directory.is_dir():
        return None

    max_val: int | None = None
    for entry in directory.iterdir():
        match = SCAN_PATTERN.match(entry.name)
        if not match:
            continue
        val = 10 * int(match.group(1)) + int(match.group(2))
        if max_val is None or val > max_val:
            max_val = val

    return max_val


def next_version(directory: Path, backup: bool = False) -> Version:
    """Allocate the version for the next archive in ``directory``.

    Returns 1.0 for an empty directory, otherwise one step past the highest
    existing version (backup archives included).
    """
    max_val = scan_max_value(directory)
    next_val = FIRST_VALUE if max_val is None else max_val + 1
    version = Version.from_value(next_val, backup=backup)
    logger.debug(f"Next version in {directory}: {version} (max={max_val})")
    return version
