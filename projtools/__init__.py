"""projtools: Checkpoint, restore and deploy tooling for a project folder."""

__version__ = "1.0.0"

from projtools.config import ProjectContext
from projtools.versioning import ArchiveName, Version

__all__ = [
    "__version__",
    "ArchiveName",
    "ProjectContext",
    "Version",
]
