"""Configuration management for projtools.

Storage Structure
-----------------
projtools never keeps state inside a project beyond its checkpoints:

~/.projtools/                     # User-level
└── config.yaml                   # Tool defaults for every project

<parent>/                         # Directory holding the project
├── <project>/                    # Working directory being checkpointed
│   ├── .projtools/config.yaml    # Project-level overrides (optional)
│   ├── .env_project_tools        # PROD_LOCATION for deploy
│   └── .env                      # WORKDIR etc. for the tmux session
└── checkpoint/
    └── checkpoint_<project>/     # Versioned .tar.gz archives

Configuration Classes
---------------------
**ToolsConfig** (Tuning)
    Cascade: project .projtools/config.yaml → ~/.projtools/config.yaml → defaults

**ProjectContext** (Runtime)
    The working directory, its checkpoint directory and the protected
    script set. Built once per command and passed to every operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# Standard paths
TOOLS_DIR = Path.home() / ".projtools"
CONFIG_NAME = "config.yaml"

# Tooling scripts that are never archived, deleted or overwritten
PROTECTED_FILES = ("checkpoint.sh", "restore.sh", "clean.sh")

# Stack restart script run on a deployment target after extraction
CLEAN_SCRIPT = "clean.sh"

CHECKPOINT_ROOT_NAME = "checkpoint"
CHECKPOINT_DIR_PREFIX = "checkpoint_"


@dataclass
class ToolsConfig:
    """User-configurable defaults for the workflow commands."""

    # File watcher
    refresh_interval: int = 10
    max_files: int = 15

    # Tool refresh source
    tools_repo: str = "thehunterofshadows/project_files"
    tools_branch: str = "main"
    tools_pattern: str = "*.sh"
    http_timeout: float = 30.0

    # Checkpoint messages
    default_message: str = "no_msg"
    backup_message: str = "pre_restore"

    # tmux/ttyd session fallbacks when .env leaves them unset
    session_name: str = "urlsum"
    session_port: int = 9099
    session_command: str = "codex --dangerously-bypass-approvals-and-sandbox"

    @classmethod
    def load(cls, config_dir: Path) -> ToolsConfig:
        """Load config from a projtools directory.

        Args:
            config_dir: Path to a .projtools directory (project or user level)

        Returns:
            ToolsConfig with values from file, or defaults if not found
        """
        config_path = config_dir / CONFIG_NAME
        if config_path.exists():
            with open(config_path) as f:
                overrides = yaml.safe_load(f) or {}
            # Only apply known fields
            valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
            valid_overrides = {k: v for k, v in overrides.items() if k in valid_fields}
            return cls(**valid_overrides)
        return cls()

    def save(self, config_dir: Path) -> Path:
        """Save non-default values to a projtools directory.

        Args:
            config_dir: Path to .projtools directory

        Returns:
            Path to saved config file
        """
        config_dir.mkdir(parents=True, exist_ok=True)
        config_path = config_dir / CONFIG_NAME

        defaults = ToolsConfig()
        data = {}
        for key, value in self.__dict__.items():
            if getattr(defaults, key) != value:
                data[key] = value

        if not data:
            data = {"_version": 1}  # Marker that config was explicitly saved

        with open(config_path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False)

        return config_path

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary."""
        return dict(self.__dict__)


def get_tools_config(project_path: Path | None = None) -> ToolsConfig:
    """Load ToolsConfig with project → user → default cascade.

    Args:
        project_path: Working directory of the project. If None, uses cwd.

    Returns:
        ToolsConfig from the first config file found
    """
    if project_path is None:
        project_path = Path.cwd()

    project_dir = project_path / ".projtools"
    if (project_dir / CONFIG_NAME).exists():
        return ToolsConfig.load(project_dir)

    return ToolsConfig.load(TOOLS_DIR)


def checkpoint_dir_for(work_dir: Path) -> Path:
    """Checkpoint directory for a working directory.

    Archives live beside the project, never inside it:
    ``<parent>/checkpoint/checkpoint_<name>``.
    """
    work_dir = work_dir.resolve()
    return work_dir.parent / CHECKPOINT_ROOT_NAME / f"{CHECKPOINT_DIR_PREFIX}{work_dir.name}"


@dataclass(frozen=True)
class ProjectContext:
    """Everything an operation needs to know about the project it acts on."""

    work_dir: Path
    checkpoint_dir: Path
    protected: tuple[str, ...] = PROTECTED_FILES
    config: ToolsConfig = field(default_factory=ToolsConfig)

    @property
    def name(self) -> str:
        """Directory name; also the top-level entry of every archive."""
        return self.work_dir.name

    @classmethod
    def for_directory(
        cls,
        work_dir: Path | None = None,
        config: ToolsConfig | None = None,
    ) -> ProjectContext:
        """Build the context for a working directory (default: cwd)."""
        work_dir = (work_dir or Path.cwd()).resolve()
        return cls(
            work_dir=work_dir,
            checkpoint_dir=checkpoint_dir_for(work_dir),
            config=config if config is not None else get_tools_config(work_dir),
        )
