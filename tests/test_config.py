"""Tests for projtools.config module."""

from pathlib import Path

import yaml

from projtools.config import (
    PROTECTED_FILES,
    ProjectContext,
    ToolsConfig,
    checkpoint_dir_for,
    get_tools_config,
)


class TestToolsConfig:
    """Tests for ToolsConfig load/save."""

    def test_defaults_when_missing(self, tmp_path: Path):
        config = ToolsConfig.load(tmp_path / ".projtools")

        assert config == ToolsConfig()
        assert config.max_files == 15
        assert config.refresh_interval == 10

    def test_save_only_non_defaults(self, tmp_path: Path):
        config_dir = tmp_path / ".projtools"

        path = ToolsConfig(max_files=30).save(config_dir)

        assert yaml.safe_load(path.read_text()) == {"max_files": 30}

    def test_save_defaults_writes_marker(self, tmp_path: Path):
        path = ToolsConfig().save(tmp_path / ".projtools")

        assert yaml.safe_load(path.read_text()) == {"_version": 1}

    def test_load_roundtrip(self, tmp_path: Path):
        config_dir = tmp_path / ".projtools"
        ToolsConfig(tools_branch="dev", http_timeout=5.0).save(config_dir)

        loaded = ToolsConfig.load(config_dir)

        assert loaded.tools_branch == "dev"
        assert loaded.http_timeout == 5.0

    def test_unknown_keys_ignored(self, tmp_path: Path):
        config_dir = tmp_path / ".projtools"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text("max_files: 3\nbogus: 1\n_version: 1\n")

        assert ToolsConfig.load(config_dir) == ToolsConfig(max_files=3)

    def test_empty_file(self, tmp_path: Path):
        config_dir = tmp_path / ".projtools"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text("")

        assert ToolsConfig.load(config_dir) == ToolsConfig()


class TestCascade:
    """Tests for get_tools_config()."""

    def test_project_overrides_user(self, tmp_path: Path, no_user_config: Path):
        ToolsConfig(max_files=40).save(no_user_config)
        project = tmp_path / "proj"
        ToolsConfig(max_files=5).save(project / ".projtools")

        assert get_tools_config(project).max_files == 5

    def test_user_level_used_without_project_file(self, tmp_path: Path, no_user_config: Path):
        ToolsConfig(max_files=40).save(no_user_config)

        assert get_tools_config(tmp_path / "proj").max_files == 40

    def test_defaults(self, tmp_path: Path, no_user_config: Path):
        assert get_tools_config(tmp_path) == ToolsConfig()


class TestProjectContext:
    """Tests for checkpoint directory placement."""

    def test_checkpoint_dir_beside_project(self, tmp_path: Path):
        work_dir = tmp_path / "site"
        work_dir.mkdir()

        assert checkpoint_dir_for(work_dir) == tmp_path.resolve() / "checkpoint" / "checkpoint_site"

    def test_trailing_dot_segments_resolved(self, tmp_path: Path):
        work_dir = tmp_path / "site"
        (work_dir / "sub").mkdir(parents=True)

        assert checkpoint_dir_for(work_dir / "sub" / "..").name == "checkpoint_site"

    def test_for_directory(self, tmp_path: Path, no_user_config: Path):
        work_dir = tmp_path / "site"
        work_dir.mkdir()

        ctx = ProjectContext.for_directory(work_dir)

        assert ctx.name == "site"
        assert ctx.protected == PROTECTED_FILES
        assert ctx.checkpoint_dir.parent.name == "checkpoint"
        assert ctx.config == ToolsConfig()
