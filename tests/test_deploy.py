"""Tests for projtools.deploy module."""

import shutil
import uuid
from pathlib import Path

import pytest

from projtools.archive import create_checkpoint
from projtools.config import ProjectContext, ToolsConfig
from projtools.deploy import (
    DeployConfig,
    DeployTarget,
    TargetRunner,
    deploy_checkpoint,
    shell_path,
)
from projtools.process import CommandResult


class FakeRunner:
    """Records commands; fails any command containing a configured needle."""

    def __init__(self, fail_run: dict[str, int] | None = None, fail_copy: int = 0):
        self.fail_run = fail_run or {}
        self.fail_copy = fail_copy
        self.commands: list[str] = []
        self.copies: list[tuple[Path, str]] = []

    def run(self, command: str) -> CommandResult:
        self.commands.append(command)
        for needle, code in self.fail_run.items():
            if needle in command:
                return CommandResult(args=("fake", command), returncode=code)
        return CommandResult(args=("fake", command), returncode=0)

    def copy(self, source: Path, destination: str) -> CommandResult:
        self.copies.append((source, destination))
        return CommandResult(args=("fake-copy",), returncode=self.fail_copy)


# =============================================================================
# Target and Config Tests
# =============================================================================


class TestDeployTarget:
    """Tests for DeployTarget.parse()."""

    def test_remote(self):
        target = DeployTarget.parse("deploy@prod.example.com:~/project/")

        assert target.is_remote
        assert target.user_host == "deploy@prod.example.com"
        assert target.path == "~/project/"
        assert str(target) == "deploy@prod.example.com:~/project/"

    def test_local(self):
        target = DeployTarget.parse("/srv/project")

        assert not target.is_remote
        assert target.path == "/srv/project"

    def test_colon_without_user_is_local(self):
        assert not DeployTarget.parse("server:/srv/project").is_remote

    def test_at_without_colon_is_local(self):
        assert not DeployTarget.parse("/srv/me@work").is_remote


class TestDeployConfig:
    """Tests for DeployConfig.load()."""

    def test_missing_file(self, tmp_path: Path):
        result = DeployConfig.load(tmp_path)

        assert result.is_err()
        assert result.unwrap_err().code == "DEPLOY_CONFIG_MISSING"
        assert result.unwrap_err().exit_code == 1

    def test_missing_variable(self, tmp_path: Path):
        (tmp_path / ".env_project_tools").write_text("OTHER=1\n")

        result = DeployConfig.load(tmp_path)

        assert result.unwrap_err().code == "DEPLOY_TARGET_MISSING"

    def test_empty_variable(self, tmp_path: Path):
        (tmp_path / ".env_project_tools").write_text("PROD_LOCATION=\n")

        assert DeployConfig.load(tmp_path).unwrap_err().code == "DEPLOY_TARGET_MISSING"

    def test_shell_style_file(self, tmp_path: Path):
        (tmp_path / ".env_project_tools").write_text(
            '# production\nexport PROD_LOCATION="me@box:/srv/app/"\n'
        )

        config = DeployConfig.load(tmp_path).unwrap()

        assert config.target == DeployTarget(path="/srv/app/", user_host="me@box")


def test_shell_path_quoting():
    assert shell_path("/srv/app") == "/srv/app"
    assert shell_path("/srv/my app") == "'/srv/my app'"
    assert shell_path("~/project/") == "~/project/"
    assert shell_path("~/my project") == "~/'my project'"
    assert shell_path("~") == "~"


# =============================================================================
# Deployment Sequence Tests
# =============================================================================


@pytest.fixture
def archive(project: ProjectContext) -> Path:
    return create_checkpoint(project, "release").unwrap().path


class TestDeploySequence:
    """Tests for deploy_checkpoint() with a recording runner."""

    TARGET = DeployTarget(path="/srv/app", user_host="me@box")

    def test_runs_all_steps_in_order(self, project: ProjectContext, archive: Path):
        runner = FakeRunner()

        result = deploy_checkpoint(project, archive, self.TARGET, runner=runner, timestamp="250101_120000")

        assert result.is_ok()
        deployed = result.unwrap()
        assert deployed.backup_name == "prod_backup_250101_120000.tar.gz"
        assert deployed.warnings == ()

        commands = runner.commands
        assert commands[0] == "mkdir -p /srv/app/../prod_backup"
        assert "tar -czf /srv/app/../prod_backup/prod_backup_250101_120000.tar.gz -C /srv/app ." in commands[1]
        assert "docker compose down" in commands[2]
        assert commands[3] == "rm -rf /srv/app/* /srv/app/.[!.]*"
        assert "tar -xzf /tmp/checkpoint_250101_120000.tar.gz --strip-components=1" in commands[4]
        assert "rm /tmp/checkpoint_250101_120000.tar.gz" in commands[4]
        assert "codeload.github.com/thehunterofshadows/project_files" in commands[5]
        assert "./clean.sh" in commands[6]
        assert len(commands) == 7

        assert runner.copies == [(archive, "/tmp/checkpoint_250101_120000.tar.gz")]

    def test_tools_refresh_skipped_without_repo(self, project: ProjectContext, archive: Path):
        ctx = ProjectContext.for_directory(project.work_dir, config=ToolsConfig(tools_repo=""))
        runner = FakeRunner()

        deploy_checkpoint(ctx, archive, self.TARGET, runner=runner)

        assert not any("codeload" in c for c in runner.commands)
        assert len(runner.commands) == 6

    @pytest.mark.parametrize("needle", ["ls -A", "docker compose down", "rm -rf"])
    def test_preparation_failures_are_warnings(self, project: ProjectContext, archive: Path, needle: str):
        runner = FakeRunner(fail_run={needle: 1})

        result = deploy_checkpoint(project, archive, self.TARGET, runner=runner)

        assert result.is_ok()
        assert len(result.unwrap().warnings) == 1
        assert runner.copies  # Continued to the copy step

    def test_tools_refresh_failure_still_runs_clean_script(self, project: ProjectContext, archive: Path):
        runner = FakeRunner(fail_run={"curl -fsSL": 6})

        result = deploy_checkpoint(project, archive, self.TARGET, runner=runner)

        assert result.is_ok()
        assert len(result.unwrap().warnings) == 1
        assert "refresh tools" in result.unwrap().warnings[0]
        assert "./clean.sh" in runner.commands[-1]

    def test_backup_dir_failure_is_fatal(self, project: ProjectContext, archive: Path):
        runner = FakeRunner(fail_run={"mkdir -p /srv/app/../prod_backup": 255})

        result = deploy_checkpoint(project, archive, self.TARGET, runner=runner)

        error = result.unwrap_err()
        assert error.code == "DEPLOY_STEP_FAILED"
        assert error.context["step"] == "create backup directory"
        assert error.exit_code == 255
        assert len(runner.commands) == 1

    def test_copy_failure_is_fatal(self, project: ProjectContext, archive: Path):
        runner = FakeRunner(fail_copy=1)

        result = deploy_checkpoint(project, archive, self.TARGET, runner=runner)

        assert result.unwrap_err().context["step"] == "copy archive"
        assert not any("--strip-components" in c for c in runner.commands)

    def test_extract_failure_is_fatal(self, project: ProjectContext, archive: Path):
        runner = FakeRunner(fail_run={"--strip-components=1": 2})

        result = deploy_checkpoint(project, archive, self.TARGET, runner=runner)

        error = result.unwrap_err()
        assert error.context["step"] == "extract archive"
        assert error.exit_code == 2
        assert not any("clean.sh" in c for c in runner.commands)

    def test_clean_script_failure_propagates(self, project: ProjectContext, archive: Path):
        runner = FakeRunner(fail_run={"./clean.sh": 3})

        result = deploy_checkpoint(project, archive, self.TARGET, runner=runner)

        assert result.unwrap_err().exit_code == 3

    def test_tilde_path_stays_expandable(self, project: ProjectContext, archive: Path):
        runner = FakeRunner()
        target = DeployTarget(path="~/my app", user_host="me@box")

        deploy_checkpoint(project, archive, target, runner=runner)

        assert runner.commands[3] == "rm -rf ~/'my app'/* ~/'my app'/.[!.]*"


class TestTargetRunner:
    """Tests for TargetRunner command construction."""

    def test_remote_uses_ssh(self, monkeypatch):
        calls = []
        monkeypatch.setattr(
            "projtools.deploy.run_command",
            lambda args, **kw: calls.append(args) or CommandResult(args=tuple(args), returncode=0),
        )
        runner = TargetRunner(DeployTarget(path="/srv/app", user_host="me@box"))

        runner.run("echo hi")
        runner.copy(Path("/tmp/a.tar.gz"), "/tmp/b.tar.gz")

        assert calls == [
            ["ssh", "me@box", "echo hi"],
            ["scp", "/tmp/a.tar.gz", "me@box:/tmp/b.tar.gz"],
        ]

    def test_local_uses_bash(self, monkeypatch):
        calls = []
        monkeypatch.setattr(
            "projtools.deploy.run_command",
            lambda args, **kw: calls.append(args) or CommandResult(args=tuple(args), returncode=0),
        )

        TargetRunner(DeployTarget(path="/srv/app")).run("echo hi")

        assert calls == [["bash", "-c", "echo hi"]]

    def test_local_copy(self, tmp_path: Path):
        source = tmp_path / "a.txt"
        source.write_text("data")

        result = TargetRunner(DeployTarget(path=str(tmp_path))).copy(source, str(tmp_path / "b.txt"))

        assert result.succeeded
        assert (tmp_path / "b.txt").read_text() == "data"


@pytest.mark.skipif(shutil.which("bash") is None or shutil.which("tar") is None, reason="needs bash and tar")
class TestLocalDeployment:
    """End-to-end deployment to a local directory."""

    def test_deploys_and_backs_up(self, project: ProjectContext, archive: Path, tmp_path: Path):
        ctx = ProjectContext.for_directory(project.work_dir, config=ToolsConfig(tools_repo=""))
        prod = tmp_path / "prod" / "app"
        prod.mkdir(parents=True)
        (prod / "old.txt").write_text("old release")
        (prod / ".hidden").write_text("old hidden")
        stamp = f"test_{uuid.uuid4().hex[:8]}"

        result = deploy_checkpoint(ctx, archive, DeployTarget(path=str(prod)), timestamp=stamp)

        assert result.is_ok(), result
        assert (prod / "src" / "app.py").read_text() == "print('v1')\n"
        assert not (prod / "old.txt").exists()
        assert not (prod / ".hidden").exists()
        assert not (prod / "clean.sh").exists()
        assert (tmp_path / "prod" / "prod_backup" / f"prod_backup_{stamp}.tar.gz").exists()
        assert not Path(f"/tmp/checkpoint_{stamp}.tar.gz").exists()

    def test_empty_target_skips_backup(self, project: ProjectContext, archive: Path, tmp_path: Path):
        ctx = ProjectContext.for_directory(project.work_dir, config=ToolsConfig(tools_repo=""))
        prod = tmp_path / "prod" / "app"
        stamp = f"test_{uuid.uuid4().hex[:8]}"

        result = deploy_checkpoint(ctx, archive, DeployTarget(path=str(prod)), timestamp=stamp)

        assert result.is_ok()
        assert (prod / "README.md").exists()
        assert list((tmp_path / "prod" / "prod_backup").iterdir()) == []
