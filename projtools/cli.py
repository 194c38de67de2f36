"""projtools CLI - checkpoint, restore and deploy a project directory."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from projtools import __version__
from projtools.archive import create_checkpoint, human_size
from projtools.compose import clean_stack
from projtools.config import TOOLS_DIR, ProjectContext, ToolsConfig, get_tools_config
from projtools.deploy import DeployConfig, deploy_checkpoint
from projtools.errors import ToolsError, format_error
from projtools.parallel import push_and_clean
from projtools.restore import list_archives, resolve_version, restore_checkpoint
from projtools.session import SessionConfig, SessionManager, SessionStatus
from projtools.tools import pull_tools
from projtools.versioning import Version, parse_version_token
from projtools.watch import watch as watch_files

console = Console()
err_console = Console(stderr=True)


def _fail(error: ToolsError | None) -> None:
    """Print an error and exit with its exit code."""
    err_console.print(f"[red]✗ {escape(format_error(error))}[/red]")
    sys.exit(error.exit_code if error else 1)


def _setup_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_time=False, show_path=False)],
    )


def _context(ctx: click.Context) -> ProjectContext:
    return ProjectContext.for_directory(ctx.obj["directory"])


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--directory",
    "-C",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Project directory (default: current directory)",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.option("--quiet", "-q", is_flag=True, help="Only show warnings and errors")
@click.pass_context
def main(ctx, directory, verbose, quiet):
    """projtools: checkpoints, restores and deployments for a project folder."""
    _setup_logging(verbose, quiet)
    ctx.ensure_object(dict)
    ctx.obj["directory"] = directory or Path.cwd()


# =============================================================================
# Checkpoints
# =============================================================================


@main.command()
@click.option("--message", "-m", default=None, help="Checkpoint message")
@click.pass_context
def checkpoint(ctx, message):
    """Archive the project as the next checkpoint version."""
    project = _context(ctx)

    if message is None:
        message = click.prompt(
            "Enter message for this checkpoint", default="", show_default=False
        )

    result = create_checkpoint(project, message)
    if result.is_err():
        _fail(result.error)

    info = result.unwrap()
    console.print(f"[green]✓[/green] Created: {escape(str(info.path))}")
    console.print(f"Archive size: {human_size(info.size)}")
    console.print(f"Checkpoint folder total: {human_size(info.checkpoint_dir_size)}")


def _show_archives(checkpoint_dir: Path) -> None:
    """Print the archives in a checkpoint directory, exiting 1 if there are none."""
    if not checkpoint_dir.is_dir():
        _fail(
            ToolsError(
                code="CHECKPOINT_DIR_MISSING",
                message=f"No checkpoint dir: {checkpoint_dir}",
            )
        )

    entries = list_archives(checkpoint_dir)
    if not entries:
        _fail(ToolsError(code="NO_ARCHIVES", message="No checkpoint archives found."))

    table = Table(title=f"Checkpoints in {checkpoint_dir}", title_justify="left")
    table.add_column("VERSION")
    table.add_column("ARCHIVE")
    for entry in entries:
        table.add_row(entry.version or "", escape(entry.filename))
    console.print(table)
    console.print()


def _ask_version(given: str | None, action: str) -> Version:
    if given is None:
        given = click.prompt(f"Enter version to {action} (e.g., 1.3 or 1.3b)")
    parsed = parse_version_token(given)
    if parsed.is_err():
        _fail(parsed.error)
    return parsed.unwrap()


@main.command()
@click.option("--version-tag", "-t", default=None, help="Version to restore (x.y or x.yb)")
@click.option("--backup-message", "-m", default=None, help="Message for the pre-restore backup")
@click.pass_context
def restore(ctx, version_tag, backup_message):
    """Restore a checkpoint, backing up the current state first."""
    project = _context(ctx)
    _show_archives(project.checkpoint_dir)

    version = _ask_version(version_tag, "restore")
    selected = resolve_version(project.checkpoint_dir, version)
    if selected.is_err():
        _fail(selected.error)
    console.print(f"Selected: {escape(selected.unwrap().name)}")

    if backup_message is None:
        backup_message = click.prompt(
            "Enter message for backup BEFORE restore",
            default=project.config.backup_message,
        )

    result = restore_checkpoint(project, version, backup_message)
    if result.is_err():
        _fail(result.error)

    restored = result.unwrap()
    if not restored.compose_stopped:
        console.print("[yellow]![/yellow] docker compose down failed; restore continued")
    console.print(f"Backup saved: {escape(str(restored.backup.path))}")
    console.print(f"Backup archive size: {restored.backup.summary}")
    console.print(f"[green]✓[/green] Restored: {escape(restored.restored.name)}")


@main.command()
@click.option("--version-tag", "-t", default=None, help="Version to deploy (x.y or x.yb)")
@click.pass_context
def deploy(ctx, version_tag):
    """Deploy a checkpoint to PROD_LOCATION from .env_project_tools."""
    project = _context(ctx)

    loaded = DeployConfig.load(project.work_dir)
    if loaded.is_err():
        _fail(loaded.error)
    target = loaded.unwrap().target

    _show_archives(project.checkpoint_dir)
    version = _ask_version(version_tag, "deploy")
    selected = resolve_version(project.checkpoint_dir, version)
    if selected.is_err():
        _fail(selected.error)
    archive = selected.unwrap()
    console.print(f"[green]✓[/green] Selected: {escape(archive.name)}")
    console.print(f"Target: {escape(str(target))}")
    console.print()

    result = deploy_checkpoint(project, archive, target)
    if result.is_err():
        _fail(result.error)

    deployed = result.unwrap()
    console.print()
    console.print("[green]✓[/green] Deployment completed successfully!")
    console.print(f"  Deployed: {escape(deployed.archive.name)}")
    console.print(f"  Backup: {deployed.backup_name}")
    console.print(f"  Production location: {escape(str(deployed.target))}")
    for warning in deployed.warnings:
        console.print(f"  [yellow]![/yellow] {escape(warning)}")


# =============================================================================
# Stack and tools
# =============================================================================


@main.command()
@click.pass_context
def clean(ctx):
    """Stop the compose stack, prune Docker, pull and start again."""
    result = clean_stack(ctx.obj["directory"])
    if result.is_err():
        _fail(result.error)
    console.print("[green]✓[/green] Stack cleaned and restarted")


@main.command("push-clean")
@click.pass_context
def push_clean(ctx):
    """Run git push and clean at the same time."""
    console.print("Starting parallel execution: git push & clean")
    result = push_and_clean(ctx.obj["directory"])

    console.print()
    console.print("[bold]Execution Summary:[/bold]")
    console.print(f"  git push: {result.push.summary}")
    console.print(f"  clean: {result.clean.summary}")

    if not result.succeeded:
        sys.exit(1)
    console.print("[green]✓[/green] All tasks completed successfully!")


@main.command("pull-tools")
@click.option("--repo", default=None, help="GitHub owner/name holding the scripts")
@click.option("--branch", default=None, help="Branch to download")
@click.pass_context
def pull_tools_cmd(ctx, repo, branch):
    """Download fresh copies of the tooling scripts."""
    directory = ctx.obj["directory"]
    config = get_tools_config(directory)

    result = pull_tools(
        directory,
        repo=repo or config.tools_repo,
        branch=branch or config.tools_branch,
        pattern=config.tools_pattern,
        timeout=config.http_timeout,
    )
    if result.is_err():
        _fail(result.error)

    installed = result.unwrap()
    console.print("[green]✓[/green] Tools updated successfully!")
    if installed:
        for path in installed:
            console.print(f"  - {escape(path.name)}")
    else:
        console.print("  (no matching files found)")


@main.command()
@click.option("--interval", "-i", type=float, default=None, help="Seconds between refreshes")
@click.option("--limit", "-n", type=int, default=None, help="Number of files to show")
@click.pass_context
def watch(ctx, interval, limit):
    """Show the most recently modified files, refreshing periodically."""
    directory = ctx.obj["directory"]
    config = get_tools_config(directory)
    try:
        watch_files(
            directory,
            interval=interval if interval is not None else config.refresh_interval,
            limit=limit if limit is not None else config.max_files,
            console=console,
        )
    except KeyboardInterrupt:
        pass


# =============================================================================
# tmux + ttyd session
# =============================================================================


def _print_status(status: SessionStatus) -> None:
    console.print(f"Session: {escape(status.session)}")
    if status.tmux_running:
        console.print("  tmux: RUNNING")
        for window in status.windows:
            console.print(f"    {escape(window)}")
    else:
        console.print("  tmux: NOT RUNNING")
    if status.ttyd_listening:
        console.print(f"  ttyd: LISTENING on {status.port} (log: {escape(str(status.logfile))})")
    else:
        console.print(f"  ttyd: NOT LISTENING on {status.port}")


@main.command()
@click.argument(
    "action",
    type=click.Choice(["start", "status", "stop", "restart"]),
    default="start",
)
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Session .env file (default: .env in the project directory)",
)
@click.pass_context
def session(ctx, action, env_file):
    """Manage the tmux session and its ttyd web terminal."""
    directory = ctx.obj["directory"]
    loaded = SessionConfig.load(env_file or directory / ".env", get_tools_config(directory))
    if loaded.is_err():
        _fail(loaded.error)
    config = loaded.unwrap()
    manager = SessionManager(config)

    if action == "status":
        _print_status(manager.status())
        return

    if action == "stop":
        manager.stop()
        console.print(
            f"Stopped ttyd on {config.port} and tmux session '{escape(config.session)}' (if running)."
        )
        return

    result = manager.restart() if action == "restart" else manager.start()
    if result.is_err():
        _fail(result.error)

    console.print(f"[green]✓[/green] tmux session '{escape(config.session)}' reloaded and ready.")
    console.print(f"  Left: {escape(config.command)} (80%) | Right: shell (20%)")
    console.print(f"  New windows AND panes auto-cd to: {escape(str(config.workdir))}")
    console.print(f"  Web: http://<host>:{config.port} (log: {escape(str(config.logfile))})")


# =============================================================================
# Configuration
# =============================================================================


@main.group()
def config():
    """Manage projtools configuration.

    Values cascade: project .projtools/config.yaml → ~/.projtools/config.yaml → defaults.
    """
    pass


def _show_value(key: str, value, default):
    """Display a config value, highlighting if non-default."""
    if value != default:
        console.print(f"  {key}: [cyan]{escape(str(value))}[/cyan] [dim](default: {escape(str(default))})[/dim]")
    else:
        console.print(f"  {key}: {escape(str(value))}")


@config.command("list")
@click.pass_context
def config_list(ctx):
    """Show the effective configuration."""
    effective = get_tools_config(ctx.obj["directory"])
    defaults = ToolsConfig()

    console.print("[bold]Configuration[/bold]")
    console.print()
    for key, value in effective.to_dict().items():
        _show_value(key, value, getattr(defaults, key))

    console.print()
    console.print("[dim]projtools config set KEY VALUE            Set a value[/dim]")
    console.print("[dim]projtools config set KEY VALUE --project  Set project-level[/dim]")
    console.print("[dim]projtools config reset                    Reset to defaults[/dim]")


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--project", is_flag=True, help="Set in project-level config")
@click.pass_context
def config_set(ctx, key: str, value: str, project: bool):
    """Set a configuration value.

    Examples:
        projtools config set max_files 25
        projtools config set tools_branch dev --project
    """
    config_dir = ctx.obj["directory"] / ".projtools" if project else TOOLS_DIR
    current = ToolsConfig.load(config_dir)

    key = key.replace("-", "_")
    fields = ToolsConfig.__dataclass_fields__
    if key not in fields:
        console.print(f"[red]Unknown config key: {escape(key)}[/red]")
        console.print(f"[dim]Keys: {', '.join(fields)}[/dim]")
        sys.exit(1)

    default = getattr(ToolsConfig(), key)
    typed_value = value
    if isinstance(default, (int, float)):
        try:
            typed_value = type(default)(value)
        except ValueError:
            console.print(f"[red]Invalid {type(default).__name__} value: {escape(value)}[/red]")
            sys.exit(1)

    data = current.to_dict()
    data[key] = typed_value
    ToolsConfig(**data).save(config_dir)

    location = "project" if project else "user"
    console.print(f"[green]✓[/green] Set {key} = {escape(str(typed_value))} ({location}-level)")


@config.command("reset")
@click.option("--project", is_flag=True, help="Reset project-level config")
@click.pass_context
def config_reset(ctx, project: bool):
    """Reset configuration to defaults."""
    config_dir = ctx.obj["directory"] / ".projtools" if project else TOOLS_DIR
    ToolsConfig().save(config_dir)
    location = "project" if project else "user"
    console.print(f"[green]✓[/green] Reset config to defaults ({location}-level)")


if __name__ == "__main__":
    main()
