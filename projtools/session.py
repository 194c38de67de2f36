"""tmux + ttyd web terminal session.

The session is rooted at WORKDIR and has one window, ``main``, split into:

- left pane (80% width): runs TMUX_COMMAND
- right pane (20% width): interactive shell

New windows and panes ``cd`` into WORKDIR, and the 80/20 split is
re-applied whenever the window is resized. ttyd exposes the session on
TMUX_PORT, logging to ``<WORKDIR>/ttyd_<session>.log``.

Configuration comes from a ``.env`` file:

    WORKDIR=/path/to/your/project
    TMUX_PORT=9099
    TMUX_SESSION_NAME=your_session_name
    TMUX_COMMAND="opencode"
"""

from __future__ import annotations

import logging
import os
import shlex
import socket
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values

from projtools.config import ToolsConfig
from projtools.errors import Result, ToolsError, err, ok
from projtools.process import command_error, require_commands, run_command

logger = logging.getLogger(__name__)

LEFT_PANE_PERCENT = 80
RESTART_DELAY = 0.2  # Seconds to let processes exit / ttyd bind


@dataclass(frozen=True)
class SessionConfig:
    """Settings for the tmux/ttyd session."""

    workdir: Path
    session: str
    port: int
    command: str

    @property
    def logfile(self) -> Path:
        return self.workdir / f"ttyd_{self.session}.log"

    @classmethod
    def load(
        cls,
        env_file: Path,
        defaults: ToolsConfig | None = None,
    ) -> Result[SessionConfig, ToolsError]:
        """Read session settings from ``env_file``, then the environment.

        WORKDIR is required (the misspelt WORKDDIR is accepted too). The
        other values fall back to ``defaults``.
        """
        defaults = defaults or ToolsConfig()
        values: dict[str, str | None] = {}
        if env_file.is_file():
            logger.info(f"Loading configuration from {env_file}")
            values = dict(dotenv_values(env_file))
        else:
            logger.info(f"No .env file found at {env_file}, using default values")

        def lookup(key: str) -> str | None:
            value = values.get(key) or os.environ.get(key)
            return value or None

        workdir = lookup("WORKDIR") or lookup("WORKDDIR")
        if not workdir:
            return err(
                ToolsError(
                    code="SESSION_CONFIG_INVALID",
                    message="WORKDIR must be set in .env file (example: WORKDIR=/path/to/your/project)",
                    context={"env_file": str(env_file)},
                )
            )

        port_value = lookup("TMUX_PORT")
        try:
            port = int(port_value) if port_value else defaults.session_port
        except ValueError:
            return err(
                ToolsError(
                    code="SESSION_CONFIG_INVALID",
                    message=f"TMUX_PORT must be a number, got '{port_value}'",
                    context={"env_file": str(env_file)},
                )
            )

        return ok(
            cls(
                workdir=Path(workdir).expanduser(),
                session=lookup("TMUX_SESSION_NAME") or defaults.session_name,
                port=port,
                command=lookup("TMUX_COMMAND") or defaults.session_command,
            )
        )


@dataclass(frozen=True)
class SessionStatus:
    """What is currently running for a session."""

    session: str
    port: int
    logfile: Path
    tmux_running: bool
    ttyd_listening: bool
    windows: tuple[str, ...] = field(default_factory=tuple)


def is_port_listening(port: int, host: str = "127.0.0.1") -> bool:
    """Check whether something accepts TCP connections on ``port``."""
    try:
        with socket.create_connection((host, port), timeout=0.5):
            return True
    except OSError:
        return False


class SessionManager:
    """Start, inspect and stop the tmux session and its ttyd frontend."""

    def __init__(self, config: SessionConfig):
        self.config = config

    @property
    def target(self) -> str:
        return self.config.session

    def _tmux(self, *args: str, capture: bool = True):
        return run_command(["tmux", *args], capture=capture)

    def has_session(self) -> bool:
        return self._tmux("has-session", "-t", self.target).succeeded

    def status(self) -> SessionStatus:
        running = self.has_session()
        windows: tuple[str, ...] = ()
        if running:
            listed = self._tmux("list-windows", "-t", self.target)
            if listed.succeeded and listed.stdout:
                windows = tuple(listed.stdout.splitlines())
        return SessionStatus(
            session=self.target,
            port=self.config.port,
            logfile=self.config.logfile,
            tmux_running=running,
            ttyd_listening=is_port_listening(self.config.port),
            windows=windows,
        )

    def stop(self) -> None:
        """Stop ttyd and kill the tmux session; either may already be gone."""
        run_command(["pkill", "-f", f"ttyd -p {self.config.port}"], capture=True)
        self._tmux("kill-session", "-t", self.target)

    def start(self) -> Result[SessionStatus, ToolsError]:
        """(Re)create the session and make sure ttyd is serving it.

        An existing session is stopped and rebuilt from scratch.
        """
        required = require_commands("tmux", "ttyd")
        if required.is_err():
            return err(required.unwrap_err())

        workdir = self.config.workdir
        workdir.mkdir(parents=True, exist_ok=True)

        if self.has_session():
            logger.info(f"Session '{self.target}' already running, stopping and reloading...")
            self.stop()
            time.sleep(RESTART_DELAY)

        created = self._tmux("new-session", "-d", "-s", self.target, "-c", str(workdir), "-n", "main")
        if not created.succeeded:
            return err(command_error("TMUX_FAILED", "Failed to create tmux session", created))

        split = self._tmux("split-window", "-h", "-t", f"{self.target}:0", "-c", str(workdir))
        if not split.succeeded:
            return err(command_error("TMUX_FAILED", "Failed to split tmux window", split))

        self.enforce_layout()
        self.install_hooks()

        self._tmux("send-keys", "-t", f"{self.target}:0.0", self.config.command, "C-m")

        self.start_ttyd()
        return ok(self.status())

    def restart(self) -> Result[SessionStatus, ToolsError]:
        self.stop()
        return self.start()

    def enforce_layout(self) -> None:
        """Resize the left pane to 80% of the window width."""
        shown = self._tmux("display", "-p", "-t", f"{self.target}:0", "#{window_width}")
        try:
            width = int(shown.stdout)
        except ValueError:
            return
        if width <= 0:
            return
        self._tmux(
            "resize-pane", "-t", f"{self.target}:0.0", "-x", str(width * LEFT_PANE_PERCENT // 100)
        )

    def install_hooks(self) -> None:
        """Keep the 80/20 split on resize and open new windows/panes in WORKDIR."""
        cd_workdir = f"\\\"cd {shlex.quote(str(self.config.workdir))}\\\""
        hooks = {
            "window-resized": (
                'run-shell "WW=$(tmux display -p -t #{window_id} \\"#{window_width}\\"); '
                f'tmux resize-pane -t #{{window_id}}.0 -x $(( WW * {LEFT_PANE_PERCENT} / 100 ))"'
            ),
            "after-new-window": (
                f"run-shell \"tmux send-keys -t #{{session_name}}:#{{window_index}}.0 {cd_workdir} C-m\""
            ),
            "after-split-window": (
                "run-shell \"tmux send-keys -t "
                f"#{{session_name}}:#{{window_index}}.#{{pane_index}} {cd_workdir} C-m\""
            ),
        }

        self._tmux("set-environment", "-t", self.target, "WORKDIR", str(self.config.workdir))
        for hook, command in hooks.items():
            if not self._tmux("set-hook", "-t", self.target, hook, command).succeeded:
                logger.debug(f"Could not install tmux hook {hook}")
        # Only understood by old tmux versions
        self._tmux("set-option", "-t", self.target, "default-path", str(self.config.workdir))

    def start_ttyd(self) -> bool:
        """Launch ttyd in the background unless the port is already taken.

        Returns:
            True if a new ttyd process was started
        """
        if is_port_listening(self.config.port):
            logger.debug(f"Port {self.config.port} already listening, not starting ttyd")
            return False

        logfile = self.config.logfile
        logfile.parent.mkdir(parents=True, exist_ok=True)
        with open(logfile, "ab") as log:
            subprocess.Popen(  # noqa: S603
                ["ttyd", "-p", str(self.config.port), "tmux", "attach", "-t", self.target],
                stdin=subprocess.DEVNULL,
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        time.sleep(RESTART_DELAY)
        return True
