"""Multiplexed-terminal strategy: one tmux session per feature, one window per workspace."""

import logging
import os
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

import click

from fanout.config import get_ready_timeout, get_session_name
from fanout.errors import LaunchError
from fanout.strategies.base import LaunchStrategy
from fanout.tmux_utils import find_session, kill_session, kill_window, send_keys, wait_for_ready

if TYPE_CHECKING:
    from fanout.briefs import TaskBriefWriter
    from fanout.workspace import Workspace

logger = logging.getLogger(__name__)

CONTROL_WINDOW = "control"


class MultiplexerStrategy(LaunchStrategy):
    """
    Launch agents in tmux.

    Session 'fanout-{feature}' holds a control window in the repository and
    an 'agent-{n}' window per workspace. Relaunching a feature kills and
    recreates its session.
    """

    def __init__(
        self,
        writer: "TaskBriefWriter",
        feature: str,
        repo_dir: Path,
        no_attach: bool = False,
        ready_timeout: Optional[float] = None,
    ):
        super().__init__(writer)
        self.feature = feature
        self.repo_dir = Path(repo_dir)
        self.no_attach = no_attach
        self.session_name = get_session_name(feature)
        self.ready_timeout = get_ready_timeout() if ready_timeout is None else ready_timeout

    @property
    def name(self) -> str:
        return "tmux"

    def prepare(self, workspaces: Sequence["Workspace"]) -> None:
        if kill_session(self.session_name):
            logger.info("Killed existing tmux session %s", self.session_name)

        result = subprocess.run(
            [
                "tmux", "new-session", "-d",
                "-s", self.session_name,
                "-n", CONTROL_WINDOW,
                "-c", str(self.repo_dir),
            ],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise LaunchError(f"Failed to create tmux session '{self.session_name}': {result.stderr.strip()}")

    def launch(self, workspace: "Workspace") -> str:
        window_name = f"agent-{workspace.number}"
        result = subprocess.run(
            [
                "tmux", "new-window",
                "-t", self.session_name,
                "-n", window_name,
                "-c", str(workspace.path),
                "-d", "-P", "-F", "#{window_index}:#{window_id}",
            ],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise LaunchError(f"Failed to create tmux window {window_name}: {result.stderr.strip()}")

        window_index = result.stdout.strip().split(':', 1)[0]
        target = f"{self.session_name}:{window_index}"

        try:
            send_keys(target, self.writer.launch_command(workspace))
        except subprocess.CalledProcessError as e:
            raise LaunchError(f"Failed to start agent in {target}: {e}") from e

        if os.getenv("FANOUT_SKIP_READY") != "1":
            if not wait_for_ready(target, timeout=self.ready_timeout):
                # Agent is already running; the manual fallback must not start a second one
                kill_window(target)
                raise LaunchError(
                    f"Agent did not become ready in {target} within {self.ready_timeout}s; window closed. "
                    f"Set FANOUT_READY_TIMEOUT to wait longer."
                )

        try:
            send_keys(target, self.writer.begin_instruction(workspace))
        except subprocess.CalledProcessError as e:
            kill_window(target)
            raise LaunchError(f"Failed to send instruction to {target}: {e}") from e

        return target

    def abort(self) -> None:
        if kill_session(self.session_name):
            logger.info("Killed tmux session %s after rollback", self.session_name)

    def finish(self) -> None:
        subprocess.run(
            ["tmux", "select-window", "-t", f"{self.session_name}:{CONTROL_WINDOW}"],
            check=False,
        )
        click.echo(f"\n   Attach with: tmux attach-session -t {self.session_name}")
        if self.no_attach or find_session(self.session_name) is None:
            return

        if os.getenv("TMUX"):
            subprocess.run(["tmux", "switch-client", "-t", self.session_name], check=False)
        else:
            subprocess.run(["tmux", "attach-session", "-t", self.session_name], check=False)
