"""
Host environment probing: worktree support, platform, launch strategy.

Nothing here raises. Every probe answers with a value, and strategy
resolution always lands on PRINT_INSTRUCTIONS when nothing better exists.
"""

import logging
import os
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from fanout.config import get_editor_processes
from fanout.git_utils import GitCommandError, prune_worktrees, run_git

logger = logging.getLogger(__name__)


class Platform(Enum):
    MACOS = "macOS"
    LINUX = "linux"
    WINDOWS_SUBSYSTEM = "windowsSubsystem"
    GIT_BASH_WINDOWS = "gitBashWindows"
    UNKNOWN = "unknown"


class LaunchPlan(Enum):
    MULTIPLEXED_TERMINAL = "multiplexedTerminal"
    GUI_TERMINAL_AUTOMATION = "guiTerminalAutomation"
    PRINT_INSTRUCTIONS = "printInstructions"


def probe_worktree_support(repo_dir: Path) -> bool:
    """
    Check that this git and repository can host worktrees.

    Creates a detached worktree in a fresh temporary directory and removes it
    again. The temporary directory is deleted even when git fails.
    """
    probe_parent = Path(tempfile.mkdtemp(prefix="fanout-probe-"))
    probe_path = probe_parent / "worktree"
    try:
        run_git(['worktree', 'add', '--detach', str(probe_path), 'HEAD'], repo_dir)
        run_git(['worktree', 'remove', '--force', str(probe_path)], repo_dir)
        return True
    except (GitCommandError, OSError) as e:
        logger.debug("Worktree probe failed: %s", e)
        return False
    finally:
        shutil.rmtree(probe_parent, ignore_errors=True)
        try:
            prune_worktrees(repo_dir)
        except (GitCommandError, OSError) as e:
            logger.debug("Worktree prune after probe failed: %s", e)


def _proc_version() -> str:
    try:
        return Path('/proc/version').read_text().lower()
    except OSError:
        return ""


def detect_platform() -> Platform:
    """Classify the host platform."""
    if sys.platform == 'darwin':
        return Platform.MACOS
    if sys.platform.startswith('linux'):
        if os.getenv('WSL_DISTRO_NAME') or 'microsoft' in _proc_version():
            return Platform.WINDOWS_SUBSYSTEM
        return Platform.LINUX
    if os.getenv('MSYSTEM') or sys.platform in ('msys', 'cygwin', 'win32'):
        return Platform.GIT_BASH_WINDOWS
    return Platform.UNKNOWN


def is_multiplexer_installed() -> bool:
    return shutil.which('tmux') is not None


def running_editor() -> Optional[str]:
    """Name of the first configured editor process that is running, if any."""
    if shutil.which('pgrep') is None:
        return None
    for name in get_editor_processes():
        result = subprocess.run(['pgrep', '-x', name], capture_output=True, text=True, check=False)
        if result.returncode == 0:
            return name
    return None


def gui_automation_tool(platform: Platform) -> Optional[str]:
    """Automation tool for the platform, if installed and usable."""
    if platform == Platform.MACOS:
        return 'osascript' if shutil.which('osascript') else None
    if platform == Platform.LINUX:
        if os.getenv('DISPLAY') and shutil.which('xdotool'):
            return 'xdotool'
    return None


def choose_launch_strategy(force_multiplexer: bool = False) -> LaunchPlan:
    """
    Resolve the launch plan for this run.

    Order:
      1. Forced multiplexer, when installed
      2. GUI terminal automation, when an editor runs and the tool exists
      3. Multiplexer, when installed
      4. Printed instructions
    """
    try:
        multiplexer = is_multiplexer_installed()
        if force_multiplexer and multiplexer:
            return LaunchPlan.MULTIPLEXED_TERMINAL

        platform = detect_platform()
        if gui_automation_tool(platform) and running_editor():
            return LaunchPlan.GUI_TERMINAL_AUTOMATION

        if multiplexer:
            return LaunchPlan.MULTIPLEXED_TERMINAL
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Launch strategy probe failed, printing instructions: %s", e)

    return LaunchPlan.PRINT_INSTRUCTIONS


@dataclass
class EnvironmentReport:
    platform: Platform
    worktrees: bool
    multiplexer: bool
    editor: Optional[str]
    automation_tool: Optional[str]
    plan: LaunchPlan

    def to_dict(self) -> dict:
        return {
            'platform': self.platform.value,
            'worktrees': self.worktrees,
            'multiplexer': self.multiplexer,
            'editor': self.editor,
            'automation_tool': self.automation_tool,
            'plan': self.plan.value,
        }


def probe_environment(repo_dir: Path, force_multiplexer: bool = False) -> EnvironmentReport:
    platform = detect_platform()
    return EnvironmentReport(
        platform=platform,
        worktrees=probe_worktree_support(repo_dir),
        multiplexer=is_multiplexer_installed(),
        editor=running_editor(),
        automation_tool=gui_automation_tool(platform),
        plan=choose_launch_strategy(force_multiplexer),
    )
