"""GUI terminal automation: open a terminal tab per workspace inside a running editor."""

import subprocess
import time
from typing import TYPE_CHECKING, List

from fanout.environment import Platform
from fanout.errors import AutomationPermissionError, LaunchError
from fanout.strategies.base import LaunchStrategy

if TYPE_CHECKING:
    from fanout.briefs import TaskBriefWriter
    from fanout.workspace import Workspace

# Process name -> AppleScript application name
MAC_APPLICATIONS = {
    "Code": "Visual Studio Code",
    "code": "Visual Studio Code",
    "Cursor": "Cursor",
    "cursor": "Cursor",
}

# Errors meaning the OS refused automation, not that one tab failed
PERMISSION_MARKERS = (
    "not allowed to send keystrokes",
    "not allowed assistive access",
    "(-1719)",
    "(-25211)",
    "(1002)",
    "not authorized",
    "can't open display",
    "failed creating new xdo instance",
)


def _applescript_string(text: str) -> str:
    return '"' + text.replace('\\', '\\\\').replace('"', '\\"') + '"'


def _is_permission_error(stderr: str) -> bool:
    lowered = stderr.lower()
    return any(marker in lowered for marker in PERMISSION_MARKERS)


class GuiAutomationStrategy(LaunchStrategy):
    """
    Drive the editor's integrated terminal with keystrokes.

    macOS uses osascript (needs Accessibility permission); Linux uses
    xdotool against an X display. Each workspace gets a new terminal tab
    (ctrl+shift+` in VS Code and Cursor) where the launch command is typed,
    followed by the begin-work instruction once the agent has had time to
    start.
    """

    def __init__(
        self,
        writer: "TaskBriefWriter",
        platform: Platform,
        editor: str,
        startup_wait: float = 5.0,
    ):
        super().__init__(writer)
        self.platform = platform
        self.editor = editor
        self.startup_wait = startup_wait

    @property
    def name(self) -> str:
        return "gui"

    def _mac_script(self, command: str, instruction: str) -> str:
        app = MAC_APPLICATIONS.get(self.editor, self.editor)
        return "\n".join([
            f"tell application {_applescript_string(app)} to activate",
            "delay 0.5",
            'tell application "System Events"',
            '    keystroke "`" using {control down, shift down}',
            "    delay 1.0",
            f"    keystroke {_applescript_string(command)}",
            "    key code 36",
            f"    delay {self.startup_wait}",
            f"    keystroke {_applescript_string(instruction)}",
            "    key code 36",
            "end tell",
        ])

    def _xdotool_commands(self, command: str, instruction: str) -> List[List[str]]:
        return [
            ["xdotool", "search", "--onlyvisible", "--class", self.editor, "windowactivate", "--sync"],
            ["xdotool", "key", "--clearmodifiers", "ctrl+shift+grave"],
            ["xdotool", "type", "--delay", "20", command],
            ["xdotool", "key", "Return"],
            ["sleep", str(self.startup_wait)],
            ["xdotool", "type", "--delay", "20", instruction],
            ["xdotool", "key", "Return"],
        ]

    def _run(self, args: List[str]) -> None:
        if args[0] == "sleep":
            time.sleep(float(args[1]))
            return
        try:
            result = subprocess.run(args, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise AutomationPermissionError(f"Automation tool unavailable: {e}") from e
        if result.returncode != 0:
            stderr = result.stderr.strip()
            if _is_permission_error(stderr):
                raise AutomationPermissionError(
                    f"Terminal automation was denied: {stderr}",
                    remediation="Grant your terminal Accessibility permission "
                                "(System Settings > Privacy & Security > Accessibility) and re-run",
                )
            raise LaunchError(f"{args[0]} failed: {stderr}")

    def launch(self, workspace: "Workspace") -> str:
        command = self.writer.manual_command(workspace)
        instruction = self.writer.begin_instruction(workspace)

        if self.platform == Platform.MACOS:
            self._run(["osascript", "-e", self._mac_script(command, instruction)])
        elif self.platform == Platform.LINUX:
            for args in self._xdotool_commands(command, instruction):
                self._run(args)
        else:
            raise AutomationPermissionError(f"No terminal automation on {self.platform.value}")

        return f"{self.editor} terminal tab"
