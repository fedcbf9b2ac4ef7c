"""Launch strategy implementations and the single resolution point that picks one."""

from pathlib import Path
from typing import TYPE_CHECKING, Optional

from fanout.environment import LaunchPlan, detect_platform, running_editor

from .base import LaunchStrategy
from .gui import GuiAutomationStrategy
from .printer import PrintStrategy
from .tmux import MultiplexerStrategy

if TYPE_CHECKING:
    from fanout.briefs import TaskBriefWriter

__all__ = [
    "LaunchStrategy",
    "GuiAutomationStrategy",
    "MultiplexerStrategy",
    "PrintStrategy",
    "build_strategy",
]


def build_strategy(
    plan: LaunchPlan,
    writer: "TaskBriefWriter",
    feature: str,
    repo_dir: Path,
    no_attach: bool = False,
    editor: Optional[str] = None,
) -> LaunchStrategy:
    """
    Instantiate the strategy for a resolved LaunchPlan.

    GUI automation needs a running editor; if it has gone away since the
    plan was resolved, printed instructions are used instead.
    """
    if plan == LaunchPlan.MULTIPLEXED_TERMINAL:
        return MultiplexerStrategy(writer, feature=feature, repo_dir=repo_dir, no_attach=no_attach)

    if plan == LaunchPlan.GUI_TERMINAL_AUTOMATION:
        editor = editor or running_editor()
        if editor:
            return GuiAutomationStrategy(writer, platform=detect_platform(), editor=editor)

    return PrintStrategy(writer)
