"""Abstract base class for session launch strategies (tmux, GUI automation, printed instructions)."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from fanout.briefs import TaskBriefWriter
    from fanout.workspace import Workspace


class LaunchStrategy(ABC):
    """
    Interface every launch mechanism implements.

    The launcher calls prepare() once, launch() per workspace in index
    order, then finish() once. New platforms add a subclass rather than
    another branch in the launcher.
    """

    def __init__(self, writer: "TaskBriefWriter"):
        self.writer = writer

    @property
    @abstractmethod
    def name(self) -> str:
        """Short strategy name used in summaries and logs."""

    def prepare(self, workspaces: Sequence["Workspace"]) -> None:
        """Set up shared resources before the first launch."""

    @abstractmethod
    def launch(self, workspace: "Workspace") -> str:
        """
        Start an agent session for one workspace.

        Returns:
            Human-readable location of the session (window, tab, ...)

        Raises:
            LaunchError: this workspace could not be started
            AutomationPermissionError: the host denied automation entirely
        """

    def finish(self) -> None:
        """Hand control to the operator after all launches."""

    def abort(self) -> None:
        """Tear down shared resources when the run is rolled back."""
