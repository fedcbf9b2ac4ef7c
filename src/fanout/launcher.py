"""
Session launching across workspaces.

Launches run in workspace-index order with a short delay between them. One
workspace failing never blocks the others: it gets printed manual
instructions instead. A denied automation permission switches the rest of
the run to printed instructions.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import click

from fanout.errors import AutomationPermissionError, LaunchError
from fanout.strategies import LaunchStrategy, PrintStrategy
from fanout.workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass
class LaunchRecord:
    workspace: Workspace
    strategy: str
    location: str
    fallback: bool = False
    error: Optional[str] = None


@dataclass
class LaunchSummary:
    """Which workspaces launched through the chosen strategy and which fell back."""
    strategy: str
    records: List[LaunchRecord] = field(default_factory=list)
    degraded_to: Optional[str] = None
    degraded_reason: Optional[str] = None

    @property
    def launched(self) -> List[LaunchRecord]:
        return [r for r in self.records if not r.fallback]

    @property
    def fallbacks(self) -> List[LaunchRecord]:
        return [r for r in self.records if r.fallback]

    @property
    def partially_degraded(self) -> bool:
        """True when some workspaces failed to launch through their strategy."""
        return any(r.error for r in self.records)

    def to_dict(self) -> dict:
        return {
            'strategy': self.strategy,
            'degraded_to': self.degraded_to,
            'degraded_reason': self.degraded_reason,
            'launched': [r.workspace.branch_name for r in self.launched],
            'fallback': [r.workspace.branch_name for r in self.fallbacks],
        }


class SessionLauncher:
    """Executes one LaunchStrategy over all workspaces of a run."""

    def __init__(self, strategy: LaunchStrategy, delay: float = 1.0):
        self.strategy = strategy
        self.delay = delay

    def _fallback(self, workspace: Workspace) -> None:
        writer = self.strategy.writer
        click.echo(f"   ↳ Start agent {workspace.number} manually:", err=True)
        click.echo(f"     {writer.manual_command(workspace)}", err=True)
        click.echo(f"     then tell it: {writer.begin_instruction(workspace)}", err=True)

    def _degrade(self, summary: LaunchSummary, reason: str) -> None:
        summary.degraded_to = "print"
        summary.degraded_reason = reason
        click.echo(f"⚠️  {reason}", err=True)
        click.echo("   Falling back to printed instructions.", err=True)
        self.strategy = PrintStrategy(self.strategy.writer)

    def launch_all(self, workspaces: Sequence[Workspace]) -> LaunchSummary:
        """
        Launch a session per workspace.

        Returns:
            LaunchSummary with one record per workspace
        """
        summary = LaunchSummary(strategy=self.strategy.name)
        ordered = sorted(workspaces, key=lambda w: w.index)

        try:
            self.strategy.prepare(ordered)
        except (LaunchError, AutomationPermissionError) as e:
            self._degrade(summary, e.message)
            self.strategy.prepare(ordered)

        for position, workspace in enumerate(ordered):
            if position > 0 and self.delay > 0:
                time.sleep(self.delay)

            try:
                location = self.strategy.launch(workspace)
            except AutomationPermissionError as e:
                logger.warning("Automation denied at workspace %s: %s", workspace.number, e.message)
                self._degrade(summary, e.message)
                if e.remediation:
                    click.echo(f"   {e.remediation}", err=True)
                self.strategy.prepare(ordered[position:])
                location = self.strategy.launch(workspace)
                summary.records.append(LaunchRecord(
                    workspace=workspace, strategy=self.strategy.name,
                    location=location, fallback=True,
                ))
            except LaunchError as e:
                logger.warning("Launch failed for workspace %s: %s", workspace.number, e.message)
                click.echo(f"❌ Agent {workspace.number}: {e.message}", err=True)
                self._fallback(workspace)
                summary.records.append(LaunchRecord(
                    workspace=workspace, strategy="print", location="manual",
                    fallback=True, error=e.message,
                ))
            else:
                summary.records.append(LaunchRecord(
                    workspace=workspace,
                    strategy=self.strategy.name,
                    location=location,
                    fallback=summary.degraded_to is not None,
                ))

        return summary

    def finish(self) -> None:
        """Hand control to the operator (e.g. attach to tmux) once launches are done."""
        self.strategy.finish()
