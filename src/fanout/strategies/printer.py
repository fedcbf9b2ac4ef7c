"""Printed-instructions strategy: the universal fallback."""

from typing import TYPE_CHECKING

import click

from fanout.strategies.base import LaunchStrategy

if TYPE_CHECKING:
    from fanout.workspace import Workspace


class PrintStrategy(LaunchStrategy):
    """Print the exact commands a human runs for each workspace. Never fails."""

    @property
    def name(self) -> str:
        return "print"

    def prepare(self, workspaces) -> None:
        click.echo("\n📋 Start each agent in its own terminal:")

    def launch(self, workspace: "Workspace") -> str:
        click.echo(f"\n   Agent {workspace.number} ({workspace.branch_name}):")
        click.echo(f"     {self.writer.manual_command(workspace)}")
        click.echo(f"     then tell it: {self.writer.begin_instruction(workspace)}")
        return "manual"
