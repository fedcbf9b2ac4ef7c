"""Commands for viewing the command log and recorded errors."""

import json
from typing import Optional

import click

from fanout.error_logging import ErrorLogger
from fanout.logging import LEVELS, FanoutLogger


def register_log_commands(cli):
    """Register log and error commands with the CLI."""

    @cli.command()
    @click.option('--limit', default=20, type=int, help='Number of entries to show (default: 20)')
    @click.option('--command', 'command_filter', default=None,
                  type=click.Choice(['dispatch', 'merge', 'cleanup']),
                  help='Only show entries for one command')
    @click.option('--level', 'level_filter', default=None, type=click.Choice(LEVELS),
                  help='Only show entries at one level')
    @click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
    def logs(limit: int, command_filter: Optional[str], level_filter: Optional[str], output_json: bool):
        """Show recent fanout activity from ~/.fanout/logs, newest first."""
        entries = FanoutLogger().read_logs(
            limit=limit,
            command_filter=command_filter,
            level_filter=level_filter,
        )

        if output_json:
            click.echo(json.dumps(entries, indent=2))
            return
        if not entries:
            click.echo("No log entries.")
            return
        for entry in entries:
            click.echo(f"{entry['timestamp']} {entry['level']:5} [{entry['command']}] {entry['message']}")

    @cli.command()
    @click.option('--limit', default=10, type=int, help='Number of recent errors to show (default: 10)')
    @click.option('--type', 'error_type', default=None, help='Filter by error type (e.g., MERGE_FAILED)')
    @click.option('--stats', is_flag=True, help='Show totals by error type and command instead')
    @click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
    def errors(limit: int, error_type: Optional[str], stats: bool, output_json: bool):
        """Show recent errors from ~/.fanout/errors.jsonl."""
        error_logger = ErrorLogger()
        if stats:
            totals = error_logger.get_error_stats()
            if output_json:
                click.echo(json.dumps(totals, indent=2))
                return
            click.echo(f"Total errors: {totals['total']}")
            for heading, key in (("By type", "by_type"), ("By command", "by_command")):
                if totals[key]:
                    click.echo(f"{heading}:")
                for name, count in sorted(totals[key].items(), key=lambda item: -item[1]):
                    click.echo(f"  {name:20} {count}")
            return

        recent = error_logger.get_recent_errors(limit=limit, error_type=error_type)

        if output_json:
            click.echo(json.dumps(recent, indent=2))
            return
        if not recent:
            click.echo("No errors recorded.")
            return

        click.echo("Recent errors:")
        for error in recent:
            timestamp = error.get('timestamp', '')[:19].replace('T', ' ')
            click.echo(f"  {timestamp}  {error.get('error_type', ''):20} {error.get('command', '')}")
            click.echo(f"      {error.get('message', '')}")
