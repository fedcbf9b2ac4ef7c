"""
CLI command for merging workspace branches back.
"""

import json
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from fanout import run
from fanout.config import get_reports_dir
from fanout.error_logging import ErrorType, fail, log_error
from fanout.errors import FanoutError, ValidationError
from fanout.git_utils import GitCommandError
from fanout.merge import FAILURE_OUTCOMES, MergeOutcome, MergeReport

OUTCOME_STYLES = {
    MergeOutcome.MERGED: "[green]merged[/green]",
    MergeOutcome.ALREADY_MERGED: "[blue]already merged[/blue]",
    MergeOutcome.CONFLICT: "[red]conflict[/red]",
    MergeOutcome.TEST_FAILURE: "[red]test failure[/red]",
    MergeOutcome.BRANCH_MISSING: "[yellow]missing[/yellow]",
}


def _render_report(console: Console, report: MergeReport, report_path: Optional[Path]) -> None:
    table = Table(title=f"Merge into {report.integration_branch}")
    table.add_column("Branch", style="cyan")
    table.add_column("Outcome")
    table.add_column("Details")

    for result in report.results:
        detail = result.detail.splitlines()[0] if result.detail else ""
        table.add_row(result.branch, OUTCOME_STYLES[result.outcome], detail)

    console.print(table)
    console.print()

    counts = report.counts
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Merged: [green]{counts[MergeOutcome.MERGED.value]}[/green]"
                  f"  Already merged: {counts[MergeOutcome.ALREADY_MERGED.value]}"
                  f"  Missing: {counts[MergeOutcome.BRANCH_MISSING.value]}")
    if not report.success:
        console.print(f"  Conflicts: [red]{counts[MergeOutcome.CONFLICT.value]}[/red]"
                      f"  Test failures: [red]{counts[MergeOutcome.TEST_FAILURE.value]}[/red]")

    for result in report.results:
        if result.outcome not in FAILURE_OUTCOMES:
            continue
        console.print()
        console.print(f"[bold]{escape(result.branch)}[/bold]: {escape(result.detail)}", highlight=False)
        if result.conflicted_files:
            console.print(f"  Conflicted files: {', '.join(result.conflicted_files)}", highlight=False)
        console.print("  To fix:")
        for step in result.remediation:
            console.print(f"    {step}", markup=False, highlight=False)

    if report_path:
        console.print()
        console.print(f"[dim]Report saved to {report_path}[/dim]")


def register_merge_commands(cli):
    """Register merge commands with the CLI."""

    @cli.command()
    @click.argument('feature')
    @click.option('--workers', '-n', type=int, default=None,
                  help='Merge agents 1..N (default: every existing branch of the feature)')
    @click.option('--branch', '-b', 'branches', multiple=True,
                  help='Merge these branches instead, in the given order (repeatable)')
    @click.option('--test-command', default=None,
                  help='Test command run after each merge (default: config, then detected)')
    @click.option('--skip-tests', is_flag=True, help='Merge without running tests')
    @click.option('--repo', type=click.Path(file_okay=False, path_type=Path), default=None,
                  help='Repository directory (default: current directory)')
    @click.option('--json', 'output_json', is_flag=True, help='Output the report as JSON')
    def merge(
        feature: str,
        workers: Optional[int],
        branches: Tuple[str, ...],
        test_command: Optional[str],
        skip_tests: bool,
        repo: Optional[Path],
        output_json: bool,
    ):
        """Merge a feature's agent branches into the current branch.

        Branches are merged one at a time with --no-ff. After each merge the
        test suite runs; a failing suite is reported but the merge commit is
        kept. A conflicting branch is aborted and skipped, leaving the tree as
        it was before that branch.

        \b
        Examples:
            fanout merge auth
            fanout merge auth -n 3 --test-command "make check"
            fanout merge auth -b feat/auth-agent-2 -b feat/auth-agent-1
        """
        if workers is not None and branches:
            fail('merge', ValidationError("Use either --workers or --branch, not both"))

        try:
            report = run.merge_feature(
                repo_dir=repo,
                feature=feature,
                workers=workers,
                branches=branches,
                test_command=test_command,
                skip_tests=skip_tests,
            )
        except (FanoutError, GitCommandError) as e:
            fail('merge', e, {'feature': feature})

        report_path = report.write(get_reports_dir())

        if output_json:
            click.echo(json.dumps({**report.to_dict(), 'report_path': str(report_path)}, indent=2))
        else:
            _render_report(Console(), report, report_path)

        if not report.success:
            failed = [r for r in report.results if r.outcome in FAILURE_OUTCOMES]
            log_error(
                command=f"fanout merge {feature}",
                subcommand="merge",
                error_type=ErrorType.MERGE_FAILED,
                message=f"{len(failed)} branch(es) need attention",
                context={'feature': feature, **{r.branch: r.outcome.value for r in failed}},
            )
            raise SystemExit(run.merge_exit_code(report))
