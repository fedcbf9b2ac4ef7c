import json
from pathlib import Path

import click

from fanout import __version__, run
from fanout.environment import probe_environment
from fanout.error_logging import fail
from fanout.errors import FanoutError
from fanout.git_utils import GitCommandError

# Import command modules for registration
from fanout.merge_commands import register_merge_commands
from fanout.log_commands import register_log_commands


@click.group()
@click.version_option(version=__version__, prog_name="fanout")
def cli():
    """Run coding agents in parallel worktrees and merge their work back."""
    pass


register_merge_commands(cli)
register_log_commands(cli)


@cli.command()
@click.argument('spec', required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option('--workers', '-n', type=int, default=None,
              help='Number of agents, 1-8 (default: config default_workers, 3)')
@click.option('--feature', default=None, help='Feature name for branches (default: from spec filename)')
@click.option('--tmux', 'force_tmux', is_flag=True, help='Launch in tmux even when an editor is running')
@click.option('--no-attach', is_flag=True, help="Don't attach to the tmux session after launching")
@click.option('--repo', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Repository directory (default: current directory)')
def dispatch(spec, workers, feature, force_tmux, no_attach, repo):
    """Split a spec's requirements across parallel agents.

    Creates one git worktree and branch per agent from the current HEAD,
    writes each a task brief with its requirement IDs, and starts an agent
    session in each.

    \b
    Examples:
        fanout dispatch specs/auth.md
        fanout dispatch specs/auth.md -n 4 --feature auth
        fanout dispatch --tmux --no-attach
    """
    try:
        ctx = run.prepare_run(
            repo_dir=repo,
            spec=spec,
            workers=workers,
            feature=feature,
            force_multiplexer=force_tmux,
        )
        exit_code = run.dispatch(ctx, no_attach=no_attach)
    except (FanoutError, GitCommandError) as e:
        fail('dispatch', e, {'spec': str(spec) if spec else None, 'workers': workers})

    if exit_code:
        raise SystemExit(exit_code)


@cli.command()
@click.argument('feature')
@click.option('--workers', '-n', type=int, default=None,
              help='Remove agents 1..N (default: every existing branch of the feature)')
@click.option('--yes', '-y', is_flag=True, help='Skip the confirmation prompt')
@click.option('--repo', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Repository directory (default: current directory)')
def cleanup(feature, workers, yes, repo):
    """Remove a feature's worktrees, branches and tmux session.

    Unmerged commits on the removed branches are lost.
    """
    if not yes:
        click.confirm(
            f"Remove all worktrees and branches for '{feature}'? Unmerged work on them is lost.",
            abort=True,
        )

    try:
        removed = run.cleanup_feature(repo, feature, workers)
    except (FanoutError, GitCommandError) as e:
        fail('cleanup', e, {'feature': feature})

    if not removed:
        click.echo(f"Nothing to clean up for '{feature}'.")
        return
    for branch in removed:
        click.echo(f"   removed {branch}")
    click.echo(f"✅ Removed {len(removed)} workspace(s) for '{feature}'")


@cli.command()
@click.option('--tmux', 'force_tmux', is_flag=True, help='Resolve the strategy as if --tmux were given')
@click.option('--repo', type=click.Path(file_okay=False, path_type=Path), default=None,
              help='Repository directory (default: current directory)')
@click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
def probe(force_tmux, repo, output_json):
    """Show what this machine supports and which launch strategy dispatch would use."""
    try:
        repo_dir = run.resolve_repo(repo)
    except FanoutError as e:
        fail('probe', e)

    report = probe_environment(repo_dir, force_multiplexer=force_tmux)
    overrides = run.environment_snapshot()

    if output_json:
        click.echo(json.dumps({**report.to_dict(), 'overrides': overrides}, indent=2))
        return

    def yes_no(value):
        return "yes" if value else "no"

    click.echo(f"Platform:        {report.platform.value}")
    click.echo(f"Worktrees:       {yes_no(report.worktrees)}")
    click.echo(f"tmux:            {yes_no(report.multiplexer)}")
    click.echo(f"Editor:          {report.editor or '-'}")
    click.echo(f"Automation tool: {report.automation_tool or '-'}")
    click.echo(f"Launch strategy: {report.plan.value}")
    for key, value in overrides.items():
        click.echo(f"  {key}={value}")


if __name__ == '__main__':
    cli()
