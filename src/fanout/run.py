"""
Dispatch and merge pipelines.

A RunContext carries the feature name, buckets, resolved launch plan and
created workspaces from one stage to the next:

    validate -> distribute -> probe -> provision -> brief -> launch

Everything before provisioning only reads; failures there are validation
errors (exit 1) and leave the repository untouched. Once provisioning
starts, any failure before launches complete rolls back every workspace.
"""

import logging
import os
import shlex
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

import click

from fanout.briefs import TaskBriefWriter
from fanout.config import (
    get_agent_command,
    get_default_workers,
    get_launch_delay,
    get_session_name,
    get_spec_dirs,
    get_test_command,
    get_test_timeout,
    get_worktree_root,
)
from fanout.distribution import WorkBucket, distribute, validate_worker_count
from fanout.environment import (
    LaunchPlan,
    choose_launch_strategy,
    is_multiplexer_installed,
    probe_worktree_support,
)
from fanout.errors import (
    EXIT_OK,
    EXIT_RUNTIME,
    NoRequirementsError,
    NotAGitRepositoryError,
    SpecNotFoundError,
    StrategyUnavailableError,
    ValidationError,
    WorkspaceError,
    WorktreesUnsupportedError,
)
from fanout.git_utils import get_repo_root, is_git_repo
from fanout.launcher import LaunchSummary, SessionLauncher
from fanout.logging import FanoutLogger
from fanout.merge import (
    FAILURE_OUTCOMES,
    MergeCoordinator,
    MergeReport,
    agent_number,
    discover_branches,
    expected_branches,
)
from fanout.requirements import (
    feature_from_spec,
    find_latest_spec,
    read_requirements,
    slugify_feature,
)
from fanout.strategies import build_strategy
from fanout.test_runner import detect_test_command
from fanout.tmux_utils import kill_session
from fanout.workspace import Workspace, WorkspaceManager, branch_name_for

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """State threaded through one dispatch run."""
    repo_dir: Path
    feature: str
    spec_path: Path
    requirements: List[str]
    buckets: List[WorkBucket]
    plan: LaunchPlan = LaunchPlan.PRINT_INSTRUCTIONS
    workspaces: List[Workspace] = field(default_factory=list)
    launch: Optional[LaunchSummary] = None

    @property
    def workers(self) -> int:
        return len(self.buckets)

    def to_dict(self) -> dict:
        return {
            'feature': self.feature,
            'spec': str(self.spec_path),
            'requirements': len(self.requirements),
            'workers': self.workers,
            'plan': self.plan.value,
            'branches': [w.branch_name for w in self.workspaces],
        }


def resolve_repo(repo_dir: Optional[Path] = None) -> Path:
    """Top-level directory of the repository containing repo_dir (default: cwd)."""
    start = Path(repo_dir) if repo_dir else Path.cwd()
    if not start.is_dir() or not is_git_repo(start):
        raise NotAGitRepositoryError(
            f"Not a git repository: {start}",
            remediation="Run from inside a git repository, or pass --repo",
        )
    return get_repo_root(start)


def resolve_spec(repo_dir: Path, spec: Optional[Path] = None) -> Path:
    """
    Locate the spec file to dispatch.

    An explicit path is tried as given, then relative to the repository.
    Without one, the newest markdown file in the configured spec directories
    is used.
    """
    if spec is not None:
        spec = Path(spec)
        for candidate in (spec, repo_dir / spec):
            if candidate.is_file():
                return candidate.resolve()
        raise SpecNotFoundError(
            f"Spec file not found: {spec}",
            remediation="Check the path, or omit it to use the newest spec in specs/",
        )

    latest = find_latest_spec(repo_dir, get_spec_dirs())
    if latest is None:
        dirs = ", ".join(f"{d}/" for d in get_spec_dirs())
        raise SpecNotFoundError(
            f"No spec given and no markdown files found in {dirs}",
            remediation="fanout dispatch path/to/spec.md",
        )
    return latest


def prepare_run(
    repo_dir: Optional[Path] = None,
    spec: Optional[Path] = None,
    workers: Optional[int] = None,
    feature: Optional[str] = None,
    force_multiplexer: bool = False,
) -> RunContext:
    """
    Validate inputs and plan a dispatch without touching the repository.

    Raises:
        ValidationError: any problem detected before mutation
    """
    repo = resolve_repo(repo_dir)
    if workers is None:
        workers = get_default_workers()
    validate_worker_count(workers)

    spec_path = resolve_spec(repo, spec)
    requirements = read_requirements(spec_path)
    if not requirements:
        raise NoRequirementsError(
            f"No requirement IDs (REQ-...) found in {spec_path}",
            remediation="Label each requirement in the spec, e.g. 'REQ-001: ...'",
        )

    if force_multiplexer and not is_multiplexer_installed():
        raise StrategyUnavailableError(
            "--tmux was given but tmux is not installed",
            remediation="Install tmux, or drop --tmux to use another launch strategy",
        )

    return RunContext(
        repo_dir=repo,
        feature=slugify_feature(feature) if feature else feature_from_spec(spec_path),
        spec_path=spec_path,
        requirements=requirements,
        buckets=distribute(requirements, workers),
        plan=choose_launch_strategy(force_multiplexer),
    )


def print_plan(ctx: RunContext) -> None:
    click.echo(f"📐 Feature '{ctx.feature}' from {ctx.spec_path}")
    click.echo(f"   {len(ctx.requirements)} requirement(s) across {ctx.workers} agent(s)")
    for bucket in ctx.buckets:
        click.echo(f"   agent {bucket.number}: {branch_name_for(ctx.feature, bucket.number)}"
                   f"  [{', '.join(bucket.requirements)}]")


def print_manual_setup(ctx: RunContext) -> None:
    """Instructions for when worktrees are unavailable: one clone per agent."""
    root = get_worktree_root(ctx.repo_dir)
    click.echo("\n📋 Set up each agent in its own clone instead:")
    for bucket in ctx.buckets:
        branch = branch_name_for(ctx.feature, bucket.number)
        path = root / f"{ctx.feature}-agent-{bucket.number}"
        click.echo(f"\n   Agent {bucket.number} ({branch}):")
        click.echo(f"     git clone {shlex.quote(str(ctx.repo_dir))} {shlex.quote(str(path))}")
        click.echo(f"     cd {shlex.quote(str(path))} && git switch -c {branch}")
        click.echo(f"     implement ONLY: {', '.join(bucket.requirements)}")


def print_launch_summary(ctx: RunContext) -> None:
    summary = ctx.launch
    if summary is None:
        return
    click.echo("")
    if summary.degraded_to:
        click.echo(f"⚠️  Launched via {summary.degraded_to} (wanted {summary.strategy}): "
                   f"{summary.degraded_reason}")
    for record in summary.records:
        status = "manual" if record.fallback else record.location
        click.echo(f"   agent {record.workspace.number}: {record.workspace.path} ({status})")
    if summary.partially_degraded:
        click.echo(f"⚠️  {len([r for r in summary.records if r.error])} agent(s) need a manual start "
                   f"(see above)", err=True)
    click.echo(f"\n✅ Dispatched {ctx.workers} agent(s) for '{ctx.feature}'. "
               f"Merge with: fanout merge {ctx.feature} --workers {ctx.workers}")


def _provision_and_launch(
    ctx: RunContext,
    manager: WorkspaceManager,
    writer: TaskBriefWriter,
    no_attach: bool,
) -> SessionLauncher:
    """Create workspaces, write briefs and launch; any failure rolls everything back."""
    with manager.provisioned(ctx.buckets) as workspaces:
        manager.validate()
        for workspace in workspaces:
            try:
                writer.write(workspace)
            except OSError as e:
                raise WorkspaceError(
                    f"Failed to write the task brief for agent {workspace.number}: {e}",
                    index=workspace.index,
                ) from e
        ctx.workspaces = workspaces

        strategy = build_strategy(ctx.plan, writer, ctx.feature, ctx.repo_dir, no_attach=no_attach)
        launcher = SessionLauncher(strategy, delay=get_launch_delay())
        try:
            ctx.launch = launcher.launch_all(workspaces)
        except BaseException:
            strategy.abort()
            raise
    return launcher


def dispatch(ctx: RunContext, no_attach: bool = False) -> int:
    """
    Provision workspaces, write briefs and launch a session per workspace.

    Returns:
        Exit code: 0 on success or when only environment limitations were hit,
        2 when some workspaces could not be launched

    Raises:
        WorkspaceError: after rolling back every created workspace
    """
    run_logger = FanoutLogger()
    start = time.time()
    run_logger.log_command_start("dispatch", ctx.to_dict())
    print_plan(ctx)

    if not probe_worktree_support(ctx.repo_dir):
        limitation = WorktreesUnsupportedError("git worktrees are not supported here")
        run_logger.log_warning("dispatch", limitation.message, ctx.to_dict())
        click.echo(f"\n⚠️  {limitation.message}; no workspaces were created.", err=True)
        print_manual_setup(ctx)
        return EXIT_OK

    manager = WorkspaceManager(ctx.repo_dir, ctx.feature)
    writer = TaskBriefWriter(ctx.spec_path, ctx.requirements, agent_command=get_agent_command())

    try:
        launcher = _provision_and_launch(ctx, manager, writer, no_attach)
    except WorkspaceError as e:
        run_logger.log_error("dispatch", f"Dispatch rolled back: {ctx.feature}", {
            **ctx.to_dict(),
            'index': e.index,
            'reason': e.message,
        })
        raise

    duration_ms = int((time.time() - start) * 1000)
    data = {**ctx.to_dict(), **ctx.launch.to_dict()}
    if ctx.launch.partially_degraded:
        run_logger.log_warning("dispatch", f"Launch partially degraded: {ctx.feature}", data)
    run_logger.log_command_complete("dispatch", duration_ms, data)

    print_launch_summary(ctx)
    launcher.finish()
    return EXIT_RUNTIME if ctx.launch.partially_degraded else EXIT_OK


def resolve_branches(
    repo_dir: Path,
    feature: str,
    workers: Optional[int] = None,
    branches: Sequence[str] = (),
) -> List[str]:
    """
    Branches to merge: explicit names, else agents 1..workers, else every
    existing workspace branch of the feature.
    """
    if branches:
        return list(branches)
    if workers is not None:
        validate_worker_count(workers)
        return expected_branches(feature, workers)

    found = discover_branches(repo_dir, feature)
    if not found:
        raise ValidationError(
            f"No workspace branches found for feature '{feature}'",
            remediation=f"git branch --list 'feat/{feature}-agent-*'",
        )
    return found


def merge_feature(
    repo_dir: Optional[Path],
    feature: str,
    workers: Optional[int] = None,
    branches: Sequence[str] = (),
    test_command: Optional[str] = None,
    skip_tests: bool = False,
) -> MergeReport:
    """
    Merge a feature's workspace branches into the checked-out branch.

    Raises:
        ValidationError: not a repository, no branches, or a dirty tree
    """
    run_logger = FanoutLogger()
    start = time.time()
    repo = resolve_repo(repo_dir)
    feature = slugify_feature(feature)
    targets = resolve_branches(repo, feature, workers, branches)

    command = None if skip_tests else (get_test_command(test_command) or detect_test_command(repo))
    run_logger.log_command_start("merge", {
        'feature': feature,
        'branches': targets,
        'test_command': command,
    })

    coordinator = MergeCoordinator(
        repo,
        test_command=command,
        run_tests=not skip_tests,
        test_timeout=get_test_timeout(),
    )
    report = coordinator.merge_all(targets, feature=feature)

    duration_ms = int((time.time() - start) * 1000)
    data = {'feature': feature, 'counts': report.counts}
    if not report.success:
        run_logger.log_error("merge", f"Merge incomplete: {feature}", {
            **data,
            'reason': ", ".join(f"{r.branch} {r.outcome.value}" for r in report.results
                                if r.outcome in FAILURE_OUTCOMES),
        })
    run_logger.log_command_complete("merge", duration_ms, data)
    return report


def merge_exit_code(report: MergeReport) -> int:
    return EXIT_OK if report.success else EXIT_RUNTIME


def cleanup_feature(repo_dir: Optional[Path], feature: str, workers: Optional[int] = None) -> List[str]:
    """Remove a feature's worktrees and branches. Returns what was removed."""
    repo = resolve_repo(repo_dir)
    feature = slugify_feature(feature)
    if workers is None:
        found = discover_branches(repo, feature)
        workers = max((agent_number(b) for b in found), default=0)
    else:
        validate_worker_count(workers)

    removed = WorkspaceManager(repo, feature).cleanup(workers)
    if kill_session(get_session_name(feature)):
        logger.info("Killed tmux session %s", get_session_name(feature))
    FanoutLogger().log_event("cleanup", f"Removed {len(removed)} workspace(s): {feature}", {
        'feature': feature,
        'removed': removed,
    })
    return removed


def environment_snapshot() -> dict:
    """Environment variables that change launch behavior."""
    keys = ("FANOUT_LAUNCH_DELAY", "FANOUT_READY_TIMEOUT", "FANOUT_SKIP_READY", "TMUX", "DISPLAY")
    return {key: os.environ[key] for key in keys if key in os.environ}
