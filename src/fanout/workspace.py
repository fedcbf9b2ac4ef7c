"""
Workspace management: one git worktree + branch per agent.

Workspaces are created from the integration branch's HEAD, named
deterministically from the feature and agent number, and removed only on
rollback or an explicit cleanup.

    manager = WorkspaceManager(repo_dir, "user-auth")
    with manager.provisioned(buckets) as workspaces:
        ...  # any exception here rolls back every created workspace
"""

import logging
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from fanout.config import get_worktree_root
from fanout.distribution import WorkBucket
from fanout.errors import WorkspaceError
from fanout.git_utils import (
    GitCommandError,
    add_worktree,
    delete_branch,
    get_current_branch,
    get_head_commit,
    get_uncommitted_changes,
    is_registered_worktree,
    prune_worktrees,
    remove_worktree,
)

logger = logging.getLogger(__name__)


def branch_name_for(feature: str, number: int) -> str:
    """Branch for a 1-based agent number: feat/{feature}-agent-{number}."""
    return f"feat/{feature}-agent-{number}"


@dataclass(frozen=True)
class Workspace:
    """Isolated working directory + branch pair assigned to one agent."""
    index: int
    branch_name: str
    path: Path
    bucket: WorkBucket

    @property
    def number(self) -> int:
        return self.index + 1

    @property
    def name(self) -> str:
        return self.path.name


class WorkspaceManager:
    """Creates and destroys the workspaces of one feature run."""

    def __init__(self, repo_dir: Path, feature: str, worktree_root: Optional[Path] = None):
        self.repo_dir = Path(repo_dir).resolve()
        self.feature = feature
        self.worktree_root = Path(worktree_root) if worktree_root else get_worktree_root(self.repo_dir)
        self.created: List[Workspace] = []

    def branch_name(self, index: int) -> str:
        return branch_name_for(self.feature, index + 1)

    def workspace_path(self, index: int) -> Path:
        return self.worktree_root / f"{self.feature}-agent-{index + 1}"

    def _clear_target(self, path: Path, branch: str) -> None:
        """Force-remove a stale worktree and branch left by an earlier run."""
        if is_registered_worktree(self.repo_dir, path):
            logger.info("Removing stale worktree %s", path)
            remove_worktree(self.repo_dir, path)
        if path.exists():
            shutil.rmtree(path)
        prune_worktrees(self.repo_dir)
        if delete_branch(self.repo_dir, branch):
            logger.info("Deleted stale branch %s", branch)

    def create(self, buckets: Sequence[WorkBucket]) -> List[Workspace]:
        """
        Create one workspace per bucket from the current integration HEAD.

        Each workspace is recorded as soon as it exists so rollback_all() can
        undo a partial run.

        Args:
            buckets: Buckets in index order

        Returns:
            The created workspaces, ordered by index

        Raises:
            WorkspaceError: git failed for some index (already-created
                workspaces are left for the caller to roll back)
        """
        try:
            base = get_head_commit(self.repo_dir)
        except GitCommandError as e:
            raise WorkspaceError(f"Cannot resolve integration HEAD: {e.stderr}") from e

        self.worktree_root.mkdir(parents=True, exist_ok=True)
        workspaces = []
        for bucket in buckets:
            index = bucket.index
            branch = self.branch_name(index)
            path = self.workspace_path(index)
            try:
                self._clear_target(path, branch)
                add_worktree(self.repo_dir, path, branch, base)
            except (GitCommandError, OSError) as e:
                detail = e.stderr if isinstance(e, GitCommandError) else str(e)
                self._discard_partial(path, branch)
                raise WorkspaceError(
                    f"Failed to create workspace {index + 1} ({branch}): {detail}",
                    index=index,
                ) from e

            workspace = Workspace(index=index, branch_name=branch, path=path.resolve(), bucket=bucket)
            self.created.append(workspace)
            workspaces.append(workspace)
            logger.info("Created workspace %s on %s", path, branch)

        return workspaces

    def _discard_partial(self, path: Path, branch: str) -> None:
        """Remove whatever a failed worktree add left behind for one index."""
        try:
            self.remove_target(path, branch)
        except (GitCommandError, OSError) as e:
            logger.error("Could not discard partial workspace %s: %s", path, e)

    def validate(self) -> None:
        """
        Check every created workspace is usable.

        Raises:
            WorkspaceError: missing directory, wrong branch, or dirty tree
        """
        for workspace in self.created:
            if not workspace.path.is_dir():
                raise WorkspaceError(f"Workspace missing: {workspace.path}", index=workspace.index)
            try:
                branch = get_current_branch(workspace.path)
                changes = get_uncommitted_changes(workspace.path)
            except GitCommandError as e:
                raise WorkspaceError(
                    f"Workspace {workspace.path} is not a usable worktree: {e.stderr}",
                    index=workspace.index,
                ) from e
            if branch != workspace.branch_name:
                raise WorkspaceError(
                    f"Workspace {workspace.path} is on '{branch}', expected '{workspace.branch_name}'",
                    index=workspace.index,
                )
            if changes:
                raise WorkspaceError(
                    f"Workspace {workspace.path} has uncommitted changes before launch",
                    index=workspace.index,
                )

    def remove(self, workspace: Workspace) -> None:
        """Remove a workspace's worktree and branch. Missing targets are fine."""
        self.remove_target(workspace.path, workspace.branch_name)
        if workspace in self.created:
            self.created.remove(workspace)

    def remove_target(self, path: Path, branch: str) -> bool:
        """
        Remove a worktree path and branch if they exist.

        Returns:
            True if anything was removed
        """
        removed = False
        try:
            if is_registered_worktree(self.repo_dir, path):
                remove_worktree(self.repo_dir, path)
                removed = True
        except GitCommandError as e:
            logger.warning("git worktree remove failed for %s: %s", path, e.stderr)
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
            removed = True
        prune_worktrees(self.repo_dir)
        if delete_branch(self.repo_dir, branch):
            removed = True
        return removed

    def rollback_all(self) -> List[str]:
        """
        Remove everything this manager created, newest first.

        Best-effort and idempotent: failures are logged and the remaining
        workspaces are still attempted.

        Returns:
            Messages for workspaces that could not be fully removed
        """
        failures = []
        for workspace in reversed(list(self.created)):
            try:
                self.remove(workspace)
            except (GitCommandError, OSError) as e:
                logger.error("Rollback of %s failed: %s", workspace.path, e)
                failures.append(f"{workspace.branch_name} at {workspace.path}: {e}")
        try:
            if self.worktree_root.is_dir() and not any(self.worktree_root.iterdir()):
                self.worktree_root.rmdir()
        except OSError as e:
            logger.debug("Could not remove %s: %s", self.worktree_root, e)
        return failures

    @contextmanager
    def provisioned(self, buckets: Sequence[WorkBucket]) -> Iterator[List[Workspace]]:
        """
        Create workspaces and roll all of them back if anything fails.

        Covers creation itself and every stage run inside the with-block.
        On success the workspaces are left in place.
        """
        try:
            yield self.create(buckets)
        except BaseException:
            failures = self.rollback_all()
            for failure in failures:
                logger.error("Rollback incomplete: %s", failure)
            raise

    def cleanup(self, workers: int) -> List[str]:
        """
        Remove the feature's workspaces for agent numbers 1..workers.

        Used for the operator-invoked cleanup after a run.

        Returns:
            Branch names whose worktree or branch was removed
        """
        removed = []
        for index in range(workers):
            branch = self.branch_name(index)
            try:
                if self.remove_target(self.workspace_path(index), branch):
                    removed.append(branch)
            except GitCommandError as e:
                raise WorkspaceError(
                    f"Failed to remove {branch}: {e.stderr}",
                    index=index,
                    remediation=f"git worktree remove --force {self.workspace_path(index)} && git branch -D {branch}",
                ) from e
        return removed

