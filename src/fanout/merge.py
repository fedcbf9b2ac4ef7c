"""
Sequential, test-gated merging of workspace branches into the integration branch.

Per branch:

    pending -> missing | already merged | merging
    merging -> merged clean -> testing -> merged | test failure
            -> conflict (merge aborted, tree restored)

All five outcomes are terminal and the loop always processes every branch.
A test failure keeps the merge commit; reverting is left to the operator.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from fanout.errors import UncommittedChangesError
from fanout.git_utils import (
    GitCommandError,
    branch_exists,
    get_conflicted_files,
    get_current_branch,
    get_head_commit,
    get_uncommitted_changes,
    is_ancestor,
    list_branches,
    merge_in_progress,
    run_git,
)
from fanout import test_runner
from fanout.workspace import branch_name_for

logger = logging.getLogger(__name__)


class MergeOutcome(Enum):
    MERGED = "merged"
    ALREADY_MERGED = "alreadyMerged"
    CONFLICT = "conflict"
    TEST_FAILURE = "testFailure"
    BRANCH_MISSING = "branchMissing"


FAILURE_OUTCOMES = (MergeOutcome.CONFLICT, MergeOutcome.TEST_FAILURE)


@dataclass
class MergeResult:
    branch: str
    outcome: MergeOutcome
    detail: str = ""
    conflicted_files: List[str] = field(default_factory=list)
    merge_commit: Optional[str] = None
    remediation: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'branch': self.branch,
            'outcome': self.outcome.value,
            'detail': self.detail,
            'conflicted_files': self.conflicted_files,
            'merge_commit': self.merge_commit,
            'remediation': self.remediation,
        }


@dataclass
class MergeReport:
    """Outcome of one merge run."""
    integration_branch: str
    feature: Optional[str] = None
    test_command: Optional[str] = None
    results: List[MergeResult] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat(timespec='seconds'))

    @property
    def counts(self) -> Dict[str, int]:
        counts = {outcome.value: 0 for outcome in MergeOutcome}
        for result in self.results:
            counts[result.outcome.value] += 1
        return counts

    @property
    def success(self) -> bool:
        return not any(r.outcome in FAILURE_OUTCOMES for r in self.results)

    def by_outcome(self, outcome: MergeOutcome) -> List[MergeResult]:
        return [r for r in self.results if r.outcome == outcome]

    def to_dict(self) -> dict:
        return {
            'integration_branch': self.integration_branch,
            'feature': self.feature,
            'test_command': self.test_command,
            'created_at': self.created_at,
            'success': self.success,
            'counts': self.counts,
            'results': [r.to_dict() for r in self.results],
        }

    def write(self, reports_dir: Path) -> Path:
        """Persist the report as JSON and return its path."""
        reports_dir = Path(reports_dir)
        reports_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        name = self.feature or self.integration_branch.replace('/', '-')
        path = reports_dir / f"merge-{name}-{stamp}.json"
        path.write_text(json.dumps(self.to_dict(), indent=2) + "\n")
        return path


def agent_number(branch: str) -> int:
    """Agent number from a workspace branch name, 0 if it has none."""
    match = re.search(r'-agent-(\d+)$', branch)
    return int(match.group(1)) if match else 0


def discover_branches(repo_dir: Path, feature: str) -> List[str]:
    """Existing workspace branches for a feature, ordered by agent number."""
    branches = list_branches(repo_dir, f"feat/{feature}-agent-*")
    return sorted(branches, key=lambda b: (agent_number(b), b))


def expected_branches(feature: str, workers: int) -> List[str]:
    """Branch names for agents 1..workers, whether or not they exist."""
    return [branch_name_for(feature, n) for n in range(1, workers + 1)]


class MergeCoordinator:
    """Merges branches one at a time into the checked-out integration branch."""

    def __init__(
        self,
        repo_dir: Path,
        test_command: Optional[str] = None,
        run_tests: bool = True,
        test_timeout: Optional[float] = None,
    ):
        self.repo_dir = Path(repo_dir)
        self.test_command = test_command
        self.run_tests = run_tests
        self.test_timeout = test_timeout

    def ensure_clean(self) -> str:
        """
        Check the integration branch is checked out with a clean tree.

        Returns:
            Integration branch name

        Raises:
            UncommittedChangesError: detached HEAD or uncommitted changes
        """
        branch = get_current_branch(self.repo_dir)
        if branch is None:
            raise UncommittedChangesError(
                "HEAD is detached; check out the integration branch first",
                remediation="git checkout main",
            )

        changes = get_uncommitted_changes(self.repo_dir)
        if changes:
            raise UncommittedChangesError(
                f"Uncommitted changes on '{branch}'. Commit or stash before merging:\n"
                + "\n".join(f"  {c}" for c in changes[:10]),
                files=changes,
                remediation='git stash  (or: git add -A && git commit -m "...")',
            )
        return branch

    def _abort_merge(self) -> None:
        """Restore the pre-merge tree after a failed merge attempt."""
        if merge_in_progress(self.repo_dir):
            result = run_git(['merge', '--abort'], self.repo_dir, check=False)
            if result.returncode == 0:
                return
        run_git(['reset', '--merge'], self.repo_dir, check=False)

    def _conflict_remediation(self, branch: str, files: Sequence[str]) -> List[str]:
        steps = [f"git merge --no-ff {branch}"]
        if files:
            steps.append(f"# resolve conflicts in: {', '.join(files)}")
            steps.append(f"git add {' '.join(files)}")
        else:
            steps.append("# resolve the conflicts, then stage the files")
        steps.append("git commit --no-edit")
        if self.test_command:
            steps.append(self.test_command)
        return steps

    def _gate(self, branch: str, merge_commit: str) -> MergeResult:
        if not self.run_tests:
            return MergeResult(branch, MergeOutcome.MERGED, "tests skipped", merge_commit=merge_commit)
        if not self.test_command:
            return MergeResult(branch, MergeOutcome.MERGED, "tests not run: no test command found",
                               merge_commit=merge_commit)

        run = test_runner.run_tests(self.test_command, self.repo_dir, timeout=self.test_timeout)
        if run.passed:
            return MergeResult(branch, MergeOutcome.MERGED, f"tests passed: {run.command}",
                               merge_commit=merge_commit)

        reason = "timed out" if run.timed_out else f"exit {run.returncode}"
        return MergeResult(
            branch,
            MergeOutcome.TEST_FAILURE,
            f"tests failed ({reason}): {run.command}\n{run.output_tail}".rstrip(),
            merge_commit=merge_commit,
            remediation=[
                f"# merge commit {merge_commit[:10]} is kept; fix forward, or undo it with:",
                f"git revert -m 1 {merge_commit}",
                self.test_command,
            ],
        )

    def merge_branch(self, branch: str) -> MergeResult:
        """Run one branch through the state machine to a terminal outcome."""
        if not branch_exists(self.repo_dir, branch):
            return MergeResult(branch, MergeOutcome.BRANCH_MISSING, "branch not found",
                               remediation=[f"git branch --list '{branch}'"])

        if is_ancestor(self.repo_dir, branch):
            return MergeResult(branch, MergeOutcome.ALREADY_MERGED, "already contained in integration branch")

        message = f"Merge branch '{branch}'"
        try:
            run_git(['merge', '--no-ff', '--no-edit', '-m', message, branch], self.repo_dir)
        except GitCommandError as e:
            files = get_conflicted_files(self.repo_dir)
            self._abort_merge()
            detail = f"conflicts in {len(files)} file(s)" if files else f"merge failed: {e.stderr}"
            logger.info("Merge of %s aborted: %s", branch, detail)
            return MergeResult(
                branch,
                MergeOutcome.CONFLICT,
                detail,
                conflicted_files=files,
                remediation=self._conflict_remediation(branch, files),
            )

        return self._gate(branch, get_head_commit(self.repo_dir))

    def merge_all(self, branches: Sequence[str], feature: Optional[str] = None) -> MergeReport:
        """
        Merge every branch in order and collect a report.

        Raises:
            UncommittedChangesError: before any merge, when the tree is not clean
        """
        integration = self.ensure_clean()
        report = MergeReport(integration_branch=integration, feature=feature, test_command=self.test_command)

        for branch in branches:
            try:
                result = self.merge_branch(branch)
            except GitCommandError as e:
                self._abort_merge()
                result = MergeResult(
                    branch, MergeOutcome.CONFLICT, f"git error: {e.stderr}",
                    remediation=self._conflict_remediation(branch, []),
                )
            logger.info("%s -> %s", branch, result.outcome.value)
            report.results.append(result)

        return report
