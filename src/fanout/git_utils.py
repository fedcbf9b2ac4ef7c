"""
Git utilities for workspaces and the merge loop.

Every git invocation goes through run_git() so failures surface as
GitCommandError; callers convert those into the fanout error taxonomy at
their own operation boundary.
"""

import subprocess
from pathlib import Path
from typing import List, Optional


class GitCommandError(Exception):
    """A git command exited non-zero."""

    def __init__(self, args: List[str], returncode: int, stderr: str):
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr.strip()
        super().__init__(f"git {' '.join(args)} failed ({returncode}): {self.stderr}")


def run_git(args: List[str], cwd: Path, check: bool = True) -> subprocess.CompletedProcess:
    """
    Run a git command and capture its output.

    Args:
        args: Arguments after 'git'
        cwd: Directory to run in
        check: Raise GitCommandError on non-zero exit

    Returns:
        CompletedProcess with text stdout/stderr
    """
    try:
        result = subprocess.run(
            ['git', *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as e:
        raise GitCommandError(args, 127, f"git executable not found: {e}")

    if check and result.returncode != 0:
        raise GitCommandError(args, result.returncode, result.stderr or result.stdout)
    return result


def is_git_repo(directory: Path) -> bool:
    """Check if directory is inside a git work tree."""
    try:
        result = run_git(['rev-parse', '--is-inside-work-tree'], directory, check=False)
    except (GitCommandError, OSError):
        return False
    return result.returncode == 0 and result.stdout.strip() == 'true'


def get_repo_root(directory: Path) -> Path:
    result = run_git(['rev-parse', '--show-toplevel'], directory)
    return Path(result.stdout.strip())


def get_current_branch(directory: Path) -> Optional[str]:
    """
    Get the checked-out branch name.

    Returns:
        Branch name, or None when HEAD is detached
    """
    result = run_git(['branch', '--show-current'], directory)
    branch = result.stdout.strip()
    return branch or None


def get_head_commit(directory: Path) -> str:
    return run_git(['rev-parse', 'HEAD'], directory).stdout.strip()


def get_uncommitted_changes(directory: Path) -> List[str]:
    """
    List uncommitted changes as porcelain status lines.

    Untracked files count: a merge could overwrite them.
    """
    result = run_git(['status', '--porcelain'], directory)
    return [line for line in result.stdout.splitlines() if line.strip()]


def branch_exists(directory: Path, branch: str) -> bool:
    result = run_git(['show-ref', '--verify', '--quiet', f'refs/heads/{branch}'], directory, check=False)
    return result.returncode == 0


def is_ancestor(directory: Path, branch: str, target: str = 'HEAD') -> bool:
    """True if every commit of branch is already reachable from target."""
    result = run_git(['merge-base', '--is-ancestor', branch, target], directory, check=False)
    return result.returncode == 0


def delete_branch(directory: Path, branch: str) -> bool:
    """
    Force-delete a local branch.

    Returns:
        True if a branch was deleted, False if it did not exist
    """
    if not branch_exists(directory, branch):
        return False
    run_git(['branch', '-D', branch], directory)
    return True


def list_branches(directory: Path, pattern: str) -> List[str]:
    """List local branch names matching a refs/heads glob (e.g. 'feat/x-agent-*')."""
    result = run_git(
        ['for-each-ref', '--format=%(refname:short)', f'refs/heads/{pattern}'],
        directory,
    )
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def merge_in_progress(directory: Path) -> bool:
    result = run_git(['rev-parse', '-q', '--verify', 'MERGE_HEAD'], directory, check=False)
    return result.returncode == 0


def get_conflicted_files(directory: Path) -> List[str]:
    result = run_git(['diff', '--name-only', '--diff-filter=U'], directory, check=False)
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def get_common_dir(directory: Path) -> Path:
    """Shared .git directory (the same for the main tree and all worktrees)."""
    result = run_git(['rev-parse', '--git-common-dir'], directory)
    common = Path(result.stdout.strip())
    if not common.is_absolute():
        common = (Path(directory) / common).resolve()
    return common


def ensure_excluded(directory: Path, pattern: str) -> bool:
    """
    Add a pattern to the repository's shared info/exclude file.

    Returns:
        True if the pattern was added, False if already present
    """
    exclude_file = get_common_dir(directory) / 'info' / 'exclude'
    exclude_file.parent.mkdir(parents=True, exist_ok=True)
    existing = exclude_file.read_text() if exclude_file.exists() else ''
    if pattern in existing.splitlines():
        return False

    prefix = '' if not existing or existing.endswith('\n') else '\n'
    with open(exclude_file, 'a') as f:
        f.write(f"{prefix}{pattern}\n")
    return True


def list_worktrees(directory: Path) -> List[Path]:
    """Paths of all registered worktrees, main tree included."""
    result = run_git(['worktree', 'list', '--porcelain'], directory)
    paths = []
    for line in result.stdout.splitlines():
        if line.startswith('worktree '):
            paths.append(Path(line.split(' ', 1)[1].strip()))
    return paths


def is_registered_worktree(directory: Path, path: Path) -> bool:
    target = Path(path).resolve()
    return any(p.resolve() == target for p in list_worktrees(directory))


def add_worktree(directory: Path, path: Path, branch: str, base: str) -> None:
    """Create a worktree at path on a new branch starting at base."""
    run_git(['worktree', 'add', '-b', branch, str(path), base], directory)


def remove_worktree(directory: Path, path: Path) -> None:
    run_git(['worktree', 'remove', '--force', str(path)], directory)


def prune_worktrees(directory: Path) -> None:
    run_git(['worktree', 'prune'], directory, check=False)
