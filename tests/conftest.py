"""
Shared pytest fixtures and helpers for fanout tests.

Git helpers (git, commit_file, make_branch) are plain functions so test
modules can import them with `from conftest import ...`.
"""

import subprocess
from pathlib import Path
from unittest.mock import Mock

import pytest
from click.testing import CliRunner

from fanout import config
from fanout.error_logging import reset_default_logger


# =============================================================================
# GIT HELPERS
# =============================================================================

def git(repo: Path, *args: str) -> str:
    """Run git in repo and return stdout; fail the test on error."""
    result = subprocess.run(
        ['git', *args],
        cwd=repo,
        check=True,
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str = None) -> str:
    """Write a file, commit it, and return the new HEAD sha."""
    path = repo / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    git(repo, 'add', name)
    git(repo, 'commit', '-m', message or f"Update {name}")
    return git(repo, 'rev-parse', 'HEAD')


def make_branch(repo: Path, branch: str, files: dict, base: str = 'main') -> str:
    """Create a branch from base with one commit touching files, then return to base."""
    git(repo, 'checkout', '-q', '-b', branch, base)
    for name, content in files.items():
        path = repo / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        git(repo, 'add', name)
    git(repo, 'commit', '-q', '-m', f"Work on {branch}")
    sha = git(repo, 'rev-parse', 'HEAD')
    git(repo, 'checkout', '-q', base)
    return sha


# =============================================================================
# SUBPROCESS MOCK HELPERS
# =============================================================================

def create_subprocess_mock(tmux_output="2:@12\n", failing=()):
    """
    Create a mock for subprocess.run that answers tmux commands.

    Args:
        tmux_output: Output for tmux commands (new-window prints 'index:id')
        failing: tmux subcommands (e.g. 'new-window') that should exit 1

    Returns:
        A side_effect function that returns mock results based on command.
    """
    def side_effect(args, **kwargs):
        cmd = args if isinstance(args, list) else [args]

        if len(cmd) >= 2 and cmd[0] == 'tmux' and cmd[1] in failing:
            return Mock(returncode=1, stdout="", stderr=f"{cmd[1]} failed")

        # Agent prompt content for ready polling
        if len(cmd) >= 2 and cmd[:2] == ['tmux', 'capture-pane']:
            return Mock(
                returncode=0,
                stdout="─────────────────────────────────────────\n> Try 'refactor ui.py'\n",
                stderr="",
            )

        if cmd and cmd[0] == 'tmux':
            return Mock(returncode=0, stdout=tmux_output, stderr="")

        return Mock(returncode=0, stdout="", stderr="")

    return side_effect


# =============================================================================
# ISOLATION
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """
    Point HOME at a temporary directory so config, logs, errors and reports
    never touch the real ~/.fanout, and make launches fast and quiet.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("FANOUT_LAUNCH_DELAY", "0")
    monkeypatch.setenv("FANOUT_SKIP_READY", "1")
    monkeypatch.delenv("TMUX", raising=False)
    monkeypatch.delenv("FANOUT_READY_TIMEOUT", raising=False)
    config._CONFIG_CACHE = None
    reset_default_logger()
    yield home
    config._CONFIG_CACHE = None
    reset_default_logger()


# =============================================================================
# CLI FIXTURES
# =============================================================================

@pytest.fixture
def cli_runner():
    """Click test runner; stderr is included in result.output."""
    return CliRunner()


# =============================================================================
# REPOSITORY FIXTURES
# =============================================================================

@pytest.fixture
def git_repo(tmp_path):
    """
    Create a git repository on branch 'main' with an initial commit.

    Worktrees created from it land in the sibling 'repo-worktrees' directory,
    also inside tmp_path.
    """
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, 'init', '-q')
    git(repo, 'symbolic-ref', 'HEAD', 'refs/heads/main')
    git(repo, 'config', 'user.email', 'test@example.com')
    git(repo, 'config', 'user.name', 'Test User')
    git(repo, 'config', 'commit.gpgsign', 'false')
    commit_file(repo, "README.md", "# Test Project\n", "Initial commit")
    return repo


SAMPLE_SPEC = """# User authentication

REQ-001: Users can sign up with email and password.
REQ-002: Users can log in.
REQ-003: Users can log out.
REQ-004: Passwords are hashed.
REQ-005: Sessions expire after 24 hours.
"""


@pytest.fixture
def spec_repo(git_repo):
    """git_repo with a committed specs/auth.md holding REQ-001..REQ-005."""
    commit_file(git_repo, "specs/auth.md", SAMPLE_SPEC, "Add auth spec")
    return git_repo
