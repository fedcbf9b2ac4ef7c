"""
Tests for WorkspaceManager against real git repositories.
"""

from unittest.mock import patch

import pytest

from conftest import commit_file, git
from fanout import workspace as workspace_module
from fanout.distribution import distribute
from fanout.errors import EXIT_RUNTIME, WorkspaceError
from fanout.git_utils import branch_exists, get_current_branch, list_branches, list_worktrees
from fanout.workspace import WorkspaceManager, branch_name_for

REQUIREMENTS = [f"REQ-{n:03d}" for n in range(1, 6)]


@pytest.fixture
def manager(git_repo):
    return WorkspaceManager(git_repo, "auth")


def _failing_add_worktree(fail_at):
    """add_worktree that raises on the fail_at-th call (0-based)."""
    real = workspace_module.add_worktree
    calls = {'count': 0}

    def add(repo_dir, path, branch, base):
        if calls['count'] == fail_at:
            calls['count'] += 1
            raise workspace_module.GitCommandError(['worktree', 'add'], 128, "fatal: simulated failure")
        calls['count'] += 1
        return real(repo_dir, path, branch, base)

    return add


def test_branch_name_for():
    assert branch_name_for("auth", 1) == "feat/auth-agent-1"


class TestCreate:

    def test_creates_worktree_per_bucket(self, manager, git_repo):
        head = git(git_repo, 'rev-parse', 'HEAD')
        workspaces = manager.create(distribute(REQUIREMENTS, 3))

        assert [w.branch_name for w in workspaces] == [
            "feat/auth-agent-1", "feat/auth-agent-2", "feat/auth-agent-3",
        ]
        for ws in workspaces:
            assert ws.path.is_dir()
            assert ws.path.name == f"auth-agent-{ws.number}"
            assert ws.path.parent.name == "repo-worktrees"
            assert get_current_branch(ws.path) == ws.branch_name
            assert git(ws.path, 'rev-parse', 'HEAD') == head

        assert workspaces[0].bucket.requirements == ("REQ-001", "REQ-004")
        assert len(list_worktrees(git_repo)) == 4

    def test_configured_worktree_root(self, git_repo, tmp_path):
        root = tmp_path / "elsewhere"
        workspaces = WorkspaceManager(git_repo, "auth", worktree_root=root).create(distribute(REQUIREMENTS, 2))
        assert all(ws.path.parent == root.resolve() for ws in workspaces)

    def test_redispatch_replaces_previous_workspaces(self, git_repo):
        first = WorkspaceManager(git_repo, "auth").create(distribute(REQUIREMENTS, 2))
        (first[0].path / "stale.txt").write_text("left over")
        commit_file(git_repo, "later.txt", "new base")
        new_head = git(git_repo, 'rev-parse', 'HEAD')

        second = WorkspaceManager(git_repo, "auth").create(distribute(REQUIREMENTS, 2))

        assert [w.path for w in second] == [w.path for w in first]
        assert [w.branch_name for w in second] == [w.branch_name for w in first]
        assert not (second[0].path / "stale.txt").exists()
        assert git(second[0].path, 'rev-parse', 'HEAD') == new_head
        assert len(list_worktrees(git_repo)) == 3

    def test_stale_directory_without_worktree_is_replaced(self, manager):
        stale = manager.workspace_path(0)
        stale.mkdir(parents=True)
        (stale / "junk").write_text("x")

        workspaces = manager.create(distribute(REQUIREMENTS, 1))
        assert (workspaces[0].path / "README.md").exists()
        assert not (workspaces[0].path / "junk").exists()

    def test_failure_reports_index(self, manager):
        with patch('fanout.workspace.add_worktree', side_effect=_failing_add_worktree(1)):
            with pytest.raises(WorkspaceError) as exc_info:
                manager.create(distribute(REQUIREMENTS, 3))

        assert exc_info.value.index == 1
        assert exc_info.value.exit_code == EXIT_RUNTIME
        assert "feat/auth-agent-2" in exc_info.value.message
        assert [w.index for w in manager.created] == [0]


class TestProvisioned:

    @pytest.mark.parametrize("fail_at", [0, 1, 2])
    def test_failure_at_any_index_rolls_back_everything(self, manager, git_repo, fail_at):
        before_worktrees = list_worktrees(git_repo)

        with patch('fanout.workspace.add_worktree', side_effect=_failing_add_worktree(fail_at)):
            with pytest.raises(WorkspaceError):
                with manager.provisioned(distribute(REQUIREMENTS, 3)):
                    pytest.fail("body must not run when creation fails")

        assert list_branches(git_repo, 'feat/auth-agent-*') == []
        assert branch_exists(git_repo, 'main')
        assert list_worktrees(git_repo) == before_worktrees
        for index in range(3):
            assert not manager.workspace_path(index).exists()
        assert not manager.worktree_root.exists()

    def test_exception_in_body_rolls_back(self, manager, git_repo):
        with pytest.raises(RuntimeError, match="brief failed"):
            with manager.provisioned(distribute(REQUIREMENTS, 3)) as workspaces:
                assert len(workspaces) == 3
                raise RuntimeError("brief failed")

        assert list_branches(git_repo, 'feat/auth-agent-*') == []
        assert len(list_worktrees(git_repo)) == 1
        assert manager.created == []

    def test_keyboard_interrupt_rolls_back(self, manager, git_repo):
        with pytest.raises(KeyboardInterrupt):
            with manager.provisioned(distribute(REQUIREMENTS, 2)):
                raise KeyboardInterrupt

        assert list_branches(git_repo, 'feat/auth-agent-*') == []

    def test_success_leaves_workspaces(self, manager, git_repo):
        with manager.provisioned(distribute(REQUIREMENTS, 2)) as workspaces:
            pass

        assert all(ws.path.is_dir() for ws in workspaces)
        assert len(list_branches(git_repo, 'feat/auth-agent-*')) == 2

    def test_other_features_untouched_by_rollback(self, git_repo):
        WorkspaceManager(git_repo, "billing").create(distribute(REQUIREMENTS, 2))

        with pytest.raises(RuntimeError):
            with WorkspaceManager(git_repo, "auth").provisioned(distribute(REQUIREMENTS, 2)):
                raise RuntimeError("launch crashed")

        assert branch_exists(git_repo, "feat/billing-agent-1")
        assert branch_exists(git_repo, "feat/billing-agent-2")
        assert len(list_worktrees(git_repo)) == 3


class TestValidate:

    def test_clean_workspaces_pass(self, manager):
        manager.create(distribute(REQUIREMENTS, 2))
        manager.validate()

    def test_dirty_workspace_fails(self, manager):
        workspaces = manager.create(distribute(REQUIREMENTS, 2))
        (workspaces[1].path / "scratch.txt").write_text("x")

        with pytest.raises(WorkspaceError) as exc_info:
            manager.validate()
        assert exc_info.value.index == 1

    def test_wrong_branch_fails(self, manager):
        workspaces = manager.create(distribute(REQUIREMENTS, 1))
        git(workspaces[0].path, 'checkout', '-q', '-b', 'something-else')

        with pytest.raises(WorkspaceError, match="expected 'feat/auth-agent-1'"):
            manager.validate()


class TestCleanup:

    def test_removes_worktrees_and_branches(self, git_repo):
        WorkspaceManager(git_repo, "auth").create(distribute(REQUIREMENTS, 3))

        removed = WorkspaceManager(git_repo, "auth").cleanup(3)

        assert removed == ["feat/auth-agent-1", "feat/auth-agent-2", "feat/auth-agent-3"]
        assert list_branches(git_repo, 'feat/auth-agent-*') == []
        assert len(list_worktrees(git_repo)) == 1

    def test_cleanup_is_idempotent(self, git_repo):
        WorkspaceManager(git_repo, "auth").create(distribute(REQUIREMENTS, 2))
        WorkspaceManager(git_repo, "auth").cleanup(2)
        assert WorkspaceManager(git_repo, "auth").cleanup(2) == []

    def test_removes_branch_without_worktree(self, git_repo):
        git(git_repo, 'branch', 'feat/auth-agent-1')
        assert WorkspaceManager(git_repo, "auth").cleanup(1) == ["feat/auth-agent-1"]
