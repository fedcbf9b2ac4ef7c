"""fanout: dispatch parallel coding-agent sessions into isolated worktrees and merge them back."""

__version__ = "0.1.0"
