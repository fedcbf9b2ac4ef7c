"""
Exception taxonomy for fanout.

Every error the operator can see derives from FanoutError and carries an
exit code plus an optional remediation hint:

- ValidationError: detected before any mutation (exit 1)
- EnvironmentLimitation: never fatal, the run degrades to printed instructions
- WorkspaceError: git/worktree failure after mutation, rolled back (exit 2)
- LaunchError: one workspace failed to launch, falls back to manual command
"""

from typing import Optional


EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_RUNTIME = 2


class FanoutError(Exception):
    """Base class for fanout errors."""

    exit_code = EXIT_RUNTIME

    def __init__(self, message: str, remediation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation


class ValidationError(FanoutError):
    """Problem detected before anything was mutated."""

    exit_code = EXIT_VALIDATION


class SpecNotFoundError(ValidationError):
    pass


class NoRequirementsError(ValidationError):
    pass


class InvalidWorkerCountError(ValidationError):
    pass


class StrategyUnavailableError(ValidationError):
    pass


class NotAGitRepositoryError(ValidationError):
    pass


class UncommittedChangesError(ValidationError):
    """Integration working tree is dirty (or HEAD is detached) before merging."""

    def __init__(self, message: str, files: Optional[list[str]] = None, remediation: Optional[str] = None):
        super().__init__(message, remediation=remediation)
        self.files = files or []


class EnvironmentLimitation(FanoutError):
    """Host cannot do something; callers degrade instead of failing."""


class WorktreesUnsupportedError(EnvironmentLimitation):
    pass


class AutomationPermissionError(EnvironmentLimitation):
    pass


class WorkspaceError(FanoutError):
    """Creating, validating or removing a workspace failed."""

    def __init__(self, message: str, index: Optional[int] = None, remediation: Optional[str] = None):
        super().__init__(message, remediation=remediation)
        self.index = index


class LaunchError(FanoutError):
    """A single workspace session could not be started."""
