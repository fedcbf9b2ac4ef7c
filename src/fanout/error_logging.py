"""Error telemetry for fanout, appended to ~/.fanout/errors.jsonl.

Entry schema:
{
    "timestamp": "2026-03-02T10:42:00Z",
    "command": "fanout merge auth-flow",
    "subcommand": "merge",
    "error_type": "MERGE_FAILED",
    "message": "2 branch(es) need attention",
    "context": {"feature": "auth-flow", "feat/auth-flow-agent-2": "conflict"},
    "duration_ms": 4500
}
"""

import json
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, NoReturn, Optional

import click

from fanout.errors import (
    EXIT_RUNTIME,
    EnvironmentLimitation,
    FanoutError,
    LaunchError,
    ValidationError,
    WorkspaceError,
)


class ErrorType(Enum):
    VALIDATION_FAILED = "VALIDATION_FAILED"
    ENVIRONMENT_LIMITED = "ENVIRONMENT_LIMITED"
    WORKSPACE_FAILED = "WORKSPACE_FAILED"
    LAUNCH_DEGRADED = "LAUNCH_DEGRADED"
    MERGE_FAILED = "MERGE_FAILED"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


# Checked in order; first isinstance match wins
_CLASSIFICATION = (
    (ValidationError, ErrorType.VALIDATION_FAILED),
    (EnvironmentLimitation, ErrorType.ENVIRONMENT_LIMITED),
    (WorkspaceError, ErrorType.WORKSPACE_FAILED),
    (LaunchError, ErrorType.LAUNCH_DEGRADED),
)


def classify(error: BaseException) -> ErrorType:
    for error_class, error_type in _CLASSIFICATION:
        if isinstance(error, error_class):
            return error_type
    return ErrorType.UNEXPECTED_ERROR


@dataclass
class ErrorEntry:
    command: str
    subcommand: str
    error_type: ErrorType
    message: str
    context: Optional[dict[str, Any]] = None
    duration_ms: Optional[int] = None
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    def to_dict(self) -> dict[str, Any]:
        """JSON form; unset optional fields are left out."""
        result: dict[str, Any] = {
            "timestamp": self.timestamp,
            "command": self.command,
            "subcommand": self.subcommand,
            "error_type": self.error_type.value,
            "message": self.message,
        }
        optional = {"context": self.context, "duration_ms": self.duration_ms}
        result.update({key: value for key, value in optional.items() if value is not None})
        return result


class ErrorLogger:
    """JSONL error log capped at max_entries (oldest dropped first)."""

    DEFAULT_MAX_ENTRIES = 5000

    def __init__(self, error_file: Optional[Path] = None, max_entries: int = DEFAULT_MAX_ENTRIES):
        self.error_file = Path(error_file) if error_file else Path.home() / ".fanout" / "errors.jsonl"
        self.max_entries = max_entries

    def log_error(
        self,
        command: str,
        subcommand: str,
        error_type: ErrorType,
        message: str,
        context: Optional[dict[str, Any]] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        entry = ErrorEntry(command, subcommand, error_type, message, context, duration_ms)

        self.error_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.error_file, "a") as f:
            f.write(json.dumps(entry.to_dict(), default=str) + "\n")
        self._truncate()

    def _truncate(self) -> None:
        with open(self.error_file) as f:
            tail = deque(f, maxlen=self.max_entries + 1)
        if len(tail) > self.max_entries:
            tail.popleft()
            self.error_file.write_text("".join(tail))

    def _entries(self) -> list[dict[str, Any]]:
        if not self.error_file.exists():
            return []
        entries = []
        for line in self.error_file.read_text().splitlines():
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return entries

    def get_recent_errors(self, limit: int = 10, error_type: Optional[str] = None) -> list[dict[str, Any]]:
        """Most recent entries first, optionally only one error type."""
        entries = self._entries()[::-1]
        if error_type:
            entries = [e for e in entries if e.get("error_type") == error_type]
        return entries[:limit]

    def get_error_stats(self) -> dict[str, Any]:
        """Totals by error type and by subcommand."""
        entries = self._entries()
        return {
            "total": len(entries),
            "by_type": dict(Counter(e.get("error_type", "UNKNOWN") for e in entries)),
            "by_command": dict(Counter(e.get("subcommand", "unknown") for e in entries)),
        }


_default_logger: Optional[ErrorLogger] = None


def _get_default_logger() -> ErrorLogger:
    global _default_logger
    if _default_logger is None:
        _default_logger = ErrorLogger()
    return _default_logger


def log_error(
    command: str,
    subcommand: str,
    error_type: ErrorType,
    message: str,
    context: Optional[dict[str, Any]] = None,
    duration_ms: Optional[int] = None,
) -> None:
    """Record an error in ~/.fanout/errors.jsonl."""
    _get_default_logger().log_error(command, subcommand, error_type, message, context, duration_ms)


def get_recent_errors(limit: int = 10) -> list[dict[str, Any]]:
    return _get_default_logger().get_recent_errors(limit=limit)


def reset_default_logger() -> None:
    """Forget the cached logger so the next call re-reads HOME (tests)."""
    global _default_logger
    _default_logger = None


def fail(subcommand: str, error: BaseException, context: Optional[dict[str, Any]] = None) -> NoReturn:
    """
    Report a command failure to the operator and exit.

    Prints the message and remediation to stderr, records the error, and
    exits with the code mapped from the exception (2 for anything that is
    not a FanoutError).
    """
    if isinstance(error, FanoutError):
        message, remediation, code = error.message, error.remediation, error.exit_code
    else:
        message, remediation, code = str(error), None, EXIT_RUNTIME

    click.echo(f"❌ {message}", err=True)
    if remediation:
        click.echo(f"   → {remediation}", err=True)

    log_error(f"fanout {subcommand}", subcommand, classify(error), message, context)
    raise SystemExit(code)
