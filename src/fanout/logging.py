"""Run log for fanout commands.

One line per event, readable on the left and parseable on the right:
    YYYY-MM-DD HH:MM:SS LEVEL [command] message | {"json": "data"}

Files roll over monthly (fanout-YYYY-MM.log) under ~/.fanout/logs/.
"""
import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")

LINE_PATTERN = re.compile(
    r'^(?P<timestamp>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) '
    r'(?P<level>[A-Z]+)\s+'
    r'\[(?P<command>[^\]]*)\] '
    r'(?P<message>.*?) \| '
    r'(?P<data>\{.*\})$'
)


def parse_line(line: str) -> Optional[dict]:
    """Parse one log line into a dict, or None if it is not a log line."""
    match = LINE_PATTERN.match(line.rstrip('\n'))
    if not match:
        return None
    try:
        data = json.loads(match['data'])
    except json.JSONDecodeError:
        return None
    return {
        'timestamp': match['timestamp'],
        'level': match['level'],
        'command': match['command'],
        'message': match['message'],
        'data': data,
    }


class FanoutLogger:
    """Append-only command log. The directory is created on first write."""

    def __init__(self, log_dir: Optional[Path] = None):
        self.log_dir = Path(log_dir) if log_dir is not None else Path.home() / ".fanout" / "logs"

    def current_file(self) -> Path:
        return self.log_dir / f"fanout-{datetime.now():%Y-%m}.log"

    def log_event(self, command: str, message: str, data: Dict[str, Any], level: str = "INFO") -> None:
        """Append one event.

        Args:
            command: Command name (dispatch, merge, cleanup, ...)
            message: Human-readable message
            data: Structured payload, serialized as JSON
            level: One of LEVELS
        """
        payload = json.dumps(data, ensure_ascii=False, default=str)
        line = f"{datetime.now():%Y-%m-%d %H:%M:%S} {level:<5} [{command}] {message} | {payload}\n"

        self.log_dir.mkdir(parents=True, exist_ok=True)
        with open(self.current_file(), "a") as f:
            f.write(line)

    def log_command_start(self, command: str, data: Dict[str, Any]) -> None:
        feature = data.get("feature")
        self.log_event(command, f"Starting {command}: {feature}" if feature else f"Starting {command}", data)

    def log_command_complete(self, command: str, duration_ms: int, data: Dict[str, Any]) -> None:
        feature = data.get("feature")
        subject = f": {feature}" if feature else ""
        self.log_event(
            command,
            f"Command complete{subject} ({duration_ms}ms)",
            {'duration_ms': duration_ms, **data},
        )

    def log_warning(self, command: str, message: str, data: Dict[str, Any]) -> None:
        self.log_event(command, message, data, level="WARN")

    def log_error(self, command: str, message: str, data: Dict[str, Any]) -> None:
        """Log an error; a 'reason' key in data is appended to the message."""
        if data.get("reason"):
            message = f"{message}: {data['reason']}"
        self.log_event(command, message, data, level="ERROR")

    def _newest_first(self) -> Iterator[dict]:
        for log_file in sorted(self.log_dir.glob("fanout-*.log"), reverse=True):
            for line in reversed(log_file.read_text().splitlines()):
                entry = parse_line(line)
                if entry is not None:
                    yield entry

    def read_logs(
        self,
        limit: int = 50,
        command_filter: Optional[str] = None,
        level_filter: Optional[str] = None
    ) -> list[dict]:
        """Parsed entries, newest first.

        Args:
            limit: Maximum number of entries to return
            command_filter: Only return entries for this command
            level_filter: Only return entries with this log level

        Returns:
            List of dicts with timestamp, level, command, message, data
        """
        if not self.log_dir.exists():
            return []

        entries: list[dict] = []
        for entry in self._newest_first():
            if command_filter and entry['command'] != command_filter:
                continue
            if level_filter and entry['level'] != level_filter:
                continue
            entries.append(entry)
            if len(entries) >= limit:
                break
        return entries
