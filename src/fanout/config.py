"""Lightweight configuration loader for fanout.

Reads optional settings from ~/.fanout/config.yaml with safe defaults.

Supported keys:
- default_workers: workers per dispatch when --workers is omitted (default: 3)
- agent_command: command the launch script execs in each workspace (default: 'claude')
- tmux_session_prefix: tmux session name prefix, session is '{prefix}-{feature}' (default: 'fanout')
- launch_delay: seconds between workspace launches (default: 1.0)
- ready_timeout: seconds to wait for the agent prompt in tmux (default: 15.0)
- worktree_root: parent directory for worktrees (default: sibling '<repo>-worktrees')
- spec_dirs: directories searched for the most recent spec (default: ['specs', 'docs/specs'])
- editor_processes: editor process names that enable GUI terminal automation
- test_command: test command override for the merge gate (default: detected)
- test_timeout: seconds before a gate test run counts as failed (default: 1800)
- reports_dir: where merge reports are persisted (default: ~/.fanout/reports)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional
import yaml

_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def _defaults() -> Dict[str, Any]:
    home = Path.home()
    return {
        'default_workers': 3,
        'agent_command': 'claude',
        'tmux_session_prefix': 'fanout',
        'launch_delay': 1.0,
        'ready_timeout': 15.0,
        'worktree_root': None,
        'spec_dirs': ['specs', 'docs/specs'],
        'editor_processes': ['Code', 'Cursor', 'code', 'cursor'],
        'test_command': None,
        'test_timeout': 1800,
        'reports_dir': str(home / '.fanout' / 'reports'),
    }


def get_config_path() -> Path:
    return Path.home() / '.fanout' / 'config.yaml'


def get_config() -> Dict[str, Any]:
    """Load config.yaml once and cache the result."""
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None:
        return _CONFIG_CACHE

    cfg_path = get_config_path()
    data: Dict[str, Any] = {}
    if cfg_path.exists():
        try:
            loaded = yaml.safe_load(cfg_path.read_text())
            if isinstance(loaded, dict):
                data = loaded
        except (yaml.YAMLError, OSError):
            # Malformed config falls back to defaults
            data = {}

    merged = {**_defaults(), **data}
    _CONFIG_CACHE = merged
    return merged


def get_default_workers() -> int:
    try:
        return int(get_config().get('default_workers', _defaults()['default_workers']))
    except (TypeError, ValueError):
        return _defaults()['default_workers']


def get_agent_command() -> str:
    return str(get_config().get('agent_command') or _defaults()['agent_command'])


def get_session_name(feature: str) -> str:
    """Deterministic tmux session name for a feature."""
    prefix = str(get_config().get('tmux_session_prefix') or _defaults()['tmux_session_prefix'])
    return f"{prefix}-{feature}"


def _float_setting(env_var: str, key: str) -> float:
    raw = os.getenv(env_var)
    if raw is None:
        raw = get_config().get(key, _defaults()[key])
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return float(_defaults()[key])


def get_launch_delay() -> float:
    """Seconds between launches. FANOUT_LAUNCH_DELAY overrides config."""
    return _float_setting('FANOUT_LAUNCH_DELAY', 'launch_delay')


def get_ready_timeout() -> float:
    """Seconds to wait for an agent prompt. FANOUT_READY_TIMEOUT overrides config."""
    return _float_setting('FANOUT_READY_TIMEOUT', 'ready_timeout')


def get_worktree_root(repo_dir: Path) -> Path:
    """
    Get the parent directory for workspace worktrees.

    Defaults to a sibling of the repository ('<repo>-worktrees') so worktrees
    never nest inside the integration working tree.
    """
    configured = get_config().get('worktree_root')
    if configured:
        return Path(configured).expanduser()
    repo_dir = Path(repo_dir).resolve()
    return repo_dir.parent / f"{repo_dir.name}-worktrees"


def get_spec_dirs() -> List[str]:
    dirs = get_config().get('spec_dirs', _defaults()['spec_dirs'])
    return [str(d) for d in (dirs or [])]


def get_editor_processes() -> List[str]:
    names = get_config().get('editor_processes', _defaults()['editor_processes'])
    return [str(n) for n in (names or [])]


def get_test_command(cli_command: Optional[str] = None) -> Optional[str]:
    """
    Get test command override with priority: CLI flag > config file.

    Returns None when neither is set; callers fall back to marker-file detection.
    """
    if cli_command:
        return cli_command
    configured = get_config().get('test_command')
    return str(configured) if configured else None


def get_test_timeout() -> Optional[float]:
    raw = get_config().get('test_timeout', _defaults()['test_timeout'])
    if raw in (None, 0, '0'):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return float(_defaults()['test_timeout'])


def get_reports_dir() -> Path:
    return Path(str(get_config().get('reports_dir') or _defaults()['reports_dir'])).expanduser()
