"""Tests for config.py - Configuration loader."""

from pathlib import Path

import pytest
import yaml

from fanout import config


@pytest.fixture
def write_config(isolated_home):
    """Write ~/.fanout/config.yaml in the isolated home."""
    def _write(data):
        cfg_path = isolated_home / ".fanout" / "config.yaml"
        cfg_path.parent.mkdir(parents=True, exist_ok=True)
        cfg_path.write_text(data if isinstance(data, str) else yaml.dump(data))
        config._CONFIG_CACHE = None
        return cfg_path
    return _write


def test_defaults():
    defaults = config._defaults()

    assert defaults['default_workers'] == 3
    assert defaults['agent_command'] == 'claude'
    assert defaults['tmux_session_prefix'] == 'fanout'
    assert defaults['spec_dirs'] == ['specs', 'docs/specs']
    assert defaults['test_command'] is None
    assert defaults['reports_dir'].endswith('reports')


def test_get_config_no_file():
    cfg = config.get_config()
    assert cfg['default_workers'] == 3
    assert cfg['launch_delay'] == 1.0


def test_get_config_with_custom_values(write_config):
    write_config({'default_workers': 5, 'agent_command': 'codex', 'tmux_session_prefix': 'agents'})

    assert config.get_default_workers() == 5
    assert config.get_agent_command() == 'codex'
    assert config.get_session_name('auth') == 'agents-auth'


def test_partial_config_keeps_other_defaults(write_config):
    write_config({'agent_command': 'codex'})
    assert config.get_default_workers() == 3
    assert config.get_spec_dirs() == ['specs', 'docs/specs']


def test_malformed_yaml_falls_back_to_defaults(write_config):
    write_config("default_workers: [unclosed\n")
    assert config.get_default_workers() == 3


def test_non_mapping_yaml_falls_back_to_defaults(write_config):
    write_config("- just\n- a list\n")
    assert config.get_agent_command() == 'claude'


def test_config_is_cached(write_config):
    cfg_path = write_config({'default_workers': 2})
    assert config.get_default_workers() == 2

    cfg_path.write_text(yaml.dump({'default_workers': 7}))
    assert config.get_default_workers() == 2


def test_session_name_default():
    assert config.get_session_name('user-auth') == 'fanout-user-auth'


class TestTimingOverrides:

    def test_env_overrides_config(self, write_config, monkeypatch):
        write_config({'launch_delay': 4})
        monkeypatch.setenv('FANOUT_LAUNCH_DELAY', '0.25')
        assert config.get_launch_delay() == 0.25

    def test_config_used_without_env(self, write_config, monkeypatch):
        monkeypatch.delenv('FANOUT_LAUNCH_DELAY', raising=False)
        write_config({'launch_delay': 4})
        assert config.get_launch_delay() == 4.0

    def test_invalid_env_value_uses_default(self, monkeypatch):
        monkeypatch.setenv('FANOUT_READY_TIMEOUT', 'soon')
        assert config.get_ready_timeout() == 15.0

    def test_negative_values_clamped(self, monkeypatch):
        monkeypatch.setenv('FANOUT_LAUNCH_DELAY', '-3')
        assert config.get_launch_delay() == 0.0


class TestPaths:

    def test_worktree_root_defaults_to_sibling(self, tmp_path):
        repo = tmp_path / "project"
        repo.mkdir()
        assert config.get_worktree_root(repo) == tmp_path.resolve() / "project-worktrees"

    def test_worktree_root_configured(self, write_config, tmp_path):
        write_config({'worktree_root': str(tmp_path / "trees")})
        assert config.get_worktree_root(tmp_path) == tmp_path / "trees"

    def test_reports_dir_default(self, isolated_home):
        assert config.get_reports_dir() == Path(isolated_home) / ".fanout" / "reports"


class TestTestCommand:

    def test_cli_flag_wins(self, write_config):
        write_config({'test_command': 'make check'})
        assert config.get_test_command('tox') == 'tox'

    def test_config_value(self, write_config):
        write_config({'test_command': 'make check'})
        assert config.get_test_command() == 'make check'

    def test_unset(self):
        assert config.get_test_command() is None

    def test_timeout_zero_disables(self, write_config):
        write_config({'test_timeout': 0})
        assert config.get_test_timeout() is None

    def test_timeout_default(self):
        assert config.get_test_timeout() == 1800.0
