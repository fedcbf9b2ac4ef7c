"""Tests for pyproject.toml configuration.

Verifies packaging metadata and code quality tool settings (mypy, black).
"""

import tomllib
from pathlib import Path

import pytest

import fanout


@pytest.fixture
def config() -> dict:
    """Parsed pyproject.toml from the project root."""
    pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
    with open(pyproject_path, "rb") as f:
        return tomllib.load(f)


class TestProjectMetadata:

    def test_version_matches_package(self, config: dict) -> None:
        assert config["project"]["version"] == fanout.__version__

    def test_console_script(self, config: dict) -> None:
        assert config["project"]["scripts"]["fanout"] == "fanout.cli:cli"

    @pytest.mark.parametrize("name", ["click", "PyYAML", "libtmux", "rich"])
    def test_runtime_dependency_declared(self, config: dict, name: str) -> None:
        assert any(dep.startswith(name) for dep in config["project"]["dependencies"])

    def test_test_extra(self, config: dict) -> None:
        extra = config["project"]["optional-dependencies"]["test"]
        for name in ("pytest", "pytest-mock", "time-machine"):
            assert any(dep.startswith(name) for dep in extra), f"{name} missing from test extra"


class TestMypyConfiguration:

    def test_mypy_python_version(self, config: dict) -> None:
        """mypy should target the minimum supported Python."""
        assert config["tool"]["mypy"]["python_version"] == "3.11"

    def test_mypy_strictness(self, config: dict) -> None:
        assert config["tool"]["mypy"].get("warn_return_any") is True


class TestBlackConfiguration:

    def test_black_line_length(self, config: dict) -> None:
        assert 79 <= config["tool"]["black"]["line-length"] <= 120

    def test_black_target_version(self, config: dict) -> None:
        assert "py311" in config["tool"]["black"]["target-version"]
