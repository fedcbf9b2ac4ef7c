"""
Task briefs and launch scripts written into each workspace.

Layout inside a workspace:
    .fanout/TASK.md     what to implement, and what not to
    .fanout/launch.sh   cd + banner + exec agent

The .fanout/ directory is added to the repository's shared info/exclude so
agents never commit it.
"""

import logging
import shlex
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from fanout.git_utils import GitCommandError, ensure_excluded
from fanout.workspace import Workspace

BRIEF_DIR = ".fanout"
BRIEF_FILE = "TASK.md"
LAUNCH_SCRIPT = "launch.sh"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BriefPaths:
    brief: Path
    launch_script: Path


def brief_paths(workspace: Workspace) -> BriefPaths:
    base = workspace.path / BRIEF_DIR
    return BriefPaths(brief=base / BRIEF_FILE, launch_script=base / LAUNCH_SCRIPT)


class TaskBriefWriter:
    """Renders per-workspace briefs for one run."""

    def __init__(self, spec_path: Path, all_requirements: Sequence[str], agent_command: str = "claude"):
        self.spec_path = Path(spec_path).resolve()
        self.all_requirements = list(all_requirements)
        self.agent_command = agent_command

    def render_brief(self, workspace: Workspace) -> str:
        assigned = list(workspace.bucket.requirements)
        assigned_set = set(assigned)
        out_of_scope = [r for r in self.all_requirements if r not in assigned_set]

        lines = [
            f"# Task brief: agent {workspace.number}",
            "",
            f"- **Spec:** `{self.spec_path}`",
            f"- **Branch:** `{workspace.branch_name}`",
            f"- **Workspace:** `{workspace.path}`",
            "",
            "## Implement ONLY these requirements",
            "",
        ]
        lines.extend(f"- {req_id}" for req_id in assigned)
        lines += [
            "",
            "## Out of scope",
            "",
            "Other agents are implementing these in parallel. Do not implement,",
            "refactor, or stub them:",
            "",
        ]
        if out_of_scope:
            lines.extend(f"- {req_id}" for req_id in out_of_scope)
        else:
            lines.append("- (none)")
        lines += [
            "",
            "## Rules",
            "",
            f"1. Work only inside `{workspace.path}` on branch `{workspace.branch_name}`.",
            "2. Write tests for each assigned requirement and keep the suite passing.",
            "3. Commit early and often; uncommitted work is not merged.",
            "4. Do not merge, rebase onto, or push other agents' branches.",
            "",
        ]
        return "\n".join(lines)

    def render_launch_script(self, workspace: Workspace) -> str:
        reqs = ", ".join(workspace.bucket.requirements)
        path = shlex.quote(str(workspace.path))
        return "\n".join([
            "#!/usr/bin/env bash",
            f"cd {path} || exit 1",
            "echo '================================================'",
            f"echo {shlex.quote(f'fanout agent {workspace.number}: {workspace.branch_name}')}",
            f"echo {shlex.quote(f'requirements: {reqs}')}",
            f"echo {shlex.quote(f'brief: {BRIEF_DIR}/{BRIEF_FILE}')}",
            "echo '================================================'",
            f"exec {self.agent_command}",
            "",
        ])

    def write(self, workspace: Workspace) -> BriefPaths:
        """
        Write (or overwrite) the brief and launch script for a workspace.

        Returns:
            Paths of the written files
        """
        paths = brief_paths(workspace)
        paths.brief.parent.mkdir(parents=True, exist_ok=True)
        try:
            ensure_excluded(workspace.path, f"/{BRIEF_DIR}/")
        except GitCommandError as e:
            logger.warning("Could not exclude %s/ in %s: %s", BRIEF_DIR, workspace.path, e.stderr)

        paths.brief.write_text(self.render_brief(workspace))
        paths.launch_script.write_text(self.render_launch_script(workspace))
        mode = paths.launch_script.stat().st_mode
        paths.launch_script.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return paths

    def begin_instruction(self, workspace: Workspace) -> str:
        """Follow-up message sent to a started agent session."""
        return (
            f"Read {BRIEF_DIR}/{BRIEF_FILE} and implement ONLY the requirements listed there "
            f"({', '.join(workspace.bucket.requirements)}). "
            f"Commit your work on branch {workspace.branch_name}."
        )

    def launch_command(self, workspace: Workspace) -> str:
        return f"bash {shlex.quote(str(brief_paths(workspace).launch_script))}"

    def manual_command(self, workspace: Workspace) -> str:
        """Exact command a human runs to start this workspace's session."""
        return f"cd {shlex.quote(str(workspace.path))} && {self.launch_command(workspace)}"
