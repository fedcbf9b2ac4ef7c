"""
Requirement ID extraction and spec discovery.

Requirement IDs look like REQ-001 or REQ-AUTH-3. They are returned in
first-occurrence order with duplicates removed.
"""

import re
from pathlib import Path
from typing import List, Optional, Sequence

from fanout.errors import SpecNotFoundError

REQUIREMENT_PATTERN = re.compile(r'\bREQ-[A-Z0-9]+(?:-[A-Z0-9]+)*\b')

MAX_FEATURE_LENGTH = 40


def extract_requirements(text: str) -> List[str]:
    """
    Extract requirement IDs from spec text.

    Args:
        text: Spec content

    Returns:
        De-duplicated IDs in order of first appearance
    """
    seen = set()
    ordered = []
    for match in REQUIREMENT_PATTERN.finditer(text):
        req_id = match.group(0)
        if req_id not in seen:
            seen.add(req_id)
            ordered.append(req_id)
    return ordered


def read_requirements(spec_path: Path) -> List[str]:
    spec_path = Path(spec_path)
    if not spec_path.is_file():
        raise SpecNotFoundError(
            f"Spec not found: {spec_path}",
            remediation="Pass an existing spec file: fanout dispatch path/to/spec.md",
        )
    return extract_requirements(spec_path.read_text(encoding='utf-8', errors='replace'))


def find_latest_spec(repo_dir: Path, spec_dirs: Sequence[str]) -> Optional[Path]:
    """
    Find the most recently modified markdown spec under spec_dirs.

    Args:
        repo_dir: Repository root
        spec_dirs: Directories relative to repo_dir to search (recursively)

    Returns:
        Path of the newest *.md file, or None if none exist
    """
    candidates = []
    for spec_dir in spec_dirs:
        base = Path(repo_dir) / spec_dir
        if base.is_dir():
            candidates.extend(p for p in base.rglob('*.md') if p.is_file())

    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


def slugify_feature(name: str) -> str:
    """
    Turn a feature or spec name into a branch-safe slug.

    Examples:
        >>> slugify_feature("User Auth (v2)")
        'user-auth-v2'
        >>> slugify_feature("  ")
        'feature'
    """
    slug = re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')
    slug = slug[:MAX_FEATURE_LENGTH].rstrip('-')
    return slug or 'feature'


def feature_from_spec(spec_path: Path) -> str:
    """
    Derive the feature name from a spec path.

    Generic file names (spec.md, README.md, requirements.md) use the parent
    directory instead, so specs/user-auth/spec.md becomes 'user-auth'.
    """
    spec_path = Path(spec_path)
    stem = spec_path.stem
    if stem.lower() in ('spec', 'readme', 'requirements', 'index') and spec_path.parent.name:
        stem = spec_path.parent.name
    return slugify_feature(stem)
