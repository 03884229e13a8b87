"""Symlink pairing between AGENTS.md and CLAUDE.md.

A directory may hold both files with one a symlink to the other. When the
action runs with ``symlink: true`` only the source file is ever written, so
two independent files in one directory are a configuration conflict.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from intentlayer.core.intent.detector import IntentFile, IntentLayerDetectionResult
from intentlayer.core.intent.hierarchy import directory_depth, get_directory
from intentlayer.lib.errors import SymlinkConflictError
logger = logging.getLogger(__name__)

ROOT_LABEL = "(root)"


@dataclass
class SymlinkRelationship:
    directory: str
    source: str
    symlink: str
    source_type: str  # kind of the real file


@dataclass
class SymlinkValidationResult:
    valid: bool = True
    error: Optional[str] = None
    conflict_directories: List[str] = field(default_factory=list)


def _links_to(link: IntentFile, other: IntentFile) -> bool:
    if not link.is_symlink or not link.symlink_target:
        return False
    target = link.symlink_target.strip()
    if target == other.path:
        return True
    directory = get_directory(link.path)
    resolved = posixpath.normpath(posixpath.join(directory, target)) if directory else posixpath.normpath(target)
    return resolved == other.path


def _pairs_by_directory(detection: IntentLayerDetectionResult) -> Dict[str, tuple]:
    claude_by_dir = {get_directory(f.path): f for f in detection.claude_files}
    pairs = {}
    for agents in detection.agents_files:
        directory = get_directory(agents.path)
        claude = claude_by_dir.get(directory)
        if claude is not None:
            pairs[directory] = (agents, claude)
    return pairs


def _relationship_for(directory: str, agents: IntentFile, claude: IntentFile) -> Optional[SymlinkRelationship]:
    if _links_to(claude, agents):
        return SymlinkRelationship(directory=directory, source=agents.path, symlink=claude.path, source_type="agents")
    if _links_to(agents, claude):
        return SymlinkRelationship(directory=directory, source=claude.path, symlink=agents.path, source_type="claude")
    return None


def get_symlink_relationships(detection: IntentLayerDetectionResult) -> List[SymlinkRelationship]:
    out = []
    for directory, (agents, claude) in _pairs_by_directory(detection).items():
        relationship = _relationship_for(directory, agents, claude)
        if relationship is not None:
            out.append(relationship)
    out.sort(key=lambda r: (directory_depth(r.directory), r.directory))
    return out


def find_symlink_relationship(detection: IntentLayerDetectionResult, directory: str) -> Optional[SymlinkRelationship]:
    for relationship in get_symlink_relationships(detection):
        if relationship.directory == directory:
            return relationship
    return None


def validate_symlink_config(detection: IntentLayerDetectionResult, symlink_enabled: bool) -> SymlinkValidationResult:
    if not symlink_enabled:
        return SymlinkValidationResult()

    conflicts = []
    for directory, (agents, claude) in _pairs_by_directory(detection).items():
        if _relationship_for(directory, agents, claude) is None:
            conflicts.append(directory)
    if not conflicts:
        return SymlinkValidationResult()

    conflicts.sort(key=lambda d: (directory_depth(d), d))
    labels = [d if d else ROOT_LABEL for d in conflicts]
    return SymlinkValidationResult(
        valid=False,
        error=(
            "Symlink mode is enabled, but AGENTS.md and CLAUDE.md exist as independent files "
            f"(not symlinked) in: {', '.join(labels)}"
        ),
        conflict_directories=labels,
    )


def check_symlink_config(detection: IntentLayerDetectionResult, symlink_enabled: bool) -> SymlinkValidationResult:
    """Same as validate_symlink_config; callers handle the result themselves."""
    return validate_symlink_config(detection, symlink_enabled)


def format_symlink_conflict_error(validation: SymlinkValidationResult) -> str:
    lines = [
        "Intent Layer Symlink Configuration Error",
        "",
        validation.error or "Symlink configuration conflict detected.",
        "",
        "Resolution options:",
        "  1. Convert one file to a symlink: delete either AGENTS.md or CLAUDE.md and replace it with a symlink to the other",
        "  2. Keep both files separate: set 'symlink: false' in your action configuration",
        "  3. Remove the duplicate: if both files have the same content, delete one and keep the other",
        "",
    ]
    if validation.conflict_directories:
        lines.append("Affected directories:")
        for directory in validation.conflict_directories:
            lines.append(f"  - {'Repository root' if directory == ROOT_LABEL else directory}")
    return "\n".join(lines)


def validate_and_fail_on_symlink_conflict(detection: IntentLayerDetectionResult, symlink_enabled: bool) -> None:
    validation = validate_symlink_config(detection, symlink_enabled)
    if validation.valid:
        return
    logger.error(format_symlink_conflict_error(validation))
    raise SymlinkConflictError(
        validation.error or "Symlink configuration conflict detected",
        validation.conflict_directories,
    )
