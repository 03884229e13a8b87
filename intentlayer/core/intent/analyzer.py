"""Map PR changes onto intent nodes and decide what needs updating.

Three decisions come out of one mapping:

  direct candidates  - nodes covering at least one changed, non-ignored file
  parent review      - ancestors of direct candidates; recommended only when
                       the combined change under them is broad
  new-node candidates - uncovered directories with enough new code to be
                       worth their own AGENTS.md / CLAUDE.md
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from intentlayer.config import AnalysisConfig
from intentlayer.core.github.context import PRChangedFile
from intentlayer.core.intent.detector import filename_for_kind
from intentlayer.core.intent.hierarchy import (
    IntentHierarchy,
    IntentNode,
    find_covering_node,
    get_ancestors,
    get_directory,
)
logger = logging.getLogger(__name__)

UNCOVERED_KEY = "__uncovered__"

# Directory names that conventionally form a documentation boundary.
STANDARD_DIRECTORY_NAMES = frozenset({
    "src", "lib", "libs", "components", "utils", "helpers", "services",
    "api", "hooks", "models", "controllers", "views", "pages", "routes",
    "handlers", "core", "modules", "packages", "apps", "server", "client",
})
PACKAGE_ROOTS = frozenset({"packages", "apps", "libs", "services"})


@dataclass
class ChangedFileCoverage:
    file: PRChangedFile
    covering_node: Optional[IntentNode]
    is_ignored: bool = False

    @property
    def path(self) -> str:
        return self.file.filename


@dataclass
class ChangedFilesMappingSummary:
    total_changed_files: int = 0
    covered_files: int = 0
    uncovered_files: int = 0
    ignored_files: int = 0
    affected_nodes: int = 0


@dataclass
class ChangedFilesMappingResult:
    files: List[ChangedFileCoverage]
    by_node: Dict[str, List[ChangedFileCoverage]]
    summary: ChangedFilesMappingSummary
    file_kind: str = "agents"


@dataclass
class ChangeSummary:
    files_added: int = 0
    files_modified: int = 0
    files_removed: int = 0
    files_renamed: int = 0
    total_additions: int = 0
    total_deletions: int = 0

    @property
    def total_changes(self) -> int:
        return self.total_additions + self.total_deletions


@dataclass
class NodeUpdateCandidate:
    node: IntentNode
    changed_files: List[ChangedFileCoverage]
    change_summary: ChangeSummary
    update_reason: str


@dataclass
class NodeUpdateResult:
    candidates: List[NodeUpdateCandidate] = field(default_factory=list)
    total_nodes: int = 0
    has_updates: bool = False


@dataclass
class ParentReviewCandidate:
    node: IntentNode
    updated_children: List[NodeUpdateCandidate]
    total_changed_files_in_children: int = 0
    total_additions_in_children: int = 0
    total_deletions_in_children: int = 0
    structural_changes: int = 0
    recommend_update: bool = False
    recommendation_reason: str = ""


@dataclass
class ParentReviewResult:
    candidates: List[ParentReviewCandidate] = field(default_factory=list)
    total_parent_nodes: int = 0
    has_recommended_updates: bool = False


@dataclass
class SemanticBoundaryCandidate:
    directory: str
    suggested_node_path: str
    uncovered_files: List[ChangedFileCoverage]
    change_summary: ChangeSummary
    confidence: float
    reason: str


@dataclass
class SemanticBoundaryResult:
    candidates: List[SemanticBoundaryCandidate] = field(default_factory=list)
    has_candidates: bool = False
    new_nodes_allowed: bool = True
    total_candidates: int = 0


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

def map_changed_files_to_nodes(diff: List[PRChangedFile], hierarchy: IntentHierarchy, ignore=None) -> ChangedFilesMappingResult:
    """Resolve the covering node of every changed file.

    Ignore status is computed independently; an ignored file keeps its
    covering node and is only excluded from update decisions.
    """
    files: List[ChangedFileCoverage] = []
    by_node: Dict[str, List[ChangedFileCoverage]] = {}
    summary = ChangedFilesMappingSummary(total_changed_files=len(diff))

    for changed in diff:
        node = find_covering_node(changed.filename, hierarchy)
        is_ignored = bool(ignore is not None and ignore.ignores(changed.filename))
        coverage = ChangedFileCoverage(file=changed, covering_node=node, is_ignored=is_ignored)
        files.append(coverage)
        key = node.path if node is not None else UNCOVERED_KEY
        by_node.setdefault(key, []).append(coverage)
        if node is not None:
            summary.covered_files += 1
        else:
            summary.uncovered_files += 1
        if is_ignored:
            summary.ignored_files += 1

    summary.affected_nodes = sum(1 for key in by_node if key != UNCOVERED_KEY)
    return ChangedFilesMappingResult(files=files, by_node=by_node, summary=summary, file_kind=hierarchy.file_kind)


def get_affected_nodes(mapping: ChangedFilesMappingResult) -> List[IntentNode]:
    nodes = {}
    for coverage in mapping.files:
        if coverage.covering_node is not None:
            nodes.setdefault(coverage.covering_node.path, coverage.covering_node)
    return [nodes[path] for path in sorted(nodes)]


def get_changed_files_for_node(mapping: ChangedFilesMappingResult, node_path: str) -> List[ChangedFileCoverage]:
    return list(mapping.by_node.get(node_path, []))


def get_uncovered_changed_files(mapping: ChangedFilesMappingResult) -> List[ChangedFileCoverage]:
    return list(mapping.by_node.get(UNCOVERED_KEY, []))


def get_ignored_changed_files(mapping: ChangedFilesMappingResult) -> List[ChangedFileCoverage]:
    return [f for f in mapping.files if f.is_ignored]


def has_affected_nodes(mapping: ChangedFilesMappingResult) -> bool:
    return mapping.summary.affected_nodes > 0


def filter_ignored_files(files: List[ChangedFileCoverage]) -> List[ChangedFileCoverage]:
    return [f for f in files if not f.is_ignored]


def get_affected_directories(mapping: ChangedFilesMappingResult) -> List[str]:
    return sorted({get_directory(f.path) for f in mapping.files})


# ---------------------------------------------------------------------------
# Direct candidates
# ---------------------------------------------------------------------------

def calculate_change_summary(files: List[ChangedFileCoverage]) -> ChangeSummary:
    summary = ChangeSummary()
    for coverage in files:
        status = coverage.file.status
        if status == "added":
            summary.files_added += 1
        elif status == "removed":
            summary.files_removed += 1
        elif status == "renamed":
            summary.files_renamed += 1
        else:
            # modified, copied and changed
            summary.files_modified += 1
        summary.total_additions += coverage.file.additions
        summary.total_deletions += coverage.file.deletions
    return summary


def generate_update_reason(summary: ChangeSummary, analysis: Optional[AnalysisConfig] = None) -> str:
    analysis = analysis or AnalysisConfig()
    parts = []
    if summary.files_added:
        parts.append(f"{summary.files_added} file(s) added (new functionality introduced)")
    if summary.files_modified:
        label = "significant code changes" if summary.total_changes >= analysis.significant_line_changes else "code updates"
        parts.append(f"{summary.files_modified} file(s) modified ({label})")
    if summary.files_removed:
        parts.append(f"{summary.files_removed} file(s) removed (functionality removed or consolidated)")
    if summary.files_renamed:
        parts.append(f"{summary.files_renamed} file(s) renamed")
    if summary.total_changes >= analysis.reason_line_count_threshold:
        parts.append(
            f"{_plural(summary.total_additions, 'line')} added, "
            f"{_plural(summary.total_deletions, 'line')} deleted"
        )
    if not parts:
        total = summary.files_added + summary.files_modified + summary.files_removed + summary.files_renamed
        return f"{total} file(s) changed in coverage area"
    return "; ".join(parts)


def determine_nodes_needing_update(mapping: ChangedFilesMappingResult, analysis: Optional[AnalysisConfig] = None) -> NodeUpdateResult:
    candidates = []
    for node_path in sorted(k for k in mapping.by_node if k != UNCOVERED_KEY):
        files = filter_ignored_files(mapping.by_node[node_path])
        if not files:
            continue
        node = files[0].covering_node
        summary = calculate_change_summary(files)
        candidates.append(NodeUpdateCandidate(
            node=node,
            changed_files=files,
            change_summary=summary,
            update_reason=generate_update_reason(summary, analysis),
        ))
    return NodeUpdateResult(candidates=candidates, total_nodes=len(candidates), has_updates=bool(candidates))


def get_nodes_needing_update(diff: List[PRChangedFile], hierarchy: IntentHierarchy, ignore=None, analysis: Optional[AnalysisConfig] = None) -> NodeUpdateResult:
    """Mapping and direct-candidate decision in one call."""
    return determine_nodes_needing_update(map_changed_files_to_nodes(diff, hierarchy, ignore), analysis)


# ---------------------------------------------------------------------------
# Parent review
# ---------------------------------------------------------------------------

def review_parent_nodes(direct: NodeUpdateResult, analysis: Optional[AnalysisConfig] = None) -> ParentReviewResult:
    """Collect ancestors of direct candidates and decide which need review.

    Parents default to "no update"; any single threshold crossed flips the
    recommendation.
    """
    analysis = analysis or AnalysisConfig()
    parents: Dict[str, IntentNode] = {}
    children_of: Dict[str, List[NodeUpdateCandidate]] = {}
    for candidate in direct.candidates:
        for ancestor in get_ancestors(candidate.node):
            parents.setdefault(ancestor.path, ancestor)
            children_of.setdefault(ancestor.path, []).append(candidate)

    out = []
    for path, parent in parents.items():
        children = sorted(children_of[path], key=lambda c: c.node.path)
        review = ParentReviewCandidate(node=parent, updated_children=children)
        for child in children:
            cs = child.change_summary
            review.total_changed_files_in_children += len(child.changed_files)
            review.total_additions_in_children += cs.total_additions
            review.total_deletions_in_children += cs.total_deletions
            review.structural_changes += cs.files_added + cs.files_removed

        reasons = []
        if len(children) >= analysis.parent_min_children:
            reasons.append(f"Multiple child nodes updated ({len(children)} children)")
        if review.structural_changes >= analysis.parent_min_structural_changes:
            reasons.append(f"Significant structural changes ({review.structural_changes} files added/removed)")
        if review.total_changed_files_in_children >= analysis.parent_min_changed_files:
            reasons.append(f"Large number of changed files ({review.total_changed_files_in_children} files)")
        if reasons:
            review.recommend_update = True
            review.recommendation_reason = "; ".join(reasons)
        else:
            review.recommendation_reason = (
                f"Child node(s) updated with localized changes "
                f"({_plural(len(children), 'child')}, {review.total_changed_files_in_children} file(s)); "
                "parent update likely not needed"
            )
        out.append(review)

    out.sort(key=lambda r: (-r.node.depth, r.node.path))
    return ParentReviewResult(
        candidates=out,
        total_parent_nodes=len(out),
        has_recommended_updates=any(r.recommend_update for r in out),
    )


# ---------------------------------------------------------------------------
# New-node candidates
# ---------------------------------------------------------------------------

def _is_package_boundary(directory: str) -> bool:
    segments = directory.split("/") if directory else []
    return len(segments) == 2 and segments[0] in PACKAGE_ROOTS


def _boundary_confidence(directory: str, file_count: int, summary: ChangeSummary, analysis: AnalysisConfig) -> float:
    confidence = 0.5
    confidence += min(0.2, 0.1 * max(0, file_count - analysis.new_node_min_files))
    if summary.total_changes >= 200:
        confidence += 0.1
    basename = directory.rsplit("/", 1)[-1]
    if basename in STANDARD_DIRECTORY_NAMES:
        confidence += 0.1
    if _is_package_boundary(directory):
        confidence += 0.15
    return min(1.0, round(confidence, 4))


def identify_semantic_boundaries(
    mapping: ChangedFilesMappingResult,
    new_nodes_allowed: bool = True,
    file_kind: str = "agents",
    analysis: Optional[AnalysisConfig] = None,
) -> SemanticBoundaryResult:
    if not new_nodes_allowed:
        return SemanticBoundaryResult(new_nodes_allowed=False)
    analysis = analysis or AnalysisConfig()

    groups: Dict[str, List[ChangedFileCoverage]] = {}
    for coverage in filter_ignored_files(get_uncovered_changed_files(mapping)):
        groups.setdefault(get_directory(coverage.path), []).append(coverage)

    filename = filename_for_kind(file_kind)
    candidates = []
    for directory, files in groups.items():
        summary = calculate_change_summary(files)
        if len(files) < analysis.new_node_min_files or summary.total_changes < analysis.new_node_min_changes:
            continue
        reasons = [f"{len(files)} uncovered files"]
        if summary.files_added:
            reasons.append(f"{summary.files_added} new file(s) added")
        if _is_package_boundary(directory):
            reasons.append("represents a package/module boundary")
        candidates.append(SemanticBoundaryCandidate(
            directory=directory,
            suggested_node_path=f"{directory}/{filename}" if directory else filename,
            uncovered_files=files,
            change_summary=summary,
            confidence=_boundary_confidence(directory, len(files), summary, analysis),
            reason="; ".join(reasons),
        ))

    candidates.sort(key=lambda c: (-c.confidence, c.directory))
    logger.debug("Identified %d new-node candidate(s)", len(candidates))
    return SemanticBoundaryResult(
        candidates=candidates,
        has_candidates=bool(candidates),
        new_nodes_allowed=True,
        total_candidates=len(candidates),
    )


def filter_semantic_boundaries_for_initialization(result: SemanticBoundaryResult, file_kind: str = "agents") -> SemanticBoundaryResult:
    """With no intent layer yet, only a root-level node may be proposed.

    A root candidate is kept as-is; otherwise the subdirectory candidates
    are folded into one synthetic root candidate.
    """
    if not result.candidates:
        return result
    root = next((c for c in result.candidates if c.directory == ""), None)
    if root is None:
        files = [f for c in result.candidates for f in c.uncovered_files]
        directories = len(result.candidates)
        root = SemanticBoundaryCandidate(
            directory="",
            suggested_node_path=filename_for_kind(file_kind),
            uncovered_files=files,
            change_summary=calculate_change_summary(files),
            confidence=1.0,
            reason=(
                f"Initialize intent layer: {len(files)} uncovered files across "
                f"{directories} {'directory' if directories == 1 else 'directories'}"
            ),
        )
    return SemanticBoundaryResult(
        candidates=[root],
        has_candidates=True,
        new_nodes_allowed=result.new_nodes_allowed,
        total_candidates=1,
    )
