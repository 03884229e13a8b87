"""Intent node size budgets and split suggestions.

A node is oversized when its own token estimate exceeds
``token_budget_percent`` of the code it covers. Sizes come from the git
tree listing, so no file content is fetched for this check.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from intentlayer.core.intent.detector import filename_for_kind
from intentlayer.core.intent.hierarchy import IntentHierarchy, IntentNode, get_covered_files_for_node
from intentlayer.lib.tokens import calculate_token_budget_from_sizes, estimate_tokens_from_size
logger = logging.getLogger(__name__)

SPLIT_MIN_FILES = 3
SPLIT_MIN_COVERAGE_PERCENT = 10.0


@dataclass
class SplitSuggestion:
    directory: str
    suggested_node_path: str
    file_count: int
    estimated_tokens: int
    coverage_percent: float


@dataclass
class NodeBudget:
    node: IntentNode
    node_tokens: int
    covered_tokens: int
    budget_percent: float
    exceeds_budget: bool
    split_suggestions: List[SplitSuggestion] = field(default_factory=list)


def _immediate_subdirectory(node_directory: str, file_path: str) -> str:
    """First directory below ``node_directory`` on the way to ``file_path``; "" if none."""
    relative = file_path[len(node_directory) + 1:] if node_directory else file_path
    head, sep, _rest = relative.partition("/")
    if not sep:
        return ""
    return posixpath.join(node_directory, head) if node_directory else head


def suggest_node_splits(node: IntentNode, hierarchy: IntentHierarchy, covered_files: Iterable[str],
                        tree_files: Dict[str, int]) -> List[SplitSuggestion]:
    """Subdirectories big enough to deserve their own node."""
    groups: Dict[str, List[str]] = {}
    total_tokens = 0
    for path in covered_files:
        tokens = estimate_tokens_from_size(tree_files.get(path, 0))
        total_tokens += tokens
        sub = _immediate_subdirectory(node.directory, path)
        if sub and sub not in hierarchy.nodes_by_directory:
            groups.setdefault(sub, []).append(path)
    if total_tokens == 0:
        return []

    suggestions = []
    for directory, paths in groups.items():
        tokens = sum(estimate_tokens_from_size(tree_files.get(p, 0)) for p in paths)
        percent = tokens / total_tokens * 100
        if len(paths) < SPLIT_MIN_FILES or percent < SPLIT_MIN_COVERAGE_PERCENT:
            continue
        suggestions.append(SplitSuggestion(
            directory=directory,
            suggested_node_path=posixpath.join(directory, filename_for_kind(node.file_kind)),
            file_count=len(paths),
            estimated_tokens=tokens,
            coverage_percent=percent,
        ))
    suggestions.sort(key=lambda s: (-s.estimated_tokens, s.directory))
    return suggestions


def analyze_node_budget(node: IntentNode, hierarchy: IntentHierarchy, tree_files: Dict[str, int],
                        threshold_percent: float, ignore=None) -> NodeBudget:
    covered = get_covered_files_for_node(node, hierarchy, tree_files.keys(), ignore)
    budget = calculate_token_budget_from_sizes(
        tree_files.get(node.path, 0),
        [tree_files.get(p, 0) for p in covered],
        threshold_percent,
    )
    result = NodeBudget(
        node=node,
        node_tokens=budget.node_tokens,
        covered_tokens=budget.covered_code_tokens,
        budget_percent=budget.budget_percent,
        exceeds_budget=budget.exceeds_budget,
    )
    if result.exceeds_budget:
        result.split_suggestions = suggest_node_splits(node, hierarchy, covered, tree_files)
    return result


def find_nodes_exceeding_budget(nodes: Iterable[IntentNode], hierarchy: IntentHierarchy,
                                tree_files: Dict[str, int], threshold_percent: float,
                                ignore=None) -> List[NodeBudget]:
    out = []
    for node in nodes:
        budget = analyze_node_budget(node, hierarchy, tree_files, threshold_percent, ignore)
        if budget.exceeds_budget:
            logger.info("%s uses %.1f%% of its covered code (budget %.1f%%)",
                        node.path, budget.budget_percent, threshold_percent)
            out.append(budget)
    return out
