"""Intent node hierarchy.

Every AGENTS.md / CLAUDE.md file is a node covering its directory and every
descendant directory not claimed by a deeper node. Nodes link to their
nearest ancestor node, so `packages/api/AGENTS.md` hangs off the root
`AGENTS.md` even when `packages/AGENTS.md` does not exist.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from intentlayer.core.intent.detector import (
    AGENTS_FILENAME,
    CLAUDE_FILENAME,
    IntentFile,
    IntentLayerDetectionResult,
)


@dataclass
class IntentNode:
    path: str
    directory: str
    depth: int
    file_kind: str
    file: Optional[IntentFile] = None
    parent: Optional["IntentNode"] = field(default=None, repr=False, compare=False)
    children: List["IntentNode"] = field(default_factory=list, repr=False, compare=False)


@dataclass
class IntentHierarchy:
    file_kind: str
    roots: List[IntentNode] = field(default_factory=list)
    nodes_by_path: Dict[str, IntentNode] = field(default_factory=dict)
    nodes_by_directory: Dict[str, IntentNode] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.nodes_by_path)

    def get(self, path: str) -> Optional[IntentNode]:
        return self.nodes_by_path.get(path)


@dataclass
class IntentHierarchies:
    agents: IntentHierarchy
    claude: IntentHierarchy


def get_directory(file_path: str) -> str:
    """Directory of a repo-relative path; "" for files at the root."""
    return posixpath.dirname(file_path)


def directory_depth(directory: str) -> int:
    return 0 if directory == "" else directory.count("/") + 1


def is_ancestor_directory(ancestor: str, descendant: str) -> bool:
    """True when ``ancestor`` is a strict ancestor of ``descendant``."""
    if ancestor == descendant:
        return False
    if ancestor == "":
        return True
    return descendant.startswith(ancestor + "/")


def find_nearest_parent_directory(directory: str, candidates: Iterable[str]) -> Optional[str]:
    """Deepest candidate directory that strictly contains ``directory``."""
    best = None
    for candidate in candidates:
        if not is_ancestor_directory(candidate, directory):
            continue
        if best is None or directory_depth(candidate) > directory_depth(best):
            best = candidate
    return best


def _parent_directories(directory: str) -> Iterator[str]:
    current = directory
    while current:
        current = posixpath.dirname(current)
        yield current


def build_hierarchy(files: Iterable[IntentFile], file_kind: str) -> IntentHierarchy:
    """Link intent files of one kind into a forest of nodes.

    Files are inserted shallowest first so a node's parent always exists
    before the node itself. Duplicate paths are dropped.
    """
    hierarchy = IntentHierarchy(file_kind=file_kind)
    ordered = sorted(files, key=lambda f: (directory_depth(get_directory(f.path)), f.path))

    for intent_file in ordered:
        if intent_file.path in hierarchy.nodes_by_path:
            continue
        directory = get_directory(intent_file.path)
        node = IntentNode(
            path=intent_file.path,
            directory=directory,
            depth=directory_depth(directory),
            file_kind=file_kind,
            file=intent_file,
        )
        parent = None
        for candidate in _parent_directories(directory):
            parent = hierarchy.nodes_by_directory.get(candidate)
            if parent is not None:
                break
        if parent is not None:
            node.parent = parent
            parent.children.append(node)
        else:
            hierarchy.roots.append(node)
        hierarchy.nodes_by_path[node.path] = node
        hierarchy.nodes_by_directory.setdefault(directory, node)

    hierarchy.roots.sort(key=lambda n: n.path)
    for node in hierarchy.nodes_by_path.values():
        node.children.sort(key=lambda n: n.path)
    return hierarchy


def build_hierarchies(detection: IntentLayerDetectionResult) -> IntentHierarchies:
    return IntentHierarchies(
        agents=build_hierarchy(detection.agents_files, "agents"),
        claude=build_hierarchy(detection.claude_files, "claude"),
    )


def find_covering_node(file_path: str, hierarchy: IntentHierarchy) -> Optional[IntentNode]:
    """Nearest node whose directory equals or contains the file's directory."""
    directory = get_directory(file_path)
    node = hierarchy.nodes_by_directory.get(directory)
    if node is not None:
        return node
    for candidate in _parent_directories(directory):
        node = hierarchy.nodes_by_directory.get(candidate)
        if node is not None:
            return node
    return None


def get_ancestors(node: IntentNode) -> List[IntentNode]:
    """Ancestors from the immediate parent up to the root."""
    out = []
    current = node.parent
    while current is not None:
        out.append(current)
        current = current.parent
    return out


def get_descendants(node: IntentNode) -> List[IntentNode]:
    """All descendants in pre-order, excluding ``node``."""
    out: List[IntentNode] = []
    for child in node.children:
        out.append(child)
        out.extend(get_descendants(child))
    return out


def find_least_common_ancestor(nodes: List[IntentNode]) -> Optional[IntentNode]:
    if not nodes:
        return None
    if len(nodes) == 1:
        return nodes[0]
    # Candidate chain from the first node, itself included, nearest first.
    chain = [nodes[0]] + get_ancestors(nodes[0])
    for candidate in chain:
        if all(n is candidate or candidate in get_ancestors(n) for n in nodes[1:]):
            return candidate
    return None


def traverse_pre_order(hierarchy: IntentHierarchy, visit: Callable[[IntentNode], None]) -> None:
    def _walk(node: IntentNode) -> None:
        visit(node)
        for child in node.children:
            _walk(child)

    for root in hierarchy.roots:
        _walk(root)


def traverse_post_order(hierarchy: IntentHierarchy, visit: Callable[[IntentNode], None]) -> None:
    def _walk(node: IntentNode) -> None:
        for child in node.children:
            _walk(child)
        visit(node)

    for root in hierarchy.roots:
        _walk(root)


def get_all_nodes(hierarchy: IntentHierarchy) -> List[IntentNode]:
    """All nodes in pre-order."""
    out: List[IntentNode] = []
    traverse_pre_order(hierarchy, out.append)
    return out


def get_node_count(hierarchy: IntentHierarchy) -> int:
    return len(hierarchy.nodes_by_path)


def get_max_depth(hierarchy: IntentHierarchy) -> int:
    """Number of levels in the deepest chain of nodes (0 when empty)."""
    def _levels(node: IntentNode) -> int:
        return 1 + max((_levels(c) for c in node.children), default=0)

    return max((_levels(r) for r in hierarchy.roots), default=0)


def _is_intent_filename(file_path: str) -> bool:
    return posixpath.basename(file_path) in (AGENTS_FILENAME, CLAUDE_FILENAME)


def get_covered_files_for_node(
    node: IntentNode,
    hierarchy: IntentHierarchy,
    all_files: Iterable[str],
    ignore=None,
) -> List[str]:
    """Files whose nearest covering node is ``node`` (intent files and ignored files excluded)."""
    out = []
    for file_path in all_files:
        if _is_intent_filename(file_path):
            continue
        if ignore is not None and ignore.ignores(file_path):
            continue
        covering = find_covering_node(file_path, hierarchy)
        if covering is not None and covering.path == node.path:
            out.append(file_path)
    return sorted(out)


def get_covered_files_for_hierarchy(
    hierarchy: IntentHierarchy,
    all_files: Iterable[str],
    ignore=None,
) -> Dict[str, List[str]]:
    """Partition a file listing by nearest covering node path."""
    covered: Dict[str, List[str]] = {path: [] for path in hierarchy.nodes_by_path}
    for file_path in all_files:
        if _is_intent_filename(file_path):
            continue
        if ignore is not None and ignore.ignores(file_path):
            continue
        covering = find_covering_node(file_path, hierarchy)
        if covering is not None:
            covered[covering.path].append(file_path)
    for files in covered.values():
        files.sort()
    return covered
