"""Detect AGENTS.md / CLAUDE.md files on a branch.

One recursive tree listing is enough for both kinds. Entries with git mode
120000 are symlinks; their blob holds the raw link target, which is read so
the symlink resolver can tell a real pairing from two divergent files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from intentlayer.lib.errors import IntentLayerError
from intentlayer.lib.worker_pool import run_callables
logger = logging.getLogger(__name__)

AGENTS_FILENAME = "AGENTS.md"
CLAUDE_FILENAME = "CLAUDE.md"
SYMLINK_MODE = "120000"

FILENAMES: Dict[str, str] = {
    "agents": AGENTS_FILENAME,
    "claude": CLAUDE_FILENAME,
}


@dataclass
class IntentFile:
    path: str
    kind: str  # "agents" | "claude"
    sha: str = ""
    is_symlink: bool = False
    symlink_target: Optional[str] = None


@dataclass
class IntentLayerDetectionResult:
    agents_files: List[IntentFile] = field(default_factory=list)
    claude_files: List[IntentFile] = field(default_factory=list)
    # Regular blobs on the branch, path -> size in bytes.
    tree_files: Dict[str, int] = field(default_factory=dict)

    def files_for_kind(self, kind: str) -> List[IntentFile]:
        return self.claude_files if kind == "claude" else self.agents_files


def filename_for_kind(kind: str) -> str:
    return FILENAMES.get(kind, AGENTS_FILENAME)


def kind_for_filename(name: str) -> Optional[str]:
    for kind, filename in FILENAMES.items():
        if name == filename:
            return kind
    return None


def _sort_key(f: IntentFile):
    return (f.path.count("/"), f.path)


def _intent_files_from_tree(tree: List[dict], kind: str) -> List[IntentFile]:
    filename = filename_for_kind(kind)
    out = []
    for item in tree:
        path = item.get("path")
        if item.get("type") != "blob" or not path or not item.get("sha"):
            continue
        if path != filename and not path.endswith("/" + filename):
            continue
        out.append(IntentFile(
            path=path,
            kind=kind,
            sha=item["sha"],
            is_symlink=item.get("mode") == SYMLINK_MODE,
        ))
    return out


def _tree_file_sizes(tree: List[dict]) -> Dict[str, int]:
    return {
        item["path"]: int(item.get("size") or 0)
        for item in tree
        if item.get("type") == "blob" and item.get("path") and item.get("mode") != SYMLINK_MODE
    }


def _read_symlink_targets(client, files: List[IntentFile], max_workers: int) -> None:
    links = [f for f in files if f.is_symlink]
    if not links:
        return
    results = run_callables(
        [lambda sha=f.sha: client.get_blob(sha) for f in links],
        max_workers=max_workers,
        pool_name="detector",
        return_exceptions=True,
    )
    for intent_file, result in zip(links, results):
        if isinstance(result, IntentLayerError):
            # Unknown target; the resolver treats it as "not a link to the pair".
            logger.warning("Could not read symlink target for %s: %s", intent_file.path, result)
            continue
        if isinstance(result, BaseException):
            raise result
        intent_file.symlink_target = result.strip()


def detect_intent_files(client, kind: str, ref: str, max_workers: int = 4) -> List[IntentFile]:
    """Detect one kind of intent file on ``ref``."""
    tree = client.get_tree(ref, recursive=True)
    files = _intent_files_from_tree(tree, kind)
    _read_symlink_targets(client, files, max_workers)
    files.sort(key=_sort_key)
    return files


def detect_intent_layer(client, ref: str, max_workers: int = 4) -> IntentLayerDetectionResult:
    """Detect both kinds of intent file on ``ref`` from a single tree listing."""
    tree = client.get_tree(ref, recursive=True)
    agents = _intent_files_from_tree(tree, "agents")
    claude = _intent_files_from_tree(tree, "claude")
    _read_symlink_targets(client, agents + claude, max_workers)
    agents.sort(key=_sort_key)
    claude.sort(key=_sort_key)
    logger.debug("Detected %d AGENTS.md and %d CLAUDE.md files on %s", len(agents), len(claude), ref)
    return IntentLayerDetectionResult(agents_files=agents, claude_files=claude,
                                      tree_files=_tree_file_sizes(tree))


def has_intent_layer(result: IntentLayerDetectionResult) -> bool:
    return bool(result.agents_files or result.claude_files)


def get_root_intent_file(files: List[IntentFile]) -> Optional[IntentFile]:
    for f in files:
        if "/" not in f.path:
            return f
    return None
