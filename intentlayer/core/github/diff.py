"""Render proposed intent-file changes as unified diffs for PR comments."""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import List

from intentlayer.core.llm.output_schema import IntentUpdate

ACTION_LABELS = {"create": "Create", "update": "Update", "delete": "Delete"}


@dataclass
class DiffStats:
    additions: int = 0
    deletions: int = 0

    @property
    def total_changes(self) -> int:
        return self.additions + self.deletions


@dataclass
class DiffResult:
    unified_diff: str
    stats: DiffStats

    @property
    def has_changes(self) -> bool:
        return self.stats.total_changes > 0


def normalize_line_endings(content: str) -> str:
    return content.replace("\r\n", "\n").replace("\r", "\n")


def _lines(content: str) -> List[str]:
    return content.splitlines(keepends=True)


def calculate_diff_stats(old: str, new: str) -> DiffStats:
    stats = DiffStats()
    for line in difflib.ndiff(_lines(old), _lines(new)):
        if line.startswith("+ "):
            stats.additions += 1
        elif line.startswith("- "):
            stats.deletions += 1
    return stats


def generate_diff(old: str, new: str, file_name: str, old_header: str = "Current",
                  new_header: str = "Proposed", context_lines: int = 3) -> DiffResult:
    old = normalize_line_endings(old)
    new = normalize_line_endings(new)
    diff_lines = []
    for line in difflib.unified_diff(
        _lines(old), _lines(new),
        fromfile=f"{file_name}\t{old_header}", tofile=f"{file_name}\t{new_header}",
        n=context_lines,
    ):
        diff_lines.append(line if line.endswith("\n") else line + "\n")
    return DiffResult(unified_diff="".join(diff_lines), stats=calculate_diff_stats(old, new))


def generate_diff_for_update(update: IntentUpdate, context_lines: int = 3) -> DiffResult:
    if update.action == "create":
        return generate_diff("", update.suggested_content or "", update.node_path,
                             old_header="(new file)", context_lines=context_lines)
    if update.action == "delete":
        return generate_diff(update.current_content or "", "", update.node_path,
                             new_header="(deleted)", context_lines=context_lines)
    return generate_diff(update.current_content or "", update.suggested_content or "",
                         update.node_path, context_lines=context_lines)


def _strip_diff_header(diff: str) -> str:
    lines = diff.split("\n")
    for index, line in enumerate(lines):
        if line.startswith("@@"):
            return "\n".join(lines[index:]).rstrip("\n")
    return diff.rstrip("\n")


def format_stats_line(stats: DiffStats, action: str) -> str:
    if action == "create":
        return f"**+{stats.additions} lines**"
    if action == "delete":
        return f"**-{stats.deletions} lines**"
    parts = []
    if stats.additions:
        parts.append(f"+{stats.additions}")
    if stats.deletions:
        parts.append(f"-{stats.deletions}")
    return f"**{', '.join(parts)} lines**" if parts else "**No changes**"


def format_diff_for_comment(result: DiffResult, update: IntentUpdate) -> str:
    if not result.has_changes and update.action == "update":
        return f"**{update.node_path}**\n\nNo changes detected."
    return "\n".join([
        f"### {ACTION_LABELS[update.action]}: `{update.node_path}`",
        "",
        f"**Reason:** {update.reason}",
        "",
        format_stats_line(result.stats, update.action),
        "",
        "<details>",
        "<summary>View diff</summary>",
        "",
        "```diff",
        _strip_diff_header(result.unified_diff),
        "```",
        "</details>",
    ])


def extract_added_content(comment_body: str) -> str:
    """Rebuild proposed content from the ``+`` lines of a rendered diff block.

    Used for comments that predate the full suggested-content block; context
    lines outside the hunks are lost, so this is only exact for new files.
    """
    comment_body = normalize_line_endings(comment_body)
    start = comment_body.find("```diff\n")
    if start == -1:
        return ""
    end = comment_body.find("\n```", start + len("```diff\n"))
    block = comment_body[start + len("```diff\n"):end if end != -1 else None]
    added = []
    for line in block.split("\n"):
        if line.startswith("+++"):
            continue
        if line.startswith("+"):
            added.append(line[1:])
        elif line.startswith(" "):
            added.append(line[1:])
    return "\n".join(added) + "\n" if added else ""
