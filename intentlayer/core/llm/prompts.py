"""Prompt building for intent layer analysis.

The analysis prompt is assembled from independent sections (PR metadata,
commits, changed files, candidate nodes, ...). Empty sections are dropped,
so callers can pass whatever the analyzer produced.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from intentlayer.core.github.context import LinkedIssue, PRChangedFile, PRCommit, PRContext, PRMetadata
from intentlayer.core.intent.analyzer import (
    NodeUpdateCandidate,
    ParentReviewCandidate,
    SemanticBoundaryCandidate,
)
from intentlayer.core.intent.budget import NodeBudget
from intentlayer.core.llm.prompt_resolver import PatternMatchedPromptResolver
from intentlayer.lib.tokens import count_lines, count_tokens, is_binary_content

OUTPUT_SCHEMA_DESCRIPTION = """You MUST respond with ONLY a valid JSON object matching this exact schema:

{
  "updates": [
    {
      "nodePath": "path/to/AGENTS.md",
      "otherNodePath": "path/to/CLAUDE.md",  // optional, only when managing both files
      "action": "create" | "update" | "delete",
      "reason": "Human-readable explanation of why this change is needed",
      "currentContent": "...",  // required for update/delete, omit for create
      "suggestedContent": "..."  // required for create/update, omit for delete
    }
  ]
}

CRITICAL RULES:
- Output ONLY the JSON object, no markdown code blocks, no explanatory text before or after
- "nodePath" must be a valid file path ending in AGENTS.md or CLAUDE.md
- "action" must be exactly one of: "create", "update", "delete"
- For "create": include "suggestedContent", do NOT include "currentContent"
- For "update": include BOTH "currentContent" (exact current file content) AND "suggestedContent"
- For "delete": include "currentContent", do NOT include "suggestedContent"
- If no updates are needed, return: {"updates": []}
- All string values must be properly JSON-escaped (especially newlines as \\n)
"""

ANALYST_ROLE = """You are an expert Intent Layer Analyst. Your job is to analyze code changes in a pull request and determine what updates (if any) should be made to the repository's intent layer files (AGENTS.md and/or CLAUDE.md).

Intent layer files give AI agents high-signal, compressed context about the codebase. They describe:
- What the code in this directory does
- Key patterns and conventions
- Important architectural decisions
- How to work with this part of the codebase

Be conservative: only suggest updates when the changes genuinely warrant documentation updates. Don't suggest updates for minor refactoring, typo fixes, or changes that don't affect the documented behavior or patterns."""

CONTENT_GUIDELINES = """When writing intent layer content:
- Be concise but informative
- Focus on the "why" not just the "what"
- Document patterns, conventions, and important decisions
- Mention key dependencies and integrations
- Include guidance for AI agents working in this area
- Use markdown formatting appropriately
- Keep content proportional to the complexity of the covered code
- Avoid duplicating information from parent nodes
"""

RESPOND_WITH_JSON = "Respond with ONLY the JSON object. No other text."

MAX_COMMIT_MESSAGE_CHARS = 200
MAX_AFFECTED_FILES_LISTED = 10
MAX_UNCOVERED_FILES_LISTED = 5
MAX_INIT_FILES_LISTED = 30


@dataclass
class PromptOptions:
    files: str = "agents"  # "agents" | "claude" | "both"
    new_nodes_allowed: bool = True
    split_large_nodes: bool = True
    token_budget_percent: float = 5.0
    skip_binary_files: bool = True
    file_max_lines: int = 8000
    max_patch_lines: int = 100
    # Token allowance for the changed-files section; 0 means unlimited.
    patch_token_budget: int = 0
    custom_prompts: Dict[str, str] = field(default_factory=dict)


@dataclass
class IntentContext:
    nodes_to_update: List[NodeUpdateCandidate] = field(default_factory=list)
    parent_nodes_to_review: List[ParentReviewCandidate] = field(default_factory=list)
    potential_new_nodes: List[SemanticBoundaryCandidate] = field(default_factory=list)
    oversized_nodes: List[NodeBudget] = field(default_factory=list)
    # node path -> current file content
    current_contents: Dict[str, str] = field(default_factory=dict)


def _intent_filename(files: str) -> str:
    return "CLAUDE.md" if files == "claude" else "AGENTS.md"


def _managed_files_description(files: str) -> str:
    if files == "both":
        return "AGENTS.md and CLAUDE.md files"
    return f"{_intent_filename(files)} files"


def format_pr_metadata(metadata: PRMetadata) -> str:
    lines = [f"# Pull Request #{metadata.number}: {metadata.title}", ""]
    if metadata.description:
        lines.extend(["## Description", metadata.description, ""])
    lines.append("## Summary")
    lines.append(f"- Branch: {metadata.head_branch} -> {metadata.base_branch}")
    lines.append(f"- Files changed: {metadata.changed_files_count}")
    lines.append(f"- Lines: +{metadata.additions} / -{metadata.deletions}")
    lines.append(f"- Commits: {metadata.commits_count}")
    if metadata.labels:
        lines.append(f"- Labels: {', '.join(metadata.labels)}")
    return "\n".join(lines)


def format_commits(commits: List[PRCommit]) -> str:
    if not commits:
        return "No commits."
    lines = ["## Commits"]
    for commit in commits:
        message = commit.message
        if len(message) > MAX_COMMIT_MESSAGE_CHARS:
            message = message[:MAX_COMMIT_MESSAGE_CHARS] + "..."
        lines.append(f"- {commit.sha[:7]}: {message.splitlines()[0] if message else ''}")
    return "\n".join(lines)


def format_linked_issues(issues: List[LinkedIssue]) -> str:
    if not issues:
        return ""
    lines = ["## Linked Issues"]
    for issue in issues:
        repo_ref = f"{issue.owner}/{issue.repo}" if issue.owner and issue.repo else ""
        lines.append(f"- {issue.keyword} {repo_ref}#{issue.number}")
    return "\n".join(lines)


def format_changed_files(files: List[PRChangedFile], options: Optional[PromptOptions] = None) -> str:
    """Changed files with patches, truncated per file and capped overall."""
    options = options or PromptOptions()
    lines = ["## Changed Files"]
    used_tokens = 0
    omitted = 0
    for f in files:
        lines.append("")
        lines.append(f"### {f.filename} ({f.status})")
        lines.append(f"+{f.additions} / -{f.deletions}")
        if f.previous_filename:
            lines.append(f"Renamed from: {f.previous_filename}")

        if not f.patch:
            lines.append("(patch not available - binary or large file)")
            continue
        if options.skip_binary_files and is_binary_content(f.patch):
            lines.append("(binary file skipped)")
            continue
        if options.file_max_lines > 0 and count_lines(f.patch) > options.file_max_lines:
            lines.append(f"(patch skipped - exceeds {options.file_max_lines} lines)")
            continue

        patch_lines = f.patch.split("\n")
        shown = "\n".join(patch_lines[:options.max_patch_lines])
        tokens = count_tokens(shown)
        if options.patch_token_budget and used_tokens + tokens > options.patch_token_budget:
            omitted += 1
            lines.append("(patch omitted - prompt token budget reached)")
            continue
        used_tokens += tokens
        lines.append("```diff")
        lines.append(shown)
        if len(patch_lines) > options.max_patch_lines:
            lines.append(f"... ({len(patch_lines) - options.max_patch_lines} more lines truncated)")
        lines.append("```")

    if omitted:
        lines.append("")
        lines.append(f"Note: patches for {omitted} file(s) were omitted to stay within the token budget.")
    return "\n".join(lines)


def _content_block(content: Optional[str]) -> List[str]:
    return ["```markdown", content or "(empty file)", "```"]


def format_node_update_candidate(candidate: NodeUpdateCandidate, current_content: Optional[str]) -> str:
    lines = [
        f"### {candidate.node.path}",
        "",
        f"**Update Reason:** {candidate.update_reason}",
        "",
        "**Current Content:**",
        *_content_block(current_content),
        "",
        f"**Affected Files ({len(candidate.changed_files)}):**",
    ]
    for coverage in candidate.changed_files[:MAX_AFFECTED_FILES_LISTED]:
        lines.append(f"- {coverage.file.filename} ({coverage.file.status})")
    if len(candidate.changed_files) > MAX_AFFECTED_FILES_LISTED:
        lines.append(f"- ... and {len(candidate.changed_files) - MAX_AFFECTED_FILES_LISTED} more files")
    return "\n".join(lines)


def format_parent_node_candidates(candidates: List[ParentReviewCandidate],
                                  current_contents: Dict[str, str]) -> str:
    if not candidates:
        return ""
    lines = [
        "## Parent Nodes (Review for Potential Updates)",
        "",
        "The following parent nodes have children being updated. By default, parent nodes should NOT be "
        "updated unless there are clear cross-cutting changes. Review conservatively.",
        "",
    ]
    for candidate in candidates:
        lines.append(f"### {candidate.node.path}")
        lines.append("")
        lines.append(f"**Recommendation:** {'Consider updating' if candidate.recommend_update else 'No update needed'}")
        lines.append(f"**Reason:** {candidate.recommendation_reason}")
        lines.append(f"**Updated children:** {', '.join(c.node.path for c in candidate.updated_children)}")
        lines.append("")
        lines.append("**Current Content:**")
        lines.extend(_content_block(current_contents.get(candidate.node.path)))
        lines.append("")
    return "\n".join(lines)


def format_semantic_boundary_candidates(candidates: List[SemanticBoundaryCandidate],
                                        new_nodes_allowed: bool) -> str:
    if not new_nodes_allowed or not candidates:
        return ""
    lines = [
        "## Potential New Intent Nodes",
        "",
        "The following directories contain uncovered changed files and may benefit from their own intent "
        "node. Only suggest creating a new node if the directory represents a clear semantic boundary.",
        "",
    ]
    for candidate in candidates:
        lines.append(f"### {candidate.suggested_node_path}")
        lines.append("")
        lines.append(f"**Directory:** {candidate.directory or '(root)'}")
        lines.append(f"**Confidence:** {candidate.confidence * 100:.0f}%")
        lines.append(f"**Reason:** {candidate.reason}")
        lines.append("")
        lines.append(f"**Uncovered Files ({len(candidate.uncovered_files)}):**")
        for coverage in candidate.uncovered_files[:MAX_UNCOVERED_FILES_LISTED]:
            lines.append(f"- {coverage.file.filename}")
        if len(candidate.uncovered_files) > MAX_UNCOVERED_FILES_LISTED:
            lines.append(f"- ... and {len(candidate.uncovered_files) - MAX_UNCOVERED_FILES_LISTED} more files")
        lines.append("")
    return "\n".join(lines)


def format_oversized_nodes(budgets: List[NodeBudget], token_budget_percent: float) -> str:
    if not budgets:
        return ""
    lines = [
        "## Oversized Intent Nodes",
        "",
        f"These nodes exceed the token budget ({token_budget_percent:g}% of the code they cover). "
        "When you touch one of them, prefer moving detail into new child nodes for the suggested "
        "subdirectories over growing the parent.",
        "",
    ]
    for budget in budgets:
        lines.append(f"### {budget.node.path}")
        lines.append(f"- Size: ~{budget.node_tokens} tokens ({budget.budget_percent:.1f}% of "
                     f"~{budget.covered_tokens} covered tokens)")
        for split in budget.split_suggestions:
            lines.append(f"- Split candidate: {split.suggested_node_path} "
                         f"({split.file_count} files, {split.coverage_percent:.0f}% of covered code)")
        lines.append("")
    return "\n".join(lines)


def collect_custom_prompts(resolver: Optional[PatternMatchedPromptResolver], paths: Iterable[str],
                           file_kind: str) -> Dict[str, str]:
    """Custom prompts matching any of ``paths``, keyed by pattern."""
    if resolver is None or not len(resolver):
        return {}
    found: Dict[str, str] = {}
    for path in paths:
        config = resolver.resolve(path)
        if config is None or config.pattern in found:
            continue
        prompt = config.for_kind(file_kind)
        if prompt:
            found[config.pattern] = prompt
    return found


def format_custom_prompts(custom_prompts: Dict[str, str]) -> str:
    if not custom_prompts:
        return ""
    lines = ["## Repository-Specific Instructions", ""]
    for pattern, prompt in custom_prompts.items():
        lines.append(f"### Files matching `{pattern}`")
        lines.append(prompt.strip())
        lines.append("")
    return "\n".join(lines)


def _file_kind_rules(files: str) -> List[str]:
    if files == "both":
        return [
            "- Each node exists as both AGENTS.md and CLAUDE.md; set nodePath to the AGENTS.md path "
            "and otherNodePath to the CLAUDE.md path in the same directory",
        ]
    return [f"- Only propose {_intent_filename(files)} files"]


def build_analysis_prompt(pr: PRContext, intent: IntentContext, options: Optional[PromptOptions] = None) -> str:
    options = options or PromptOptions()
    sections: List[str] = [
        ANALYST_ROLE,
        OUTPUT_SCHEMA_DESCRIPTION,
        CONTENT_GUIDELINES,
        "\n".join([
            "## Configuration",
            f"- Managing: {_managed_files_description(options.files)}",
            f"- New node creation: {'allowed' if options.new_nodes_allowed else 'NOT allowed'}",
            f"- Suggest node splits: {'yes' if options.split_large_nodes else 'no'}",
        ]),
        format_pr_metadata(pr.metadata),
        format_commits(pr.commits),
        format_linked_issues(pr.linked_issues),
        format_changed_files(pr.changed_files, options),
    ]

    if intent.nodes_to_update:
        block = [
            "## Intent Nodes Requiring Update",
            "",
            "The following intent nodes cover changed files and should be reviewed for updates:",
        ]
        for candidate in intent.nodes_to_update:
            block.append("")
            block.append(format_node_update_candidate(candidate, intent.current_contents.get(candidate.node.path)))
        sections.append("\n".join(block))
    else:
        sections.append(
            "## Intent Nodes\n\nNo existing intent nodes directly cover the changed files. "
            "Consider whether new nodes are needed (if allowed)."
        )

    sections.append(format_parent_node_candidates(intent.parent_nodes_to_review, intent.current_contents))
    sections.append(format_semantic_boundary_candidates(intent.potential_new_nodes, options.new_nodes_allowed))
    if options.split_large_nodes:
        sections.append(format_oversized_nodes(intent.oversized_nodes, options.token_budget_percent))
    sections.append(format_custom_prompts(options.custom_prompts))

    task = [
        "## Your Task",
        "",
        "Analyze the changes above and determine what updates (if any) should be made to the intent layer files.",
        "",
        "Remember:",
        "- Be conservative - only update when genuinely needed",
        "- Focus on the nearest covering node; parent nodes rarely need updates",
        "- For updates, you MUST include the exact current content in currentContent",
        "- Write concise, high-signal documentation",
        *_file_kind_rules(options.files),
    ]
    if not options.new_nodes_allowed:
        task.append("- New node creation is NOT allowed for this repository")
    sections.append("\n".join(task))
    sections.append(RESPOND_WITH_JSON)
    return "\n\n".join(s for s in sections if s)


def build_initialization_prompt(metadata: PRMetadata, changed_files: List[PRChangedFile],
                                options: Optional[PromptOptions] = None,
                                candidate: Optional[SemanticBoundaryCandidate] = None) -> str:
    """Prompt for a repository with no intent layer: propose one root file."""
    options = options or PromptOptions()
    filename = _intent_filename(options.files)
    files_block = [f"## Changed Files ({len(changed_files)})"]
    for f in changed_files[:MAX_INIT_FILES_LISTED]:
        files_block.append(f"- {f.filename}")
    if len(changed_files) > MAX_INIT_FILES_LISTED:
        files_block.append(f"- ... and {len(changed_files) - MAX_INIT_FILES_LISTED} more files")

    task = [
        "## Task: Initialize Intent Layer",
        "",
        f"This repository does not have an intent layer yet. Create a root {filename} file that provides "
        "high-level context about the repository.",
        "",
        "For initial creation, focus on:",
        "- What the repository/project is about",
        "- Key technologies and patterns used",
        "- How the codebase is organized",
        "- Important conventions for AI agents to follow",
        *_file_kind_rules(options.files),
    ]
    if candidate is not None:
        task.extend(["", f"**Reason:** {candidate.reason}"])

    sections = [
        ANALYST_ROLE,
        OUTPUT_SCHEMA_DESCRIPTION,
        CONTENT_GUIDELINES,
        "\n".join(task),
        f"## Current PR: {metadata.title}\n{metadata.description or '(no description)'}",
        "\n".join(files_block),
        format_custom_prompts(options.custom_prompts),
        RESPOND_WITH_JSON,
    ]
    return "\n\n".join(s for s in sections if s)
