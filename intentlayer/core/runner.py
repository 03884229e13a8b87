"""Top-level flows: analyze a PR, or react to a checkbox toggle.

Both flows take their collaborators (GitHub client, LLM provider) as
arguments so tests can drive them with fakes; the CLI builds the real ones
from the environment.
"""

from __future__ import annotations

import logging
import posixpath
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from intentlayer.config import IntentLayerConfig
from intentlayer.core.github.checkbox import (
    SKIPPED,
    CheckboxResult,
    load_event_payload,
    process_checkbox_event,
    validate_checkbox_event,
)
from intentlayer.core.github.comments import CommentPostResult, resolve_and_post_comments
from intentlayer.core.github.commits import (
    ApplyUpdatesResult,
    IntentCommitOptions,
    apply_updates_to_branch,
    create_intent_layer_branch,
)
from intentlayer.core.github.context import PRContext, extract_pr_context, is_pr_too_large
from intentlayer.core.github.pull_requests import (
    IntentLayerPullRequest,
    open_intent_layer_pull_request,
    post_intent_layer_link_comment,
)
from intentlayer.core.intent.analyzer import (
    determine_nodes_needing_update,
    filter_semantic_boundaries_for_initialization,
    identify_semantic_boundaries,
    map_changed_files_to_nodes,
    review_parent_nodes,
)
from intentlayer.core.intent.budget import find_nodes_exceeding_budget
from intentlayer.core.intent.detector import AGENTS_FILENAME, CLAUDE_FILENAME, detect_intent_layer
from intentlayer.core.intent.hierarchy import build_hierarchy
from intentlayer.core.intent.ignore import (
    INTENTLAYERIGNORE_FILENAME,
    IntentLayerIgnore,
    create_empty_ignore,
    parse_intent_layer_ignore,
)
from intentlayer.core.intent.validation import validate_and_fail_on_symlink_conflict
from intentlayer.core.llm.output_schema import IntentUpdate, parse_raw_llm_output
from intentlayer.core.llm.prompt_resolver import PatternMatchedPromptResolver
from intentlayer.core.llm.prompts import (
    IntentContext,
    PromptOptions,
    build_analysis_prompt,
    build_initialization_prompt,
    collect_custom_prompts,
)
from intentlayer.lib.errors import IntentLayerError, NotFoundError, large_pr_message, missing_pr_context_error
from intentlayer.lib.llm_clients import call_llm
from intentlayer.lib.providers import LLMProvider
from intentlayer.lib.worker_pool import run_callables
logger = logging.getLogger(__name__)

# Analysis outcomes.
SKIPPED_LARGE_PR = "skipped_large_pr"
NO_CANDIDATES = "no_candidates"
NO_UPDATES = "no_updates"
UPDATED = "updated"

# Share of the model context reserved for changed-file patches.
PATCH_BUDGET_FRACTION = 0.5


@dataclass
class OutputResult:
    mode: str
    comments: Optional[CommentPostResult] = None
    applied: Optional[ApplyUpdatesResult] = None
    pull_request: Optional[IntentLayerPullRequest] = None
    branch: str = ""


@dataclass
class AnalysisResult:
    status: str
    pull_number: int
    updates: List[IntentUpdate] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    output: Optional[OutputResult] = None
    message: str = ""


def get_pull_request_number(payload: dict) -> int:
    """PR number from a pull_request or issue_comment payload."""
    pr = payload.get("pull_request")
    if isinstance(pr, dict) and pr.get("number"):
        return int(pr["number"])
    issue = payload.get("issue")
    if isinstance(issue, dict) and issue.get("number") and "pull_request" in issue:
        return int(issue["number"])
    if payload.get("number"):
        return int(payload["number"])
    raise missing_pr_context_error()


def load_ignore(client, ref: str) -> IntentLayerIgnore:
    try:
        content = client.get_file_content(INTENTLAYERIGNORE_FILENAME, ref).content
    except NotFoundError:
        return create_empty_ignore()
    ignore = parse_intent_layer_ignore(content)
    logger.info("Loaded %d pattern(s) from %s", len(ignore.patterns), INTENTLAYERIGNORE_FILENAME)
    return ignore


def fetch_node_contents(client, paths: List[str], ref: str, max_workers: int = 4) -> Dict[str, str]:
    """Current content of each intent file at ``ref``."""
    unique = sorted(set(paths))
    contents = run_callables(
        [lambda p=p: client.get_file_content(p, ref).content for p in unique],
        max_workers=max_workers,
        pool_name="node-contents",
    )
    return dict(zip(unique, contents))


def sibling_intent_path(node_path: str) -> str:
    directory, name = posixpath.split(node_path)
    other = CLAUDE_FILENAME if name == AGENTS_FILENAME else AGENTS_FILENAME
    return posixpath.join(directory, other)


def with_other_node_paths(updates: List[IntentUpdate], files: str) -> List[IntentUpdate]:
    """When both kinds are managed, pair every update with its sibling file."""
    if files != "both":
        return updates
    return [
        u if u.other_node_path else replace(u, other_node_path=sibling_intent_path(u.node_path))
        for u in updates
    ]


def _prompt_options(config: IntentLayerConfig, custom_prompts: Dict[str, str]) -> PromptOptions:
    return PromptOptions(
        files=config.files,
        new_nodes_allowed=config.new_nodes,
        split_large_nodes=config.split_large_nodes,
        token_budget_percent=config.token_budget_percent,
        skip_binary_files=config.skip_binary_files,
        file_max_lines=config.file_max_lines,
        patch_token_budget=int(config.llm.context_window * PATCH_BUDGET_FRACTION),
        custom_prompts=custom_prompts,
    )


def build_prompt_for_pr(client, config: IntentLayerConfig, pr: PRContext) -> Optional[str]:
    """Run the decision engine; None when there is nothing to ask the model."""
    head_sha = pr.metadata.head_sha
    ignore = load_ignore(client, head_sha)
    detection = detect_intent_layer(client, head_sha, max_workers=config.github.max_read_workers)
    validate_and_fail_on_symlink_conflict(detection, config.symlink)

    kind = config.file_kind
    hierarchy = build_hierarchy(detection.files_for_kind(kind), kind)
    mapping = map_changed_files_to_nodes(pr.changed_files, hierarchy, ignore)
    resolver = PatternMatchedPromptResolver(config.prompts)
    changed_paths = [c.path for c in mapping.files if not c.is_ignored]

    boundaries = identify_semantic_boundaries(mapping, config.new_nodes, kind, config.analysis)
    if len(hierarchy) == 0:
        logger.info("No %s intent layer found on %s", kind, head_sha[:7])
        boundaries = filter_semantic_boundaries_for_initialization(boundaries, kind)
        if not boundaries.has_candidates:
            return None
        options = _prompt_options(config, collect_custom_prompts(resolver, changed_paths, kind))
        return build_initialization_prompt(pr.metadata, pr.changed_files, options, boundaries.candidates[0])

    direct = determine_nodes_needing_update(mapping, config.analysis)
    parents = review_parent_nodes(direct, config.analysis)
    if not direct.has_updates and not parents.has_recommended_updates and not boundaries.has_candidates:
        return None
    logger.info(
        "Found %d node(s) to update, %d parent node(s) to review, %d potential new node(s)",
        direct.total_nodes, parents.total_parent_nodes, boundaries.total_candidates,
    )

    node_paths = [c.node.path for c in direct.candidates] + [c.node.path for c in parents.candidates]
    intent = IntentContext(
        nodes_to_update=direct.candidates,
        parent_nodes_to_review=parents.candidates,
        potential_new_nodes=boundaries.candidates,
        current_contents=fetch_node_contents(client, node_paths, head_sha, config.github.max_read_workers),
    )
    if config.split_large_nodes:
        intent.oversized_nodes = find_nodes_exceeding_budget(
            [c.node for c in direct.candidates], hierarchy, detection.tree_files,
            config.token_budget_percent, ignore,
        )
    options = _prompt_options(config, collect_custom_prompts(resolver, changed_paths, kind))
    return build_analysis_prompt(pr, intent, options)


def handle_output(client, config: IntentLayerConfig, pr: PRContext, updates: List[IntentUpdate]) -> OutputResult:
    metadata = pr.metadata
    commit_options = IntentCommitOptions(branch=metadata.head_branch, symlink=config.symlink,
                                         symlink_source=config.symlink_source)

    if config.output == "pr_comments":
        comments = resolve_and_post_comments(client, metadata.number, updates, metadata.head_sha)
        logger.info("Posted %d comment(s), resolved %d stale comment(s)",
                    len(comments.posted_comments), len(comments.resolved_comments))
        return OutputResult(mode=config.output, comments=comments)

    if config.output == "pr_commit":
        if metadata.head_repo and metadata.head_repo != client.repository:
            raise IntentLayerError(
                f"Cannot commit to {metadata.head_branch}: the PR branch lives in fork {metadata.head_repo}"
            )
        applied = apply_updates_to_branch(client, updates, commit_options)
        _log_apply_result(applied, metadata.head_branch)
        return OutputResult(mode=config.output, applied=applied, branch=metadata.head_branch)

    branch = create_intent_layer_branch(client, metadata.number, metadata.head_sha)
    logger.info("Created branch %s", branch.branch_name)
    applied = apply_updates_to_branch(client, updates, replace(commit_options, branch=branch.branch_name))
    _log_apply_result(applied, branch.branch_name)
    result = OutputResult(mode=config.output, applied=applied, branch=branch.branch_name)
    if applied.applied_count == 0:
        logger.warning("No updates were applied to the intent layer branch")
        return result
    result.pull_request = open_intent_layer_pull_request(client, metadata.number, metadata.head_branch)
    logger.info("Created intent layer PR #%d: %s", result.pull_request.number, result.pull_request.url)
    post_intent_layer_link_comment(client, metadata.number, result.pull_request.number,
                                   result.pull_request.url, applied.applied_count)
    return result


def _log_apply_result(applied: ApplyUpdatesResult, branch: str) -> None:
    if applied.errors:
        logger.warning(
            "Applied %d/%d updates. Errors:\n%s",
            applied.applied_count, applied.total_count,
            "\n".join(f"  - {e.update.node_path}: {e.error}" for e in applied.errors),
        )
    else:
        logger.info("Applied all %d intent layer update(s) to branch %s", applied.applied_count, branch)


def run_analysis(config: IntentLayerConfig, client, provider: LLMProvider, pull_number: int) -> AnalysisResult:
    """Analyze one PR and publish the model's proposals."""
    logger.info("Analyzing PR #%d for intent layer updates", pull_number)
    pr = extract_pr_context(client, pull_number, max_workers=config.github.max_read_workers)

    if is_pr_too_large(pr.diff.summary, config.analysis.max_pr_lines_changed):
        lines = pr.diff.summary.total_additions + pr.diff.summary.total_deletions
        message = large_pr_message(lines, config.analysis.max_pr_lines_changed)
        logger.info(message)
        return AnalysisResult(status=SKIPPED_LARGE_PR, pull_number=pull_number, message=message)

    prompt = build_prompt_for_pr(client, config, pr)
    if prompt is None:
        logger.info("No intent layer updates needed for this PR.")
        return AnalysisResult(status=NO_CANDIDATES, pull_number=pull_number)

    logger.info("Sending prompt to LLM (%d chars)", len(prompt))
    result = call_llm(provider, "", prompt, max_tokens=config.llm.max_output_tokens,
                      timeout=config.llm.timeout_seconds)
    output = parse_raw_llm_output(result.text or "")
    if not output.has_updates:
        logger.info("LLM analysis complete: no updates suggested.")
        return AnalysisResult(status=NO_UPDATES, pull_number=pull_number, rejected=output.rejected)

    updates = with_other_node_paths(output.updates, config.files)
    logger.info("LLM suggested %d intent layer update(s)", len(updates))
    return AnalysisResult(
        status=UPDATED,
        pull_number=pull_number,
        updates=updates,
        rejected=output.rejected,
        output=handle_output(client, config, pr, updates),
    )


def run_checkbox_handler(config: IntentLayerConfig, client, payload: Optional[dict] = None,
                         sleep: Callable[[float], None] = time.sleep) -> CheckboxResult:
    """Handle an ``issue_comment.edited`` event."""
    payload = payload if payload is not None else load_event_payload()
    event = validate_checkbox_event(payload)
    if event is None:
        logger.info("Event is not a valid checkbox event, skipping")
        return CheckboxResult(outcome=SKIPPED, message="Not a checkbox event")
    if event.action != "edited":
        return CheckboxResult(outcome=SKIPPED, message=f"Ignoring comment action {event.action!r}")
    if not event.is_pull_request:
        logger.info("Comment is not on a pull request, skipping")
        return CheckboxResult(outcome=SKIPPED, message="Comment is not on a pull request")

    result = process_checkbox_event(client, event, config, sleep=sleep)
    logger.info("Checkbox on comment %d: %s %s", event.comment_id, result.outcome, result.message)
    return result
