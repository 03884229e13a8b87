"""Intent layer commits on a PR branch.

Commit messages follow a fixed grammar so later runs (and humans reading
``git log``) can tell intent changes apart:

    [INTENT:ADD] path/to/AGENTS.md - reason
    [INTENT:UPDATE] path/to/AGENTS.md - reason
    [INTENT:REVERT] path/to/AGENTS.md - reason

Every write that replaces an existing file passes the file's live blob SHA;
GitHub rejects the write when the branch moved underneath us and the
client surfaces that as ConflictError. Nothing here retries.
"""

from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from intentlayer.core.intent.detector import AGENTS_FILENAME
from intentlayer.core.llm.output_schema import IntentUpdate
from intentlayer.lib.errors import ConflictError, IntentLayerError, MalformedInputError, NotFoundError
from intentlayer.lib.github_client import TreeFile
logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 100
DEFAULT_REVERT_REASON = "Reverted via checkbox"
BRANCH_PREFIX = "intent-layer"

_COMMIT_PREFIXES = {"create": "[INTENT:ADD]", "update": "[INTENT:UPDATE]", "delete": "[INTENT:REVERT]"}
_INTENT_COMMIT_RE = re.compile(r"^\[INTENT:(ADD|UPDATE|REVERT)\]\s+(\S+)\s+-\s+(.+)$")


@dataclass
class CommitResult:
    sha: str
    url: str
    file_path: str
    message: str


@dataclass
class IntentCommitOptions:
    branch: str
    symlink: bool = False
    symlink_source: str = "agents"


@dataclass
class RevertCommitOptions:
    branch: str
    applied_commit: str
    node_path: str
    other_node_path: Optional[str] = None
    reason: Optional[str] = None
    symlink: bool = False
    symlink_source: str = "agents"


@dataclass
class IntentLayerBranchResult:
    branch_name: str
    sha: str
    ref: str


@dataclass
class UpdateError:
    update: IntentUpdate
    error: str


@dataclass
class ApplyUpdatesResult:
    commits: List[CommitResult] = field(default_factory=list)
    applied_count: int = 0
    total_count: int = 0
    errors: List[UpdateError] = field(default_factory=list)


# ---------------------------------------------------------------------------
# messages
# ---------------------------------------------------------------------------

def _truncate_reason(reason: str) -> str:
    if len(reason) > MAX_REASON_LENGTH:
        return reason[:MAX_REASON_LENGTH - 3] + "..."
    return reason


def generate_add_commit_message(node_path: str, reason: str) -> str:
    return f"[INTENT:ADD] {node_path} - {_truncate_reason(reason)}"


def generate_update_commit_message(node_path: str, reason: str) -> str:
    return f"[INTENT:UPDATE] {node_path} - {_truncate_reason(reason)}"


def generate_revert_commit_message(node_path: str, reason: Optional[str] = None) -> str:
    return f"[INTENT:REVERT] {node_path} - {_truncate_reason(reason or DEFAULT_REVERT_REASON)}"


def get_commit_prefix(action: str) -> str:
    try:
        return _COMMIT_PREFIXES[action]
    except KeyError:
        raise MalformedInputError(f"Unknown intent action: {action!r}") from None


def parse_intent_commit_message(message: str) -> Optional[dict]:
    """Split an intent commit subject into type, node path and reason."""
    match = _INTENT_COMMIT_RE.match(message.split("\n", 1)[0])
    if not match:
        return None
    return {"type": match.group(1), "node_path": match.group(2), "reason": match.group(3)}


def is_intent_commit(message: str) -> bool:
    return re.match(r"^\[INTENT:(ADD|UPDATE|REVERT)\]", message) is not None


# ---------------------------------------------------------------------------
# file lookups
# ---------------------------------------------------------------------------

def get_file_sha(client, path: str, ref: str) -> Optional[str]:
    """Blob SHA of ``path`` at ``ref``, or None when the file is absent."""
    try:
        return client.get_file_content(path, ref).sha
    except NotFoundError:
        return None


def get_file_content_at_commit(client, path: str, ref: str) -> Optional[str]:
    try:
        return client.get_file_content(path, ref).content
    except NotFoundError:
        return None


def _is_agents_file(path: str) -> bool:
    return posixpath.basename(path) == AGENTS_FILENAME


def resolve_write_target(node_path: str, other_node_path: Optional[str], symlink: bool,
                         symlink_source: str = "agents") -> Tuple[str, Optional[str]]:
    """Return ``(source, secondary)`` for a proposal.

    With symlinks the source is whichever file ``symlink_source`` names and
    the secondary is the link; otherwise the node itself is the source.
    """
    if not (symlink and other_node_path):
        return node_path, other_node_path
    node_is_agents = _is_agents_file(node_path)
    node_is_source = node_is_agents == (symlink_source == "agents")
    if node_is_source:
        return node_path, other_node_path
    return other_node_path, node_path


def _result_from_contents(response: dict, path: str, message: str) -> CommitResult:
    commit = response.get("commit") or {}
    return CommitResult(sha=commit.get("sha") or "", url=commit.get("html_url") or "",
                        file_path=path, message=message)


def _require_action(update: IntentUpdate, action: str) -> None:
    if update.action != action:
        raise MalformedInputError(
            f"Cannot apply {update.action} proposal for {update.node_path} as {action}"
        )


# ---------------------------------------------------------------------------
# add / update / delete
# ---------------------------------------------------------------------------

def create_intent_add_commit(client, update: IntentUpdate, options: IntentCommitOptions) -> CommitResult:
    _require_action(update, "create")
    if get_file_sha(client, update.node_path, options.branch):
        raise ConflictError(
            f"Cannot create {update.node_path}: file already exists. Use update action instead.",
            path=update.node_path,
        )
    message = generate_add_commit_message(update.node_path, update.reason)

    if update.other_node_path and options.symlink:
        if not get_file_sha(client, update.other_node_path, options.branch):
            source, link = resolve_write_target(update.node_path, update.other_node_path,
                                                True, options.symlink_source)
            commit = client.create_files_with_symlinks(
                [
                    TreeFile(path=source, content=update.suggested_content),
                    TreeFile(path=link, content=posixpath.basename(source), is_symlink=True),
                ],
                message,
                options.branch,
            )
            logger.info("Created %s with %s linked to it", source, link)
            return CommitResult(sha=commit.get("sha") or "", url=commit.get("html_url") or "",
                                file_path=update.node_path, message=message)

    response = client.create_or_update_file(update.node_path, update.suggested_content, message, options.branch)
    result = _result_from_contents(response, update.node_path, message)

    if update.other_node_path and not options.symlink:
        if not get_file_sha(client, update.other_node_path, options.branch):
            client.create_or_update_file(
                update.other_node_path,
                update.suggested_content,
                f"[INTENT:ADD] {update.other_node_path} - Sync with {update.node_path}",
                options.branch,
            )
    logger.info("Committed %s as %s", update.node_path, result.sha or "(unknown sha)")
    return result


def create_intent_update_commit(client, update: IntentUpdate, options: IntentCommitOptions) -> CommitResult:
    _require_action(update, "update")
    existing_sha = get_file_sha(client, update.node_path, options.branch)
    if not existing_sha:
        raise NotFoundError(
            f"Cannot update {update.node_path}: file does not exist. Use create action instead.",
            path=update.node_path,
        )
    message = generate_update_commit_message(update.node_path, update.reason)

    if options.symlink and update.other_node_path:
        source, _link = resolve_write_target(update.node_path, update.other_node_path,
                                             True, options.symlink_source)
        source_sha = existing_sha if source == update.node_path else get_file_sha(client, source, options.branch)
        if source_sha:
            response = client.create_or_update_file(source, update.suggested_content, message,
                                                    options.branch, sha=source_sha)
            return _result_from_contents(response, update.node_path, message)

    response = client.create_or_update_file(update.node_path, update.suggested_content, message,
                                            options.branch, sha=existing_sha)
    result = _result_from_contents(response, update.node_path, message)

    if update.other_node_path and not options.symlink:
        other_sha = get_file_sha(client, update.other_node_path, options.branch)
        if other_sha:
            client.create_or_update_file(
                update.other_node_path,
                update.suggested_content,
                f"[INTENT:UPDATE] {update.other_node_path} - Sync with {update.node_path}",
                options.branch,
                sha=other_sha,
            )
    logger.info("Committed %s as %s", update.node_path, result.sha or "(unknown sha)")
    return result


def create_intent_delete_commit(client, update: IntentUpdate, options: IntentCommitOptions) -> CommitResult:
    _require_action(update, "delete")
    existing_sha = get_file_sha(client, update.node_path, options.branch)
    if not existing_sha:
        raise NotFoundError(f"Cannot delete {update.node_path}: file does not exist.", path=update.node_path)
    message = f"[INTENT:REVERT] {update.node_path} - {_truncate_reason(update.reason)}"
    response = client.delete_file(update.node_path, message, options.branch, existing_sha)
    result = _result_from_contents(response, update.node_path, message)

    if update.other_node_path:
        other_sha = get_file_sha(client, update.other_node_path, options.branch)
        if other_sha:
            client.delete_file(
                update.other_node_path,
                f"[INTENT:REVERT] {update.other_node_path} - Sync with {update.node_path}",
                options.branch,
                other_sha,
            )
    return result


# ---------------------------------------------------------------------------
# revert
# ---------------------------------------------------------------------------

def _restore_path(client, path: str, previous: Optional[str], message: str, branch: str) -> dict:
    current_sha = get_file_sha(client, path, branch)
    if not current_sha:
        raise NotFoundError(f"Cannot revert {path}: file no longer exists on branch {branch}", path=path)
    if previous is None:
        return client.delete_file(path, message, branch, current_sha)
    return client.create_or_update_file(path, previous, message, branch, sha=current_sha)


def create_intent_revert_commit(client, options: RevertCommitOptions) -> CommitResult:
    """Restore a node to its content before ``options.applied_commit``.

    The file is rewritten with its content at the first parent of the
    applied commit, or deleted if it did not exist there. The secondary
    path is reverted on its own; failing that never undoes the primary.
    """
    commit = client.get_commit(options.applied_commit)
    parents = commit.get("parents") or []
    if not parents:
        raise IntentLayerError(
            f"Cannot revert {options.node_path}: commit {options.applied_commit} has no parent"
        )
    parent_sha = parents[0]["sha"]

    primary, secondary = resolve_write_target(options.node_path, options.other_node_path,
                                              options.symlink, options.symlink_source)
    message = generate_revert_commit_message(options.node_path, options.reason)
    previous = get_file_content_at_commit(client, primary, parent_sha)
    response = _restore_path(client, primary, previous, message, options.branch)
    result = _result_from_contents(response, options.node_path, message)
    logger.info("Reverted %s to %s", primary, parent_sha)

    if secondary:
        try:
            _revert_secondary(client, secondary, options, parent_sha)
        except IntentLayerError as exc:
            logger.warning("Could not revert %s alongside %s: %s", secondary, options.node_path, exc)
    return result


def _revert_secondary(client, path: str, options: RevertCommitOptions, parent_sha: str) -> None:
    current_sha = get_file_sha(client, path, options.branch)
    if not current_sha:
        return
    message = f"[INTENT:REVERT] {path} - Sync with {options.node_path}"
    existed_before = get_file_sha(client, path, parent_sha) is not None
    if options.symlink:
        # A link follows its source; only a link added by the applied commit goes.
        if not existed_before:
            client.delete_file(path, message, options.branch, current_sha)
        return
    if not existed_before:
        client.delete_file(path, message, options.branch, current_sha)
        return
    previous = get_file_content_at_commit(client, path, parent_sha)
    client.create_or_update_file(path, previous or "", message, options.branch, sha=current_sha)


# ---------------------------------------------------------------------------
# branches and batches
# ---------------------------------------------------------------------------

def generate_intent_layer_branch_name(pull_number: int) -> str:
    return f"{BRANCH_PREFIX}/{pull_number}"


def create_intent_layer_branch(client, pull_number: int, base_sha: str) -> IntentLayerBranchResult:
    branch_name = generate_intent_layer_branch_name(pull_number)
    data = client.create_branch(branch_name, base_sha)
    return IntentLayerBranchResult(
        branch_name=branch_name,
        sha=(data.get("object") or {}).get("sha") or base_sha,
        ref=data.get("ref") or f"refs/heads/{branch_name}",
    )


def apply_intent_update(client, update: IntentUpdate, options: IntentCommitOptions) -> CommitResult:
    if update.action == "create":
        return create_intent_add_commit(client, update, options)
    if update.action == "update":
        return create_intent_update_commit(client, update, options)
    if update.action == "delete":
        return create_intent_delete_commit(client, update, options)
    raise MalformedInputError(f"Unknown action {update.action!r} for {update.node_path}")


def apply_updates_to_branch(client, updates: List[IntentUpdate], options: IntentCommitOptions,
                            stop_on_error: bool = False) -> ApplyUpdatesResult:
    """Apply each update as its own commit; one failure does not block the rest."""
    result = ApplyUpdatesResult(total_count=len(updates))
    for update in updates:
        try:
            result.commits.append(apply_intent_update(client, update, options))
        except IntentLayerError as exc:
            logger.warning("Failed to apply %s to %s: %s", update.action, update.node_path, exc)
            result.errors.append(UpdateError(update=update, error=str(exc)))
            if stop_on_error:
                break
    result.applied_count = len(result.commits)
    return result
