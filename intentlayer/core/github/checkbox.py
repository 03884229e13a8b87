"""Checkbox toggles on intent layer comments.

A proposal comment moves through three states, all recorded in its marker:

    Proposed --check--> Applied --uncheck--> Proposed
        \\                  \\
         +-- head moved / file gone --> Resolved

Checking commits the suggested content; unchecking an applied proposal
restores the file from the applied commit's parent. Our own edits to the
comment fire another ``issue_comment.edited`` event; those land in the
"nothing to do" branches (checked and applied, or unchecked and never
applied) and return before touching the API.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

from intentlayer.core.github.comments import (
    CommentMarkerData,
    add_committed_status,
    add_reverted_status,
    clear_comment_marker_applied_commit,
    detect_checkbox_state,
    extract_suggested_content,
    is_comment_resolved,
    mark_comment_as_resolved,
    parse_comment_marker,
    should_skip_checkbox_processing,
    update_comment_marker_with_commit,
)
from intentlayer.core.github.commits import (
    DEFAULT_REVERT_REASON,
    CommitResult,
    IntentCommitOptions,
    RevertCommitOptions,
    create_intent_add_commit,
    create_intent_revert_commit,
    create_intent_update_commit,
)
from intentlayer.core.llm.output_schema import IntentUpdate
from intentlayer.lib.errors import MalformedInputError, NotFoundError
logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_REASON = "Approved via checkbox"
_REASON_RE = re.compile(r"^\*\*Reason:\*\*\s*(.+)$", re.MULTILINE)

# Outcomes reported by the handler.
COMMITTED = "committed"
REVERTED = "reverted"
RESOLVED = "resolved"
SKIPPED = "skipped"
UNSTABLE = "unstable"


@dataclass
class CheckboxEvent:
    comment_id: int
    comment_body: str
    issue_number: int
    is_pull_request: bool
    action: str = "edited"


@dataclass
class DebounceResult:
    stable: bool
    is_checked: bool = False
    comment_body: Optional[str] = None
    marker: Optional[CommentMarkerData] = None
    reason: Optional[str] = None


@dataclass
class CheckboxResult:
    outcome: str
    node_path: Optional[str] = None
    commit: Optional[CommitResult] = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.outcome in (COMMITTED, REVERTED, SKIPPED)


# ---------------------------------------------------------------------------
# event payload
# ---------------------------------------------------------------------------

def load_event_payload(path: Optional[str] = None) -> dict:
    """Read the webhook payload the Actions runner stores at GITHUB_EVENT_PATH."""
    path = path or os.environ.get("GITHUB_EVENT_PATH", "")
    if not path:
        raise MalformedInputError("GITHUB_EVENT_PATH is not set; no event payload to read")
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        raise MalformedInputError(f"Event payload in {path} must be a JSON object")
    return payload


def validate_checkbox_event(payload: dict) -> Optional[CheckboxEvent]:
    """Pull the comment and issue out of an issue_comment payload, or None."""
    comment = payload.get("comment")
    issue = payload.get("issue")
    if not isinstance(comment, dict) or not isinstance(issue, dict):
        return None
    comment_id = comment.get("id")
    body = comment.get("body")
    number = issue.get("number")
    if not comment_id or not body or not number:
        return None
    return CheckboxEvent(
        comment_id=int(comment_id),
        comment_body=body,
        issue_number=int(number),
        is_pull_request="pull_request" in issue,
        action=payload.get("action") or "edited",
    )


# ---------------------------------------------------------------------------
# debounce
# ---------------------------------------------------------------------------

def debounce_checkbox_toggle(client, comment_id: int, initial_body: str, delay_seconds: float = 1.5,
                             max_attempts: int = 1, sleep: Callable[[float], None] = time.sleep) -> DebounceResult:
    """Wait, re-fetch, and require the body to have stopped changing.

    Each attempt sleeps once and compares the fresh body with the previous
    one. A match means the user is done toggling; running out of attempts
    means a later event will carry the final state.
    """
    if parse_comment_marker(initial_body) is None:
        return DebounceResult(stable=False, reason="Comment does not contain a valid intent layer marker")

    previous = initial_body
    for attempt in range(max(1, max_attempts)):
        sleep(delay_seconds)
        current = (client.get_comment(comment_id).get("body") or "")
        if not current:
            return DebounceResult(stable=False, reason="Comment body is empty after re-fetch")
        if current == previous:
            marker = parse_comment_marker(current)
            if marker is None:
                return DebounceResult(stable=False, reason="Comment marker is no longer valid after re-fetch")
            return DebounceResult(stable=True, is_checked=detect_checkbox_state(current).is_checked,
                                  comment_body=current, marker=marker)
        logger.debug("Comment %s changed during debounce attempt %d", comment_id, attempt + 1)
        previous = current
    return DebounceResult(stable=False, reason="Comment changed during debounce period")


# ---------------------------------------------------------------------------
# handlers
# ---------------------------------------------------------------------------

def extract_reason(body: str) -> str:
    match = _REASON_RE.search(body or "")
    return match.group(1).strip() if match else DEFAULT_APPROVAL_REASON


def reconstruct_intent_update_from_comment(body: str, marker: CommentMarkerData, action: str,
                                           current_content: Optional[str] = None) -> IntentUpdate:
    suggested = extract_suggested_content(body)
    if not suggested:
        raise MalformedInputError(f"No suggested content found in the comment for {marker.node_path}")
    return IntentUpdate(
        node_path=marker.node_path,
        other_node_path=marker.other_node_path,
        action=action,
        reason=extract_reason(body),
        current_content=current_content if action == "update" else None,
        suggested_content=suggested,
    )


def _resolve(client, comment_id: int, body: str, node_path: str, reason: str) -> CheckboxResult:
    client.update_comment(comment_id, mark_comment_as_resolved(body, reason))
    logger.info("Marked proposal for %s resolved: %s", node_path, reason)
    return CheckboxResult(outcome=RESOLVED, node_path=node_path, message=reason)


def handle_checked_checkbox(client, comment_id: int, body: str, marker: CommentMarkerData,
                            current_head_sha: str, options: IntentCommitOptions) -> CheckboxResult:
    if marker.applied_commit:
        return CheckboxResult(outcome=SKIPPED, node_path=marker.node_path,
                              message=f"Already applied in {marker.applied_commit}")
    if is_comment_resolved(body):
        return CheckboxResult(outcome=SKIPPED, node_path=marker.node_path, message="Proposal already resolved")
    if marker.head_sha != current_head_sha:
        return _resolve(client, comment_id, body, marker.node_path,
                        f"PR head moved from {marker.head_sha[:7]} to {current_head_sha[:7]}")

    try:
        current = client.get_file_content(marker.node_path, options.branch)
    except NotFoundError:
        current = None
    action = "update" if current is not None else "create"
    update = reconstruct_intent_update_from_comment(
        body, marker, action, current.content if current is not None else None,
    )

    try:
        if action == "create":
            commit = create_intent_add_commit(client, update, options)
        else:
            commit = create_intent_update_commit(client, update, options)
    except NotFoundError as exc:
        return _resolve(client, comment_id, body, marker.node_path,
                        f"{exc.path or marker.node_path} no longer exists on {options.branch}")

    new_body = add_committed_status(update_comment_marker_with_commit(body, commit.sha), commit.sha)
    client.update_comment(comment_id, new_body)
    return CheckboxResult(outcome=COMMITTED, node_path=marker.node_path, commit=commit,
                          message=f"Applied in commit {commit.sha}")


def handle_unchecked_checkbox(client, comment_id: int, body: str, marker: CommentMarkerData,
                              options: IntentCommitOptions) -> CheckboxResult:
    if not marker.applied_commit:
        return CheckboxResult(outcome=SKIPPED, node_path=marker.node_path, message="Nothing to revert")

    revert = RevertCommitOptions(
        branch=options.branch,
        applied_commit=marker.applied_commit,
        node_path=marker.node_path,
        other_node_path=marker.other_node_path,
        reason=DEFAULT_REVERT_REASON,
        symlink=options.symlink,
        symlink_source=options.symlink_source,
    )
    try:
        commit = create_intent_revert_commit(client, revert)
    except NotFoundError as exc:
        return _resolve(client, comment_id, body, marker.node_path,
                        f"{exc.path or marker.node_path} no longer exists on {options.branch}")

    new_body = add_reverted_status(clear_comment_marker_applied_commit(body), commit.sha)
    client.update_comment(comment_id, new_body)
    return CheckboxResult(outcome=REVERTED, node_path=marker.node_path, commit=commit,
                          message=f"Reverted in commit {commit.sha}")


def process_checkbox_event(client, event: CheckboxEvent, config,
                           sleep: Callable[[float], None] = time.sleep) -> CheckboxResult:
    """Run one edited-comment event through the state machine."""
    marker = parse_comment_marker(event.comment_body)
    if marker is None:
        return CheckboxResult(outcome=SKIPPED, message="Comment is not an intent layer proposal")
    state = detect_checkbox_state(event.comment_body)
    if not state.has_checkbox:
        return CheckboxResult(outcome=SKIPPED, node_path=marker.node_path, message="Comment has no checkbox")
    if should_skip_checkbox_processing(state.is_checked, marker.applied_commit):
        return CheckboxResult(outcome=SKIPPED, node_path=marker.node_path, message="Nothing to revert")
    if state.is_checked and marker.applied_commit:
        return CheckboxResult(outcome=SKIPPED, node_path=marker.node_path,
                              message=f"Already applied in {marker.applied_commit}")
    if is_comment_resolved(event.comment_body):
        return CheckboxResult(outcome=SKIPPED, node_path=marker.node_path, message="Proposal already resolved")

    settled = debounce_checkbox_toggle(
        client, event.comment_id, event.comment_body,
        delay_seconds=config.checkbox.debounce_delay_seconds,
        max_attempts=config.checkbox.max_debounce_attempts,
        sleep=sleep,
    )
    if not settled.stable:
        logger.info("Skipping comment %s: %s", event.comment_id, settled.reason)
        return CheckboxResult(outcome=UNSTABLE, node_path=marker.node_path, message=settled.reason or "")

    pr = client.get_pull_request(event.issue_number)
    head = pr.get("head") or {}
    options = IntentCommitOptions(
        branch=head.get("ref") or "",
        symlink=config.symlink,
        symlink_source=config.symlink_source,
    )
    if settled.is_checked:
        return handle_checked_checkbox(client, event.comment_id, settled.comment_body, settled.marker,
                                       head.get("sha") or "", options)
    return handle_unchecked_checkbox(client, event.comment_id, settled.comment_body, settled.marker, options)
