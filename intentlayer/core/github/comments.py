"""PR comment protocol for intent layer proposals.

Every proposal lives in one issue comment:

    <!-- INTENT_LAYER node=src%2FAGENTS.md appliedCommit= headSha=abc123 -->

    ### Update: `src/AGENTS.md`
    ... rendered diff ...

    <details><summary>Suggested content</summary> ... full content ... </details>

    ---

    - [ ] Apply this change

The hidden marker is the only durable state: which node the comment is
about, the PR head it was generated against, and the commit that applied it
(empty while not applied). Marker values are percent-encoded so paths with
spaces, ``%`` or ``=`` survive the round trip.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional
from urllib.parse import quote, unquote

from intentlayer.core.github.diff import (
    extract_added_content,
    format_diff_for_comment,
    generate_diff_for_update,
    normalize_line_endings,
)
from intentlayer.core.llm.output_schema import IntentUpdate
logger = logging.getLogger(__name__)

INTENT_LAYER_MARKER_PREFIX = "<!-- INTENT_LAYER"
INTENT_LAYER_MARKER_SUFFIX = "-->"
MARKER_RE = re.compile(r"<!-- INTENT_LAYER\s+(.*?)\s*-->", re.DOTALL)

CHECKBOX_UNCHECKED = "- [ ] Apply this change"
CHECKBOX_CHECKED = "- [x] Apply this change"
_CHECKBOX_RE = re.compile(r"^- \[([ xX])\] Apply this change\s*$", re.MULTILINE)

RESOLVED_TAG = "**RESOLVED**"
DEFAULT_RESOLVED_REASON = "PR has been updated"
# Marker values are percent-encoded, so the marker itself never contains ">".
_RESOLVED_BANNER_RE = re.compile(r"<!-- INTENT_LAYER[^>]*-->\s*\*\*RESOLVED\*\* - ")
_STATUS_RE = re.compile(r"^\*\*(?:COMMITTED|REVERTED)\*\* - .*(?:\r?\n)?", re.MULTILINE)

SUGGESTED_CONTENT_SUMMARY = "<summary>Suggested content</summary>"
NO_TRAILING_NEWLINE = "<!-- no trailing newline -->"
_SUGGESTED_RE = re.compile(
    r"<summary>Suggested content</summary>\r?\n\r?\n(?P<fence>`{3,})markdown\r?\n(?P<body>.*?)\r?\n(?P=fence)\r?\n"
    r"(?P<noeol><!-- no trailing newline -->\r?\n)?",
    re.DOTALL,
)


@dataclass
class CommentMarkerData:
    node_path: str
    head_sha: str
    other_node_path: Optional[str] = None
    applied_commit: Optional[str] = None


@dataclass
class CheckboxState:
    has_checkbox: bool
    is_checked: bool


@dataclass
class PostedComment:
    update: IntentUpdate
    comment_id: int
    comment_url: str = ""


@dataclass
class ResolvedComment:
    comment_id: int
    node_path: str


@dataclass
class CommentPostResult:
    resolved_comments: List[ResolvedComment] = field(default_factory=list)
    posted_comments: List[PostedComment] = field(default_factory=list)


# ---------------------------------------------------------------------------
# marker
# ---------------------------------------------------------------------------

def _encode(value: str) -> str:
    return quote(value, safe="")


def generate_comment_marker(data: CommentMarkerData) -> str:
    parts = [f"node={_encode(data.node_path)}"]
    if data.other_node_path:
        parts.append(f"otherNode={_encode(data.other_node_path)}")
    parts.append(f"appliedCommit={_encode(data.applied_commit or '')}")
    parts.append(f"headSha={_encode(data.head_sha)}")
    return f"{INTENT_LAYER_MARKER_PREFIX} {' '.join(parts)} {INTENT_LAYER_MARKER_SUFFIX}"


def parse_comment_marker(body: Optional[str]) -> Optional[CommentMarkerData]:
    """Decode the first marker in ``body``; None when absent or incomplete."""
    if not body:
        return None
    match = MARKER_RE.search(body)
    if not match:
        return None
    fields = {}
    for token in match.group(1).split():
        key, sep, value = token.partition("=")
        if sep and key not in fields:
            fields[key] = unquote(value)
    if not fields.get("node") or not fields.get("headSha"):
        return None
    return CommentMarkerData(
        node_path=fields["node"],
        other_node_path=fields.get("otherNode") or None,
        applied_commit=fields.get("appliedCommit") or None,
        head_sha=fields["headSha"],
    )


def has_intent_layer_marker(body: Optional[str]) -> bool:
    return bool(body) and MARKER_RE.search(body) is not None


def _replace_marker(body: str, data: CommentMarkerData) -> str:
    return MARKER_RE.sub(lambda _m: generate_comment_marker(data), body, count=1)


def update_comment_marker_with_commit(body: str, applied_commit: str) -> str:
    marker = parse_comment_marker(body)
    if marker is None:
        return body
    return _replace_marker(body, replace(marker, applied_commit=applied_commit))


def clear_comment_marker_applied_commit(body: str) -> str:
    marker = parse_comment_marker(body)
    if marker is None:
        return body
    return _replace_marker(body, replace(marker, applied_commit=None))


# ---------------------------------------------------------------------------
# checkbox
# ---------------------------------------------------------------------------

def detect_checkbox_state(body: Optional[str]) -> CheckboxState:
    match = _CHECKBOX_RE.search(body or "")
    if not match:
        return CheckboxState(has_checkbox=False, is_checked=False)
    return CheckboxState(has_checkbox=True, is_checked=match.group(1) in "xX")


def has_checkbox(body: Optional[str]) -> bool:
    return detect_checkbox_state(body).has_checkbox


def is_checkbox_checked(body: Optional[str]) -> bool:
    return detect_checkbox_state(body).is_checked


def update_checkbox_state(body: str, checked: bool) -> str:
    line = CHECKBOX_CHECKED if checked else CHECKBOX_UNCHECKED
    return _CHECKBOX_RE.sub(line, body, count=1)


def should_skip_checkbox_processing(is_checked: bool, applied_commit: Optional[str]) -> bool:
    """Unchecked and never applied: nothing to apply, nothing to revert."""
    return not is_checked and not applied_commit


# ---------------------------------------------------------------------------
# status lines
# ---------------------------------------------------------------------------

def mark_comment_as_resolved(body: str, reason: Optional[str] = None) -> str:
    if is_comment_resolved(body):
        return body
    match = MARKER_RE.search(body)
    if not match:
        return body
    banner = f"\n\n{RESOLVED_TAG} - This suggestion is no longer applicable ({reason or DEFAULT_RESOLVED_REASON}).\n"
    return body[:match.end()] + banner + body[match.end():]


def is_comment_resolved(body: Optional[str]) -> bool:
    """True when the resolved banner sits right after the marker."""
    return bool(body) and _RESOLVED_BANNER_RE.search(body) is not None


def _set_status(body: str, status_line: str) -> str:
    # Status lines inside the suggested content belong to the proposal.
    match = _SUGGESTED_RE.search(body)
    if match:
        body = (_STATUS_RE.sub("", body[:match.start()]) + match.group(0)
                + _STATUS_RE.sub("", body[match.end():]))
    else:
        body = _STATUS_RE.sub("", body)
    body = body.rstrip("\r\n")
    return f"{body}\n\n{status_line}\n"


def add_committed_status(body: str, commit_sha: str) -> str:
    return _set_status(body, f"**COMMITTED** - Applied in commit {commit_sha}")


def add_reverted_status(body: str, commit_sha: str) -> str:
    return _set_status(body, f"**REVERTED** - Reverted in commit {commit_sha}")


# ---------------------------------------------------------------------------
# rendering
# ---------------------------------------------------------------------------

def _fence_for(content: str) -> str:
    longest = max((len(m.group(0)) for m in re.finditer(r"`+", content)), default=0)
    return "`" * max(3, longest + 1)


def format_suggested_content(content: str) -> str:
    """Collapsible block holding the exact proposed file content.

    The closing fence implies one trailing newline; content without one is
    flagged with ``NO_TRAILING_NEWLINE`` after the fence.
    """
    fence = _fence_for(content)
    has_eol = content.endswith("\n")
    lines = [
        "<details>",
        SUGGESTED_CONTENT_SUMMARY,
        "",
        f"{fence}markdown",
        content[:-1] if has_eol else content,
        fence,
    ]
    if not has_eol:
        lines.append(NO_TRAILING_NEWLINE)
    lines.append("</details>")
    return "\n".join(lines)


def extract_suggested_content(body: str) -> Optional[str]:
    """Recover the proposed content from a comment, or None if unavailable."""
    body = normalize_line_endings(body or "")
    match = _SUGGESTED_RE.search(body)
    if match:
        content = match.group("body")
        return content if match.group("noeol") else content + "\n"
    fallback = extract_added_content(body)
    return fallback or None


def generate_comment(update: IntentUpdate, head_sha: str, include_checkbox: bool = True) -> str:
    marker = CommentMarkerData(
        node_path=update.node_path,
        other_node_path=update.other_node_path,
        head_sha=head_sha,
    )
    lines = [
        generate_comment_marker(marker),
        "",
        format_diff_for_comment(generate_diff_for_update(update), update),
        "",
    ]
    if update.suggested_content is not None and update.action != "delete":
        lines.append(format_suggested_content(update.suggested_content))
        lines.append("")
    if include_checkbox:
        lines.extend(["---", "", CHECKBOX_UNCHECKED])
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# lookup
# ---------------------------------------------------------------------------

def find_intent_layer_comments(comments: Iterable[dict]) -> List[dict]:
    return [c for c in comments if has_intent_layer_marker(c.get("body"))]


def find_comment_for_node(comments: Iterable[dict], node_path: str) -> Optional[dict]:
    for comment in comments:
        marker = parse_comment_marker(comment.get("body"))
        if marker is not None and marker.node_path == node_path:
            return comment
    return None


# ---------------------------------------------------------------------------
# posting
# ---------------------------------------------------------------------------

def post_comments_for_updates(client, pull_number: int, updates: List[IntentUpdate], head_sha: str,
                              include_checkbox: bool = True) -> List[PostedComment]:
    posted = []
    for update in updates:
        created = client.create_comment(pull_number, generate_comment(update, head_sha, include_checkbox))
        posted.append(PostedComment(
            update=update,
            comment_id=int(created.get("id") or 0),
            comment_url=created.get("html_url") or "",
        ))
        logger.info("Posted intent layer proposal for %s", update.node_path)
    return posted


def resolve_and_post_comments(client, pull_number: int, updates: List[IntentUpdate], head_sha: str,
                              include_checkbox: bool = True) -> CommentPostResult:
    """Mark earlier open proposals resolved, then post one comment per update."""
    result = CommentPostResult()
    for comment in find_intent_layer_comments(client.get_issue_comments(pull_number)):
        body = comment.get("body") or ""
        if is_comment_resolved(body):
            continue
        marker = parse_comment_marker(body)
        if marker is None:
            continue
        client.update_comment(comment["id"], mark_comment_as_resolved(body))
        result.resolved_comments.append(ResolvedComment(comment_id=comment["id"], node_path=marker.node_path))
    if result.resolved_comments:
        logger.info("Resolved %d earlier intent layer comment(s)", len(result.resolved_comments))
    result.posted_comments = post_comments_for_updates(client, pull_number, updates, head_sha, include_checkbox)
    return result
