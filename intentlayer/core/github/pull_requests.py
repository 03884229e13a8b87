"""Separate intent layer PR for the ``new_pr`` output mode."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from intentlayer.core.github.commits import generate_intent_layer_branch_name
logger = logging.getLogger(__name__)

INTENT_LAYER_LINK_MARKER = "<!-- INTENT_LAYER_LINK -->"


@dataclass
class IntentLayerPullRequest:
    number: int
    url: str
    branch: str


def generate_intent_layer_pr_title(pull_number: int) -> str:
    return f"[Intent Layer] Updates for PR #{pull_number}"


def generate_intent_layer_pr_body(pull_number: int) -> str:
    return "\n".join([
        "## Intent Layer Updates",
        "",
        f"This PR proposes AGENTS.md / CLAUDE.md changes for the code changed in #{pull_number}.",
        "",
        f"Merge it into the branch of #{pull_number} to keep the intent layer in sync with the code.",
        "",
        "---",
        "",
        "*This PR was automatically generated by the intent layer action.*",
    ])


def generate_intent_layer_link_comment(intent_pr_number: int, intent_pr_url: str, applied_count: int) -> str:
    noun = "intent layer update" if applied_count == 1 else "intent layer updates"
    return "\n".join([
        INTENT_LAYER_LINK_MARKER,
        "",
        f"Opened #{intent_pr_number} with {applied_count} {noun} for this PR.",
        "",
        f"Review it here: {intent_pr_url}",
    ])


def has_intent_layer_link_marker(body: Optional[str]) -> bool:
    return bool(body) and INTENT_LAYER_LINK_MARKER in body


def open_intent_layer_pull_request(client, pull_number: int, head_branch: str, title: Optional[str] = None,
                                   body: Optional[str] = None) -> IntentLayerPullRequest:
    """Open ``intent-layer/<pr>`` against the original PR's head branch."""
    branch = generate_intent_layer_branch_name(pull_number)
    created = client.create_pull_request(
        title=title or generate_intent_layer_pr_title(pull_number),
        body=body or generate_intent_layer_pr_body(pull_number),
        head=branch,
        base=head_branch,
    )
    return IntentLayerPullRequest(
        number=int(created.get("number") or 0),
        url=created.get("html_url") or "",
        branch=branch,
    )


def post_intent_layer_link_comment(client, pull_number: int, intent_pr_number: int, intent_pr_url: str,
                                   applied_count: int) -> dict:
    """Post the link comment, or refresh the one left by an earlier run."""
    body = generate_intent_layer_link_comment(intent_pr_number, intent_pr_url, applied_count)
    for comment in client.get_issue_comments(pull_number):
        if has_intent_layer_link_marker(comment.get("body")):
            logger.debug("Updating existing intent layer link comment %s", comment.get("id"))
            return client.update_comment(comment["id"], body)
    return client.create_comment(pull_number, body)
