"""Pull request context: metadata, commits, linked issues, review comments and diff.

Each extractor turns one GitHub REST payload into a small dataclass. The
analysis flow needs all of them at once, so :func:`extract_pr_context`
fetches the four independent payloads in parallel.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from intentlayer.lib.worker_pool import run_callables
logger = logging.getLogger(__name__)

FILE_STATUSES = ("added", "removed", "modified", "renamed", "copied", "changed", "unchanged")

LINKING_KEYWORDS = (
    "close", "closes", "closed",
    "fix", "fixes", "fixed",
    "resolve", "resolves", "resolved",
)
LINKED_ISSUE_PATTERN = re.compile(
    r"\b(" + "|".join(LINKING_KEYWORDS) + r"):?\s+(?:([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+))?#(\d+)",
    re.IGNORECASE,
)


@dataclass
class PRMetadata:
    number: int
    title: str
    description: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    author: str = "unknown"
    author_is_bot: bool = False
    state: str = "open"
    is_draft: bool = False
    merged: bool = False
    base_branch: str = ""
    head_branch: str = ""
    head_sha: str = ""
    base_sha: str = ""
    commits_count: int = 0
    changed_files_count: int = 0
    additions: int = 0
    deletions: int = 0
    url: str = ""
    head_repo: Optional[str] = None


@dataclass
class PRCommit:
    sha: str
    message: str
    author_name: str = "unknown"
    author_login: Optional[str] = None
    date: str = ""
    parent_shas: List[str] = field(default_factory=list)
    url: str = ""


@dataclass
class LinkedIssue:
    number: int
    keyword: str
    owner: Optional[str] = None
    repo: Optional[str] = None
    raw_match: str = ""


@dataclass
class PRReviewComment:
    id: int
    body: str
    path: str
    author: str = "unknown"
    diff_hunk: str = ""
    line: Optional[int] = None
    in_reply_to_id: Optional[int] = None
    url: str = ""


@dataclass
class PRChangedFile:
    filename: str
    status: str = "modified"
    additions: int = 0
    deletions: int = 0
    patch: Optional[str] = None
    previous_filename: Optional[str] = None
    sha: str = ""

    @property
    def changes(self) -> int:
        return self.additions + self.deletions


@dataclass
class PRDiffSummary:
    total_files: int = 0
    total_additions: int = 0
    total_deletions: int = 0
    files_added: int = 0
    files_removed: int = 0
    files_modified: int = 0
    files_renamed: int = 0


@dataclass
class PRDiff:
    files: List[PRChangedFile]
    summary: PRDiffSummary
    raw_diff: Optional[str] = None


@dataclass
class PRContext:
    metadata: PRMetadata
    commits: List[PRCommit]
    linked_issues: List[LinkedIssue]
    review_comments: List[PRReviewComment]
    diff: PRDiff

    @property
    def changed_files(self) -> List[PRChangedFile]:
        return self.diff.files


def _label_name(label) -> str:
    if isinstance(label, str):
        return label
    return (label or {}).get("name") or ""


def pr_metadata_from_payload(pr: dict) -> PRMetadata:
    user = pr.get("user") or {}
    base = pr.get("base") or {}
    head = pr.get("head") or {}
    return PRMetadata(
        number=int(pr.get("number") or 0),
        title=pr.get("title") or "",
        description=pr.get("body"),
        labels=[_label_name(label) for label in pr.get("labels") or []],
        author=user.get("login") or "unknown",
        author_is_bot=user.get("type") == "Bot",
        state=pr.get("state") or "open",
        is_draft=bool(pr.get("draft")),
        merged=bool(pr.get("merged")),
        base_branch=base.get("ref") or "",
        head_branch=head.get("ref") or "",
        head_sha=head.get("sha") or "",
        base_sha=base.get("sha") or "",
        commits_count=int(pr.get("commits") or 0),
        changed_files_count=int(pr.get("changed_files") or 0),
        additions=int(pr.get("additions") or 0),
        deletions=int(pr.get("deletions") or 0),
        url=pr.get("html_url") or "",
        head_repo=((head.get("repo") or {}).get("full_name")),
    )


def extract_pr_metadata(client, pull_number: int) -> PRMetadata:
    return pr_metadata_from_payload(client.get_pull_request(pull_number))


def extract_pr_commits(client, pull_number: int) -> List[PRCommit]:
    out = []
    for item in client.get_pull_request_commits(pull_number):
        commit = item.get("commit") or {}
        author = commit.get("author") or {}
        out.append(PRCommit(
            sha=item.get("sha") or "",
            message=commit.get("message") or "",
            author_name=author.get("name") or "unknown",
            author_login=(item.get("author") or {}).get("login"),
            date=author.get("date") or "",
            parent_shas=[p.get("sha") for p in item.get("parents") or [] if p.get("sha")],
            url=item.get("html_url") or "",
        ))
    return out


def parse_linked_issues(text: Optional[str]) -> List[LinkedIssue]:
    """Find closing references such as ``Fixes #12`` or ``closes org/repo#3``."""
    if not text:
        return []
    return [
        LinkedIssue(
            number=int(m.group(4)),
            keyword=m.group(1).lower(),
            owner=m.group(2) or None,
            repo=m.group(3) or None,
            raw_match=m.group(0),
        )
        for m in LINKED_ISSUE_PATTERN.finditer(text)
    ]


def collect_linked_issues(metadata: PRMetadata, commits: List[PRCommit]) -> List[LinkedIssue]:
    """Linked issues from the description and every commit message, deduplicated."""
    found = parse_linked_issues(metadata.description)
    for commit in commits:
        found.extend(parse_linked_issues(commit.message))
    seen = set()
    out = []
    for issue in found:
        key = (issue.owner or "", issue.repo or "", issue.number)
        if key in seen:
            continue
        seen.add(key)
        out.append(issue)
    return out


def extract_linked_issues(client, pull_number: int) -> List[LinkedIssue]:
    metadata, commits = run_callables(
        [lambda: extract_pr_metadata(client, pull_number),
         lambda: extract_pr_commits(client, pull_number)],
        max_workers=2,
        pool_name="pr-context",
    )
    return collect_linked_issues(metadata, commits)


def extract_pr_review_comments(client, pull_number: int) -> List[PRReviewComment]:
    return [
        PRReviewComment(
            id=int(c.get("id") or 0),
            body=c.get("body") or "",
            path=c.get("path") or "",
            author=(c.get("user") or {}).get("login") or "unknown",
            diff_hunk=c.get("diff_hunk") or "",
            line=c.get("line"),
            in_reply_to_id=c.get("in_reply_to_id"),
            url=c.get("html_url") or "",
        )
        for c in client.get_pull_request_review_comments(pull_number)
    ]


def changed_file_from_payload(item: dict) -> PRChangedFile:
    return PRChangedFile(
        filename=item.get("filename") or "",
        status=item.get("status") or "modified",
        additions=int(item.get("additions") or 0),
        deletions=int(item.get("deletions") or 0),
        patch=item.get("patch"),
        previous_filename=item.get("previous_filename"),
        sha=item.get("sha") or "",
    )


def summarize_changed_files(files: List[PRChangedFile]) -> PRDiffSummary:
    summary = PRDiffSummary(total_files=len(files))
    for f in files:
        summary.total_additions += f.additions
        summary.total_deletions += f.deletions
        if f.status == "added":
            summary.files_added += 1
        elif f.status == "removed":
            summary.files_removed += 1
        elif f.status == "renamed":
            summary.files_renamed += 1
        elif f.status in ("modified", "changed", "copied"):
            summary.files_modified += 1
    return summary


def extract_pr_diff(client, pull_number: int, include_raw_diff: bool = False) -> PRDiff:
    files = [changed_file_from_payload(item) for item in client.get_pull_request_files(pull_number)]
    raw = client.get_pull_request_diff(pull_number) if include_raw_diff else None
    return PRDiff(files=files, summary=summarize_changed_files(files), raw_diff=raw)


def is_pr_too_large(summary: PRDiffSummary, max_lines: int) -> bool:
    return summary.total_additions + summary.total_deletions > max_lines


def extract_pr_context(client, pull_number: int, max_workers: int = 4) -> PRContext:
    """Fetch everything the analysis prompt needs about one PR."""
    metadata, commits, review_comments, diff = run_callables(
        [
            lambda: extract_pr_metadata(client, pull_number),
            lambda: extract_pr_commits(client, pull_number),
            lambda: extract_pr_review_comments(client, pull_number),
            lambda: extract_pr_diff(client, pull_number),
        ],
        max_workers=max_workers,
        pool_name="pr-context",
    )
    logger.info(
        "PR #%d: %d changed file(s), %d commit(s), +%d/-%d",
        pull_number, diff.summary.total_files, len(commits),
        diff.summary.total_additions, diff.summary.total_deletions,
    )
    return PRContext(
        metadata=metadata,
        commits=commits,
        linked_issues=collect_linked_issues(metadata, commits),
        review_comments=review_comments,
        diff=diff,
    )
