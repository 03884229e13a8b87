"""Tests for core/github/context.py: PR metadata, commits, linked issues, diff."""

from conftest import FakeGitHubClient
from intentlayer.core.github.context import (
    PRDiffSummary,
    changed_file_from_payload,
    collect_linked_issues,
    extract_pr_context,
    is_pr_too_large,
    parse_linked_issues,
    pr_metadata_from_payload,
    summarize_changed_files,
)


def _client():
    client = FakeGitHubClient()
    client.seed_branch("main", {"README.md": "hi\n"})
    client.seed_branch("feature", {"README.md": "hi\n", "src/app.py": "x = 1\n"})
    client.add_pull_request(
        7, "feature",
        title="Add app",
        body="Implements the app.\n\nFixes #12 and closes acme/other#3",
        files=[
            {"filename": "src/app.py", "status": "added", "additions": 20, "deletions": 0, "patch": "@@ +1 @@\n+x = 1"},
            {"filename": "README.md", "status": "modified", "additions": 2, "deletions": 1},
        ],
        commits=[
            {"sha": "a" * 40, "commit": {"message": "Add app\n\nResolves #12", "author": {"name": "Ada"}},
             "parents": [{"sha": "b" * 40}]},
        ],
    )
    return client


class TestLinkedIssues:
    def test_keywords_and_cross_repo(self):
        issues = parse_linked_issues("Fixes #1, resolved #2 and closes octo/repo#3. See #4.")
        assert [(i.keyword, i.number) for i in issues] == [("fixes", 1), ("resolved", 2), ("closes", 3)]
        assert (issues[2].owner, issues[2].repo) == ("octo", "repo")

    def test_empty(self):
        assert parse_linked_issues(None) == []
        assert parse_linked_issues("no references here") == []

    def test_deduplicated_across_commits(self):
        client = _client()
        context = extract_pr_context(client, 7)
        assert [(i.owner, i.number) for i in collect_linked_issues(context.metadata, context.commits)] == [
            (None, 12), ("acme", 3),
        ]


class TestPRContext:
    def test_extract_pr_context(self):
        context = extract_pr_context(_client(), 7, max_workers=2)
        assert context.metadata.number == 7
        assert context.metadata.head_branch == "feature"
        assert context.metadata.head_repo == "acme/widgets"
        assert [f.filename for f in context.changed_files] == ["src/app.py", "README.md"]
        assert context.commits[0].author_name == "Ada"
        assert context.commits[0].parent_shas == ["b" * 40]
        assert context.diff.summary.total_additions == 22
        assert context.diff.summary.files_added == 1

    def test_metadata_defaults(self):
        metadata = pr_metadata_from_payload({"number": 3, "labels": [{"name": "docs"}, "raw"]})
        assert metadata.labels == ["docs", "raw"]
        assert metadata.author == "unknown"
        assert metadata.head_repo is None

    def test_summarize_counts_statuses(self):
        files = [changed_file_from_payload({"filename": n, "status": s, "additions": 1, "deletions": 1})
                 for n, s in [("a", "added"), ("b", "removed"), ("c", "renamed"), ("d", "modified")]]
        summary = summarize_changed_files(files)
        assert (summary.files_added, summary.files_removed, summary.files_renamed, summary.files_modified) == (
            1, 1, 1, 1,
        )
        assert summary.total_files == 4

    def test_is_pr_too_large(self):
        assert is_pr_too_large(PRDiffSummary(total_additions=60, total_deletions=41), 100)
        assert not is_pr_too_large(PRDiffSummary(total_additions=60, total_deletions=40), 100)
