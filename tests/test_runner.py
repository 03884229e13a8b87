"""Tests for core/runner.py: the analyze flow end to end and the checkbox entry point."""

import json

import pytest

from conftest import FakeGitHubClient
from intentlayer.config import IntentLayerConfig
from intentlayer.core.github.checkbox import COMMITTED, SKIPPED
from intentlayer.core.github.comments import generate_comment, parse_comment_marker, update_checkbox_state
from intentlayer.core.llm.output_schema import IntentUpdate
from intentlayer.core.runner import (
    NO_CANDIDATES,
    NO_UPDATES,
    SKIPPED_LARGE_PR,
    UPDATED,
    get_pull_request_number,
    run_analysis,
    run_checkbox_handler,
    sibling_intent_path,
    with_other_node_paths,
)
from intentlayer.lib.errors import IntentLayerError, SymlinkConflictError
from intentlayer.lib.llm_clients import get_token_usage
from intentlayer.lib.providers import TestLLMProvider

ROOT_UPDATE = {
    "nodePath": "AGENTS.md",
    "action": "update",
    "reason": "Document the app module",
    "currentContent": "# Root\n",
    "suggestedContent": "# Root\n\nThe app lives in src/.\n",
}


def _repo(files=None, pr_files=None, head_repo=None):
    client = FakeGitHubClient()
    files = files if files is not None else {"AGENTS.md": "# Root\n", "src/app.py": "x = 1\n"}
    client.seed_branch("main", dict(files))
    client.seed_branch("feature", dict(files))
    client.add_pull_request(
        7, "feature",
        title="Add app",
        files=pr_files if pr_files is not None else [
            {"filename": "src/app.py", "status": "modified", "additions": 5, "deletions": 1,
             "patch": "@@ -1 +1 @@\n-x = 0\n+x = 1"},
        ],
        head_repo=head_repo,
    )
    return client


def _provider(*updates):
    return TestLLMProvider(responses=[json.dumps({"updates": list(updates)})])


def _config(**kwargs):
    config = IntentLayerConfig()
    for key, value in kwargs.items():
        setattr(config, key, value)
    return config


# ---------------------------------------------------------------------------
# analyze: decisions before the model
# ---------------------------------------------------------------------------

class TestAnalyzeDecisions:
    def test_prompt_covers_affected_node(self):
        client = _repo()
        provider = _provider()
        result = run_analysis(_config(), client, provider, 7)

        assert result.status == NO_UPDATES
        prompt = provider.calls[0]["messages"][0]["content"]
        assert "## Intent Nodes Requiring Update" in prompt
        assert "### AGENTS.md" in prompt
        assert "```markdown\n# Root\n\n```" in prompt
        assert get_token_usage()["calls"] == 1

    def test_large_pr_skipped(self):
        client = _repo()
        config = _config()
        config.analysis.max_pr_lines_changed = 5
        provider = _provider()
        result = run_analysis(config, client, provider, 7)
        assert result.status == SKIPPED_LARGE_PR
        assert "6 lines changed" in result.message
        assert provider.calls == []

    def test_only_ignored_files_changed(self):
        files = {"AGENTS.md": "# Root\n", ".intentlayerignore": "docs/\n", "docs/guide.md": "hi\n"}
        client = _repo(files=files, pr_files=[{"filename": "docs/guide.md", "status": "modified", "additions": 1}])
        provider = _provider()
        assert run_analysis(_config(), client, provider, 7).status == NO_CANDIDATES
        assert provider.calls == []

    def test_initialization_prompt_without_intent_layer(self):
        pr_files = [{"filename": f"src/billing/m{i}.py", "status": "added", "additions": 30} for i in range(3)]
        client = _repo(files={"README.md": "hi\n"}, pr_files=pr_files)
        provider = _provider()
        result = run_analysis(_config(), client, provider, 7)
        assert result.status == NO_UPDATES
        prompt = provider.calls[0]["messages"][0]["content"]
        assert "## Task: Initialize Intent Layer" in prompt
        assert "Create a root AGENTS.md file" in prompt

    def test_small_change_without_intent_layer(self):
        client = _repo(files={"README.md": "hi\n"}, pr_files=[{"filename": "README.md", "additions": 1}])
        provider = _provider()
        assert run_analysis(_config(), client, provider, 7).status == NO_CANDIDATES
        assert provider.calls == []

    def test_symlink_conflict_stops_analysis(self):
        client = _repo(files={"AGENTS.md": "# A\n", "CLAUDE.md": "# C\n", "src/app.py": "x\n"})
        provider = _provider()
        with pytest.raises(SymlinkConflictError):
            run_analysis(_config(symlink=True), client, provider, 7)
        assert provider.calls == []

    def test_custom_prompt_for_changed_path(self):
        from intentlayer.core.llm.prompt_resolver import PromptConfig

        client = _repo()
        provider = _provider()
        config = _config(prompts=[PromptConfig(pattern="src/**", prompt="Mention the entry point.")])
        run_analysis(config, client, provider, 7)
        prompt = provider.calls[0]["messages"][0]["content"]
        assert "## Repository-Specific Instructions" in prompt
        assert "Mention the entry point." in prompt


# ---------------------------------------------------------------------------
# analyze: output modes
# ---------------------------------------------------------------------------

class TestOutputModes:
    def test_pr_comments(self):
        client = _repo()
        result = run_analysis(_config(), client, _provider(ROOT_UPDATE), 7)
        assert result.status == UPDATED
        posted = [parse_comment_marker(c["body"]) for c in client.comments.values()]
        assert [(m.node_path, m.head_sha) for m in posted] == [("AGENTS.md", client.branches["feature"])]
        assert client.files_at("feature")["AGENTS.md"] == "# Root\n"

    def test_pr_commit(self):
        client = _repo()
        result = run_analysis(_config(output="pr_commit"), client, _provider(ROOT_UPDATE), 7)
        assert result.output.applied.applied_count == 1
        assert client.files_at("feature")["AGENTS.md"] == ROOT_UPDATE["suggestedContent"]
        assert client.head_message("feature") == "[INTENT:UPDATE] AGENTS.md - Document the app module"

    def test_pr_commit_refuses_fork(self):
        client = _repo(head_repo="someone/widgets")
        with pytest.raises(IntentLayerError, match="fork someone/widgets"):
            run_analysis(_config(output="pr_commit"), client, _provider(ROOT_UPDATE), 7)
        assert "create_or_update_file" not in client.call_names()

    def test_new_pr(self):
        client = _repo()
        head = client.branches["feature"]
        result = run_analysis(_config(output="new_pr"), client, _provider(ROOT_UPDATE), 7)

        assert result.output.branch == "intent-layer/7"
        assert client.commits[client.branches["intent-layer/7"]]["parents"] == [head]
        assert client.files_at("intent-layer/7")["AGENTS.md"] == ROOT_UPDATE["suggestedContent"]
        assert client.files_at("feature")["AGENTS.md"] == "# Root\n"
        created = client.created_pull_requests[0]
        assert (created["head"], created["base"]) == ("intent-layer/7", "feature")
        link = [c for c in client.comments.values() if c["issue_number"] == 7]
        assert len(link) == 1
        assert "Opened #500 with 1 intent layer update" in link[0]["body"]

    def test_new_pr_without_applied_updates(self):
        client = _repo()
        bad_create = {"nodePath": "AGENTS.md", "action": "create", "reason": "dup", "suggestedContent": "x"}
        result = run_analysis(_config(output="new_pr"), client, _provider(bad_create), 7)
        assert result.output.applied.applied_count == 0
        assert result.output.pull_request is None
        assert client.created_pull_requests == []
        assert client.comments == {}

    def test_both_files_pairs_sibling(self):
        client = _repo(files={"AGENTS.md": "# Root\n", "CLAUDE.md": "# Root\n", "src/app.py": "x\n"})
        result = run_analysis(_config(files="both", output="pr_commit"), client, _provider(ROOT_UPDATE), 7)
        assert result.updates[0].other_node_path == "CLAUDE.md"
        files = client.files_at("feature")
        assert files["CLAUDE.md"] == files["AGENTS.md"] == ROOT_UPDATE["suggestedContent"]

    def test_rejected_proposals_reported(self):
        client = _repo()
        broken = {"nodePath": "AGENTS.md", "action": "update", "reason": "no current content"}
        result = run_analysis(_config(), client, _provider(ROOT_UPDATE, broken), 7)
        assert len(result.updates) == 1
        assert len(result.rejected) == 1


class TestHelpers:
    def test_sibling_paths(self):
        assert sibling_intent_path("a/b/AGENTS.md") == "a/b/CLAUDE.md"
        assert sibling_intent_path("CLAUDE.md") == "AGENTS.md"

    def test_other_node_path_only_for_both(self):
        update = IntentUpdate(node_path="AGENTS.md", action="create", reason="r", suggested_content="x")
        assert with_other_node_paths([update], "agents")[0].other_node_path is None
        assert with_other_node_paths([update], "both")[0].other_node_path == "CLAUDE.md"

    @pytest.mark.parametrize("payload, expected", [
        ({"pull_request": {"number": 3}}, 3),
        ({"issue": {"number": 4, "pull_request": {}}}, 4),
        ({"number": 5}, 5),
    ])
    def test_pull_request_number(self, payload, expected):
        assert get_pull_request_number(payload) == expected

    def test_issue_without_pull_request(self):
        with pytest.raises(IntentLayerError, match="Missing pull request context"):
            get_pull_request_number({"issue": {"number": 4}})


# ---------------------------------------------------------------------------
# checkbox entry point
# ---------------------------------------------------------------------------

def _checkbox_payload(client, action="edited", on_pull_request=True):
    update = IntentUpdate(node_path="src/AGENTS.md", action="create", reason="New module",
                          suggested_content="# Src\n")
    body = update_checkbox_state(generate_comment(update, client.branches["feature"]), True)
    comment_id = client.add_comment(7, body)
    issue = {"number": 7}
    if on_pull_request:
        issue["pull_request"] = {"url": "https://api.github.com/repos/acme/widgets/pulls/7"}
    return {"action": action, "comment": {"id": comment_id, "body": body}, "issue": issue}


class TestCheckboxHandler:
    def test_applies_checked_proposal(self):
        client = _repo()
        result = run_checkbox_handler(_config(), client, _checkbox_payload(client), sleep=lambda _s: None)
        assert result.outcome == COMMITTED
        assert client.files_at("feature")["src/AGENTS.md"] == "# Src\n"

    def test_reads_payload_from_event_path(self, tmp_path, monkeypatch):
        client = _repo()
        path = tmp_path / "event.json"
        path.write_text(json.dumps(_checkbox_payload(client)))
        monkeypatch.setenv("GITHUB_EVENT_PATH", str(path))
        assert run_checkbox_handler(_config(), client, sleep=lambda _s: None).outcome == COMMITTED

    @pytest.mark.parametrize("action, on_pull_request", [("created", True), ("edited", False)])
    def test_ignored_events(self, action, on_pull_request):
        client = _repo()
        payload = _checkbox_payload(client, action=action, on_pull_request=on_pull_request)
        client.calls.clear()
        assert run_checkbox_handler(_config(), client, payload).outcome == SKIPPED
        assert client.calls == []

    def test_not_a_comment_event(self):
        result = run_checkbox_handler(_config(), FakeGitHubClient(), {"pull_request": {"number": 1}})
        assert result.outcome == SKIPPED
