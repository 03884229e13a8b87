"""Tests for core/github/checkbox.py: event parsing, debounce, apply and revert."""

import json

import pytest

from conftest import FakeGitHubClient
from intentlayer.config import IntentLayerConfig
from intentlayer.core.github.checkbox import (
    COMMITTED,
    DEFAULT_APPROVAL_REASON,
    RESOLVED,
    REVERTED,
    SKIPPED,
    UNSTABLE,
    CheckboxEvent,
    debounce_checkbox_toggle,
    extract_reason,
    load_event_payload,
    process_checkbox_event,
    validate_checkbox_event,
)
from intentlayer.core.github.comments import (
    generate_comment,
    is_comment_resolved,
    parse_comment_marker,
    update_checkbox_state,
)
from intentlayer.core.llm.output_schema import IntentUpdate
from intentlayer.lib.errors import MalformedInputError


def _setup(node_path="src/AGENTS.md", head_sha=None):
    client = FakeGitHubClient()
    client.seed_branch("feature", {"AGENTS.md": "# Root\n", "src/app.py": "x = 1\n"})
    client.add_pull_request(7, "feature")
    update = IntentUpdate(node_path=node_path, action="create", reason="Document the app module",
                          suggested_content="# Src\n\nApp entry point.\n")
    body = generate_comment(update, head_sha or client.branches["feature"])
    return client, body


def _post(client, body, checked):
    body = update_checkbox_state(body, checked)
    comment_id = client.add_comment(7, body)
    return CheckboxEvent(comment_id=comment_id, comment_body=body, issue_number=7, is_pull_request=True)


class _Sleeps:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


# ---------------------------------------------------------------------------
# event payload
# ---------------------------------------------------------------------------

class TestEventPayload:
    def test_validate_pull_request_comment(self):
        event = validate_checkbox_event({
            "action": "edited",
            "comment": {"id": 11, "body": "hello"},
            "issue": {"number": 7, "pull_request": {"url": "x"}},
        })
        assert event == CheckboxEvent(comment_id=11, comment_body="hello", issue_number=7,
                                      is_pull_request=True, action="edited")

    def test_plain_issue_is_flagged(self):
        event = validate_checkbox_event({"comment": {"id": 1, "body": "b"}, "issue": {"number": 2}})
        assert event.is_pull_request is False

    @pytest.mark.parametrize("payload", [
        {},
        {"comment": {"id": 1, "body": ""}, "issue": {"number": 2}},
        {"comment": {"id": 1, "body": "b"}, "issue": "2"},
    ])
    def test_incomplete_payload(self, payload):
        assert validate_checkbox_event(payload) is None

    def test_load_from_event_path(self, tmp_path, monkeypatch):
        path = tmp_path / "event.json"
        path.write_text(json.dumps({"action": "edited"}))
        monkeypatch.setenv("GITHUB_EVENT_PATH", str(path))
        assert load_event_payload() == {"action": "edited"}

    def test_load_without_event_path(self):
        with pytest.raises(MalformedInputError, match="GITHUB_EVENT_PATH"):
            load_event_payload()

    def test_load_rejects_non_object(self, tmp_path):
        path = tmp_path / "event.json"
        path.write_text("[1, 2]")
        with pytest.raises(MalformedInputError, match="JSON object"):
            load_event_payload(str(path))


# ---------------------------------------------------------------------------
# debounce
# ---------------------------------------------------------------------------

class TestDebounce:
    def test_stable_body(self):
        client, body = _setup()
        event = _post(client, body, checked=True)
        sleeps = _Sleeps()
        result = debounce_checkbox_toggle(client, event.comment_id, event.comment_body, 0.5, sleep=sleeps)
        assert result.stable and result.is_checked
        assert result.marker.node_path == "src/AGENTS.md"
        assert sleeps.delays == [0.5]

    def test_changed_body_is_unstable(self):
        client, body = _setup()
        event = _post(client, body, checked=True)
        client.refetch_bodies[event.comment_id] = [update_checkbox_state(body, False)]
        result = debounce_checkbox_toggle(client, event.comment_id, event.comment_body, sleep=_Sleeps())
        assert not result.stable
        assert result.reason == "Comment changed during debounce period"

    def test_settles_within_attempts(self):
        client, body = _setup()
        event = _post(client, body, checked=True)
        unchecked = update_checkbox_state(body, False)
        client.refetch_bodies[event.comment_id] = [unchecked, unchecked]
        sleeps = _Sleeps()
        result = debounce_checkbox_toggle(client, event.comment_id, event.comment_body, 1.0, max_attempts=3,
                                          sleep=sleeps)
        assert result.stable and not result.is_checked
        assert sleeps.delays == [1.0, 1.0]

    def test_empty_refetch(self):
        client, body = _setup()
        event = _post(client, body, checked=True)
        client.refetch_bodies[event.comment_id] = [""]
        result = debounce_checkbox_toggle(client, event.comment_id, event.comment_body, sleep=_Sleeps())
        assert not result.stable
        assert "empty" in result.reason

    def test_invalid_marker_skips_fetch(self):
        client = FakeGitHubClient()
        result = debounce_checkbox_toggle(client, 1, "no marker here", sleep=_Sleeps())
        assert not result.stable
        assert client.calls == []


# ---------------------------------------------------------------------------
# state machine
# ---------------------------------------------------------------------------

class TestProcessCheckboxEvent:
    def test_checking_commits_suggested_content(self):
        client, body = _setup()
        event = _post(client, body, checked=True)

        result = process_checkbox_event(client, event, IntentLayerConfig(), sleep=_Sleeps())

        assert result.outcome == COMMITTED
        assert client.files_at("feature")["src/AGENTS.md"] == "# Src\n\nApp entry point.\n"
        assert client.head_message("feature") == "[INTENT:ADD] src/AGENTS.md - Document the app module"
        updated = client.comments[event.comment_id]["body"]
        assert parse_comment_marker(updated).applied_commit == result.commit.sha
        assert f"**COMMITTED** - Applied in commit {result.commit.sha}" in updated

    def test_checking_crlf_comment_commits_content(self):
        client, body = _setup()
        event = _post(client, body.replace("\n", "\r\n"), checked=True)
        result = process_checkbox_event(client, event, IntentLayerConfig(), sleep=_Sleeps())
        assert result.outcome == COMMITTED
        assert client.files_at("feature")["src/AGENTS.md"] == "# Src\n\nApp entry point.\n"
        assert client.head_message("feature") == "[INTENT:ADD] src/AGENTS.md - Document the app module"

    def test_checking_existing_node_updates_it(self):
        client, body = _setup(node_path="AGENTS.md")
        event = _post(client, body, checked=True)
        result = process_checkbox_event(client, event, IntentLayerConfig(), sleep=_Sleeps())
        assert result.outcome == COMMITTED
        assert client.head_message("feature").startswith("[INTENT:UPDATE] AGENTS.md")
        assert client.files_at("feature")["AGENTS.md"] == "# Src\n\nApp entry point.\n"

    def test_unchecking_reverts_the_applied_commit(self):
        client, body = _setup()
        event = _post(client, body, checked=True)
        process_checkbox_event(client, event, IntentLayerConfig(), sleep=_Sleeps())

        unchecked = update_checkbox_state(client.comments[event.comment_id]["body"], False)
        client.comments[event.comment_id]["body"] = unchecked
        result = process_checkbox_event(
            client, CheckboxEvent(event.comment_id, unchecked, 7, True), IntentLayerConfig(), sleep=_Sleeps(),
        )

        assert result.outcome == REVERTED
        assert "src/AGENTS.md" not in client.files_at("feature")
        assert client.head_message("feature") == "[INTENT:REVERT] src/AGENTS.md - Reverted via checkbox"
        final = client.comments[event.comment_id]["body"]
        assert parse_comment_marker(final).applied_commit is None
        assert "**REVERTED**" in final
        assert "**COMMITTED**" not in final

    def test_stale_head_is_resolved(self):
        client, body = _setup(head_sha="f" * 40)
        event = _post(client, body, checked=True)
        result = process_checkbox_event(client, event, IntentLayerConfig(), sleep=_Sleeps())
        assert result.outcome == RESOLVED
        head = client.branches["feature"]
        assert result.message == f"PR head moved from fffffff to {head[:7]}"
        assert is_comment_resolved(client.comments[event.comment_id]["body"])
        assert "create_or_update_file" not in client.call_names()

    def test_revert_of_vanished_file_is_resolved(self):
        client, body = _setup()
        event = _post(client, body, checked=True)
        process_checkbox_event(client, event, IntentLayerConfig(), sleep=_Sleeps())
        sha = client.get_file_content("src/AGENTS.md", "feature").sha
        client.delete_file("src/AGENTS.md", "cleanup", "feature", sha)

        unchecked = update_checkbox_state(client.comments[event.comment_id]["body"], False)
        client.comments[event.comment_id]["body"] = unchecked
        result = process_checkbox_event(
            client, CheckboxEvent(event.comment_id, unchecked, 7, True), IntentLayerConfig(), sleep=_Sleeps(),
        )
        assert result.outcome == RESOLVED
        assert "no longer exists" in result.message

    def test_unstable_toggle_does_nothing(self):
        client, body = _setup()
        event = _post(client, body, checked=True)
        client.refetch_bodies[event.comment_id] = [update_checkbox_state(body, False)]
        result = process_checkbox_event(client, event, IntentLayerConfig(), sleep=_Sleeps())
        assert result.outcome == UNSTABLE
        assert client.call_names() == ["get_comment"]

    def test_debounce_settings_come_from_config(self):
        client, body = _setup()
        event = _post(client, body, checked=True)
        config = IntentLayerConfig()
        config.checkbox.debounce_delay_seconds = 0.25
        sleeps = _Sleeps()
        process_checkbox_event(client, event, config, sleep=sleeps)
        assert sleeps.delays == [0.25]


class TestSkips:
    def test_not_a_proposal(self):
        client = FakeGitHubClient()
        result = process_checkbox_event(client, CheckboxEvent(1, "lgtm", 7, True), IntentLayerConfig())
        assert result.outcome == SKIPPED
        assert client.calls == []

    def test_unchecked_and_never_applied(self):
        client, body = _setup()
        event = _post(client, body, checked=False)
        sleeps = _Sleeps()
        result = process_checkbox_event(client, event, IntentLayerConfig(), sleep=sleeps)
        assert result.outcome == SKIPPED
        assert client.calls == []
        assert sleeps.delays == []

    def test_echo_of_our_own_commit_edit(self):
        client, body = _setup()
        event = _post(client, body, checked=True)
        process_checkbox_event(client, event, IntentLayerConfig(), sleep=_Sleeps())
        client.calls.clear()

        echoed = client.comments[event.comment_id]["body"]
        result = process_checkbox_event(client, CheckboxEvent(event.comment_id, echoed, 7, True),
                                        IntentLayerConfig(), sleep=_Sleeps())
        assert result.outcome == SKIPPED
        assert result.message.startswith("Already applied in ")
        assert client.calls == []

    def test_resolved_proposal_is_left_alone(self):
        client, body = _setup(head_sha="f" * 40)
        event = _post(client, body, checked=True)
        process_checkbox_event(client, event, IntentLayerConfig(), sleep=_Sleeps())
        client.calls.clear()

        resolved = client.comments[event.comment_id]["body"]
        result = process_checkbox_event(client, CheckboxEvent(event.comment_id, resolved, 7, True),
                                        IntentLayerConfig(), sleep=_Sleeps())
        assert result.outcome == SKIPPED
        assert client.calls == []


def test_extract_reason():
    assert extract_reason("**Reason:** Keeps docs current\n") == "Keeps docs current"
    assert extract_reason("no reason line") == DEFAULT_APPROVAL_REASON
