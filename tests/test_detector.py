"""Tests for core/intent/detector.py and core/intent/validation.py."""

import pytest

from conftest import FakeGitHubClient
from intentlayer.core.intent.detector import (
    IntentFile,
    IntentLayerDetectionResult,
    detect_intent_files,
    detect_intent_layer,
    filename_for_kind,
    get_root_intent_file,
    has_intent_layer,
)
from intentlayer.core.intent.validation import (
    ROOT_LABEL,
    format_symlink_conflict_error,
    get_symlink_relationships,
    validate_and_fail_on_symlink_conflict,
    validate_symlink_config,
)
from intentlayer.lib.errors import SymlinkConflictError


@pytest.fixture
def repo():
    client = FakeGitHubClient()
    client.seed_branch(
        "feature",
        {
            "AGENTS.md": "# Root\n",
            "src/api/AGENTS.md": "# API\n",
            "src/api/server.py": "print('hi')\n",
            "docs/CLAUDE.md": "# Docs\n",
            "docs/AGENTS.md.bak": "old\n",
        },
        symlinks={"CLAUDE.md": "AGENTS.md"},
    )
    return client


# ---------------------------------------------------------------------------
# detection
# ---------------------------------------------------------------------------

class TestDetection:
    def test_finds_both_kinds_sorted_by_depth(self, repo):
        result = detect_intent_layer(repo, "feature")
        assert [f.path for f in result.agents_files] == ["AGENTS.md", "src/api/AGENTS.md"]
        assert [f.path for f in result.claude_files] == ["CLAUDE.md", "docs/CLAUDE.md"]

    def test_single_tree_listing(self, repo):
        detect_intent_layer(repo, "feature")
        assert repo.call_names().count("get_tree") == 1

    def test_symlink_target_is_read(self, repo):
        result = detect_intent_layer(repo, "feature")
        root_claude = result.claude_files[0]
        assert root_claude.is_symlink is True
        assert root_claude.symlink_target == "AGENTS.md"
        assert result.claude_files[1].is_symlink is False

    def test_tree_files_exclude_symlinks(self, repo):
        result = detect_intent_layer(repo, "feature")
        assert result.tree_files["src/api/server.py"] == len("print('hi')\n")
        assert "CLAUDE.md" not in result.tree_files

    def test_similar_names_not_detected(self, repo):
        result = detect_intent_layer(repo, "feature")
        assert all(not f.path.endswith(".bak") for f in result.agents_files)

    def test_detect_one_kind(self, repo):
        files = detect_intent_files(repo, "claude", "feature")
        assert [f.kind for f in files] == ["claude", "claude"]

    def test_helpers(self, repo):
        result = detect_intent_layer(repo, "feature")
        assert has_intent_layer(result)
        assert not has_intent_layer(IntentLayerDetectionResult())
        assert get_root_intent_file(result.agents_files).path == "AGENTS.md"
        assert get_root_intent_file(result.claude_files[1:]) is None
        assert filename_for_kind("claude") == "CLAUDE.md"


# ---------------------------------------------------------------------------
# symlink validation
# ---------------------------------------------------------------------------

def _detection(agents, claude):
    return IntentLayerDetectionResult(agents_files=agents, claude_files=claude)


class TestSymlinkValidation:
    def test_disabled_is_always_valid(self):
        detection = _detection([IntentFile("AGENTS.md", "agents")], [IntentFile("CLAUDE.md", "claude")])
        assert validate_symlink_config(detection, False).valid

    def test_linked_pair_is_valid(self):
        detection = _detection(
            [IntentFile("src/AGENTS.md", "agents")],
            [IntentFile("src/CLAUDE.md", "claude", is_symlink=True, symlink_target="AGENTS.md")],
        )
        assert validate_symlink_config(detection, True).valid
        relationships = get_symlink_relationships(detection)
        assert relationships[0].source == "src/AGENTS.md"
        assert relationships[0].source_type == "agents"

    def test_reverse_link_direction(self):
        detection = _detection(
            [IntentFile("AGENTS.md", "agents", is_symlink=True, symlink_target="./CLAUDE.md")],
            [IntentFile("CLAUDE.md", "claude")],
        )
        assert get_symlink_relationships(detection)[0].source_type == "claude"

    def test_independent_pair_conflicts(self):
        detection = _detection(
            [IntentFile("AGENTS.md", "agents"), IntentFile("lib/AGENTS.md", "agents")],
            [IntentFile("CLAUDE.md", "claude"), IntentFile("lib/CLAUDE.md", "claude")],
        )
        result = validate_symlink_config(detection, True)
        assert not result.valid
        assert result.conflict_directories == [ROOT_LABEL, "lib"]
        assert "Repository root" in format_symlink_conflict_error(result)

    def test_unpaired_files_are_fine(self):
        detection = _detection([IntentFile("a/AGENTS.md", "agents")], [IntentFile("b/CLAUDE.md", "claude")])
        assert validate_symlink_config(detection, True).valid

    def test_fail_on_conflict_raises(self, caplog):
        detection = _detection([IntentFile("AGENTS.md", "agents")], [IntentFile("CLAUDE.md", "claude")])
        with pytest.raises(SymlinkConflictError) as exc_info:
            validate_and_fail_on_symlink_conflict(detection, True)
        assert exc_info.value.conflict_directories == [ROOT_LABEL]
        assert "Symlink Configuration Error" in caplog.text

    def test_fail_on_conflict_noop_when_valid(self):
        validate_and_fail_on_symlink_conflict(_detection([], []), True)
