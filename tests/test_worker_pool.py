"""Parallel reads: the shared pool and the intent-file fan-out built on it."""

import threading
import time

import pytest

from conftest import FakeGitHubClient
from intentlayer.core.runner import fetch_node_contents
from intentlayer.lib import worker_pool
from intentlayer.lib.errors import NotFoundError


@pytest.fixture
def repo():
    client = FakeGitHubClient()
    client.seed_branch("feature", {
        "AGENTS.md": "# Root\n",
        "src/AGENTS.md": "# Src\n",
        "src/api/AGENTS.md": "# Api\n",
    })
    return client


def _slow_reads(client, monkeypatch, delays):
    real_read = client.get_file_content
    threads = set()

    def get_file_content(path, ref=None):
        threads.add(threading.current_thread().name)
        time.sleep(delays.get(path, 0))
        return real_read(path, ref)

    monkeypatch.setattr(client, "get_file_content", get_file_content)
    return threads


class TestFetchNodeContents:
    def test_contents_keyed_by_path_regardless_of_finish_order(self, repo, monkeypatch):
        _slow_reads(repo, monkeypatch, {"AGENTS.md": 0.05})
        contents = fetch_node_contents(repo, ["src/api/AGENTS.md", "AGENTS.md", "src/AGENTS.md"], "feature")
        assert list(contents) == ["AGENTS.md", "src/AGENTS.md", "src/api/AGENTS.md"]
        assert contents == {
            "AGENTS.md": "# Root\n",
            "src/AGENTS.md": "# Src\n",
            "src/api/AGENTS.md": "# Api\n",
        }

    def test_reads_fan_out_to_pool_threads(self, repo, monkeypatch):
        threads = _slow_reads(repo, monkeypatch, {})
        fetch_node_contents(repo, ["AGENTS.md", "src/AGENTS.md"], "feature", max_workers=2)
        assert threads
        assert all(name.startswith("intentlayer-node-contents") for name in threads)

    def test_single_worker_reads_inline(self, repo, monkeypatch):
        threads = _slow_reads(repo, monkeypatch, {})
        fetch_node_contents(repo, ["AGENTS.md", "src/AGENTS.md"], "feature", max_workers=1)
        assert threads == {threading.current_thread().name}

    def test_duplicate_paths_read_once(self, repo):
        contents = fetch_node_contents(repo, ["AGENTS.md", "AGENTS.md"], "feature")
        assert contents == {"AGENTS.md": "# Root\n"}
        assert repo.call_names().count("get_file_content") == 1

    def test_missing_node_propagates(self, repo):
        with pytest.raises(NotFoundError):
            fetch_node_contents(repo, ["AGENTS.md", "docs/AGENTS.md"], "feature")

    def test_no_paths(self, repo):
        assert fetch_node_contents(repo, [], "feature") == {}
        assert repo.calls == []


class TestRunCallables:
    def test_failures_fill_their_slot_when_collected(self, repo):
        out = worker_pool.run_callables(
            [lambda: repo.get_blob("missing"), lambda: repo.get_file_content("AGENTS.md", "feature").content],
            max_workers=2,
            pool_name="test-collect",
            return_exceptions=True,
        )
        assert isinstance(out[0], NotFoundError)
        assert out[1] == "# Root\n"

    def test_shutdown_clears_shared_pools(self):
        assert worker_pool.run_callables([lambda: 1, lambda: 2], max_workers=2, pool_name="test-shutdown") == [1, 2]
        assert ("test-shutdown", 2) in worker_pool._POOLS
        worker_pool.shutdown_worker_pools(wait=True)
        assert worker_pool._POOLS == {}
