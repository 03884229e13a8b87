"""Shared fixtures for all test modules."""
import hashlib
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from intentlayer.config import set_config
from intentlayer.lib.errors import ConflictError, NotFoundError
from intentlayer.lib.llm_clients import reset_token_usage

_ISOLATED_ENV_PREFIXES = ("INPUT_", "INTENT_LAYER_")
_ISOLATED_ENV_VARS = ("GITHUB_EVENT_PATH", "GITHUB_REPOSITORY", "GITHUB_TOKEN", "ANTHROPIC_API_KEY", "RUNNER_DEBUG")


def blob_sha(content: str) -> str:
    return hashlib.sha1(f"blob {content}".encode("utf-8")).hexdigest()


class FakeGitHubClient:
    """In-memory repository: branches, commits, PRs and issue comments.

    Every commit is a full snapshot ``{path: (content, is_symlink)}`` so
    reads at any ref (branch or commit sha) behave like the real API.
    Every call is recorded in ``calls`` as ``(method, args)``.
    """

    def __init__(self, repository: str = "acme/widgets"):
        self.owner, self.repo = repository.split("/", 1)
        self.calls: List[tuple] = []
        self.branches: Dict[str, str] = {}
        self.commits: Dict[str, dict] = {}
        self.blobs: Dict[str, str] = {}
        self.pull_requests: Dict[int, dict] = {}
        self.pr_files: Dict[int, List[dict]] = {}
        self.pr_commits: Dict[int, List[dict]] = {}
        self.comments: Dict[int, dict] = {}
        self.created_pull_requests: List[dict] = []
        # comment id -> bodies returned by successive get_comment calls
        self.refetch_bodies: Dict[int, List[str]] = {}
        self._commit_counter = 0
        self._comment_counter = 100

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, args))

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    # ------------------------------------------------------------------
    # seeding helpers
    # ------------------------------------------------------------------

    def _commit(self, files: Dict[str, tuple], parents: List[str], message: str) -> str:
        self._commit_counter += 1
        sha = f"{self._commit_counter:040x}"
        for content, _is_link in files.values():
            self.blobs[blob_sha(content)] = content
        self.commits[sha] = {"files": dict(files), "parents": list(parents), "message": message}
        return sha

    def seed_branch(self, branch: str, files: Dict[str, str], symlinks: Optional[Dict[str, str]] = None,
                    message: str = "initial") -> str:
        snapshot = {path: (content, False) for path, content in files.items()}
        for path, target in (symlinks or {}).items():
            snapshot[path] = (target, True)
        sha = self._commit(snapshot, [], message)
        self.branches[branch] = sha
        return sha

    def add_pull_request(self, number: int, head_branch: str, base_branch: str = "main",
                         title: str = "Add feature", body: Optional[str] = None,
                         files: Optional[List[dict]] = None, commits: Optional[List[dict]] = None,
                         head_repo: Optional[str] = None) -> None:
        self.pull_requests[number] = {
            "number": number,
            "title": title,
            "body": body,
            "head_branch": head_branch,
            "base_branch": base_branch,
            "head_repo": head_repo,
        }
        self.pr_files[number] = list(files or [])
        self.pr_commits[number] = list(commits or [])

    def add_comment(self, issue_number: int, body: str) -> int:
        self._comment_counter += 1
        comment_id = self._comment_counter
        self.comments[comment_id] = {
            "id": comment_id,
            "issue_number": issue_number,
            "body": body,
            "html_url": f"https://github.com/{self.repository}/pull/{issue_number}#issuecomment-{comment_id}",
        }
        return comment_id

    def files_at(self, ref: str) -> Dict[str, str]:
        return {path: content for path, (content, _) in self.commits[self._resolve(ref)]["files"].items()}

    def head_message(self, branch: str) -> str:
        return self.commits[self.branches[branch]]["message"]

    def _resolve(self, ref: str) -> str:
        if ref in self.branches:
            return self.branches[ref]
        if ref in self.commits:
            return ref
        raise NotFoundError(f"Not found: ref {ref}", path=ref)

    def _write(self, branch: str, changes: Dict[str, Optional[tuple]], message: str) -> str:
        if branch not in self.branches:
            raise NotFoundError(f"Not found: branch {branch}", path=branch)
        parent = self.branches[branch]
        files = dict(self.commits[parent]["files"])
        for path, value in changes.items():
            if value is None:
                files.pop(path, None)
            else:
                files[path] = value
        sha = self._commit(files, [parent], message)
        self.branches[branch] = sha
        return sha

    def _commit_payload(self, sha: str) -> dict:
        return {"sha": sha, "html_url": f"https://github.com/{self.repository}/commit/{sha}"}

    # ------------------------------------------------------------------
    # pull requests and issues
    # ------------------------------------------------------------------

    def get_pull_request(self, number: int) -> dict:
        self._record("get_pull_request", number)
        pr = self.pull_requests.get(number)
        if pr is None:
            raise NotFoundError(f"Not found: pull request #{number}")
        files = self.pr_files.get(number, [])
        return {
            "number": number,
            "title": pr["title"],
            "body": pr["body"],
            "labels": [],
            "user": {"login": "octocat", "type": "User"},
            "head": {
                "ref": pr["head_branch"],
                "sha": self.branches.get(pr["head_branch"], ""),
                "repo": {"full_name": pr["head_repo"] or self.repository},
            },
            "base": {"ref": pr["base_branch"], "sha": self.branches.get(pr["base_branch"], "")},
            "changed_files": len(files),
            "additions": sum(f.get("additions", 0) for f in files),
            "deletions": sum(f.get("deletions", 0) for f in files),
            "commits": len(self.pr_commits.get(number, [])),
        }

    def get_pull_request_files(self, number: int) -> List[dict]:
        self._record("get_pull_request_files", number)
        return list(self.pr_files.get(number, []))

    def get_pull_request_commits(self, number: int) -> List[dict]:
        self._record("get_pull_request_commits", number)
        return list(self.pr_commits.get(number, []))

    def get_pull_request_review_comments(self, number: int) -> List[dict]:
        self._record("get_pull_request_review_comments", number)
        return []

    def get_pull_request_diff(self, number: int) -> str:
        self._record("get_pull_request_diff", number)
        return ""

    def create_pull_request(self, title: str, body: str, head: str, base: str) -> dict:
        self._record("create_pull_request", title, head, base)
        number = 500 + len(self.created_pull_requests)
        created = {
            "number": number,
            "title": title,
            "body": body,
            "head": head,
            "base": base,
            "html_url": f"https://github.com/{self.repository}/pull/{number}",
        }
        self.created_pull_requests.append(created)
        return created

    def get_issue_comments(self, number: int) -> List[dict]:
        self._record("get_issue_comments", number)
        return [dict(c) for c in self.comments.values() if c["issue_number"] == number]

    def get_comment(self, comment_id: int) -> dict:
        self._record("get_comment", comment_id)
        if comment_id not in self.comments:
            raise NotFoundError(f"Not found: comment {comment_id}")
        queued = self.refetch_bodies.get(comment_id)
        if queued:
            return {"id": comment_id, "body": queued.pop(0)}
        return dict(self.comments[comment_id])

    def create_comment(self, number: int, body: str) -> dict:
        self._record("create_comment", number)
        return dict(self.comments[self.add_comment(number, body)])

    def update_comment(self, comment_id: int, body: str) -> dict:
        self._record("update_comment", comment_id)
        if comment_id not in self.comments:
            raise NotFoundError(f"Not found: comment {comment_id}")
        self.comments[comment_id]["body"] = body
        return dict(self.comments[comment_id])

    # ------------------------------------------------------------------
    # contents
    # ------------------------------------------------------------------

    def get_file_content(self, path: str, ref: Optional[str] = None):
        from intentlayer.lib.github_client import FileContent

        self._record("get_file_content", path, ref)
        files = self.commits[self._resolve(ref or "main")]["files"]
        if path not in files:
            raise NotFoundError(f"Not found: {path}", path=path)
        content, _ = files[path]
        return FileContent(path=path, sha=blob_sha(content), content=content)

    def create_or_update_file(self, path: str, content: str, message: str, branch: str,
                              sha: Optional[str] = None) -> dict:
        self._record("create_or_update_file", path, message, branch)
        files = self.commits[self._resolve(branch)]["files"]
        if path in files:
            if sha != blob_sha(files[path][0]):
                raise ConflictError(f"Conflicting write to {path}: sha mismatch", path=path)
        elif sha:
            raise ConflictError(f"Conflicting write to {path}: file does not exist", path=path)
        commit_sha = self._write(branch, {path: (content, False)}, message)
        return {"content": {"path": path, "sha": blob_sha(content)}, "commit": self._commit_payload(commit_sha)}

    def delete_file(self, path: str, message: str, branch: str, sha: str) -> dict:
        self._record("delete_file", path, message, branch)
        files = self.commits[self._resolve(branch)]["files"]
        if path not in files:
            raise NotFoundError(f"Not found: {path}", path=path)
        if sha != blob_sha(files[path][0]):
            raise ConflictError(f"Conflicting write to {path}: sha mismatch", path=path)
        commit_sha = self._write(branch, {path: None}, message)
        return {"content": None, "commit": self._commit_payload(commit_sha)}

    # ------------------------------------------------------------------
    # git data
    # ------------------------------------------------------------------

    def get_commit(self, sha: str) -> dict:
        self._record("get_commit", sha)
        if sha not in self.commits:
            raise NotFoundError(f"Not found: commit {sha}")
        return {
            "sha": sha,
            "message": self.commits[sha]["message"],
            "parents": [{"sha": p} for p in self.commits[sha]["parents"]],
            "tree": {"sha": f"tree-{sha}"},
        }

    def get_tree(self, ref: str, recursive: bool = True) -> List[dict]:
        self._record("get_tree", ref)
        files = self.commits[self._resolve(ref)]["files"]
        return [
            {
                "path": path,
                "mode": "120000" if is_link else "100644",
                "type": "blob",
                "sha": blob_sha(content),
                "size": len(content.encode("utf-8")),
            }
            for path, (content, is_link) in sorted(files.items())
        ]

    def get_blob(self, sha: str) -> str:
        self._record("get_blob", sha)
        if sha not in self.blobs:
            raise NotFoundError(f"Not found: blob {sha}")
        return self.blobs[sha]

    def get_ref(self, branch: str) -> str:
        self._record("get_ref", branch)
        if branch not in self.branches:
            raise NotFoundError(f"Not found: branch {branch}", path=branch)
        return self.branches[branch]

    def create_branch(self, branch: str, sha: str) -> dict:
        self._record("create_branch", branch, sha)
        if branch in self.branches:
            raise ConflictError(f"Branch {branch} already exists", path=branch)
        self.branches[branch] = sha
        return {"ref": f"refs/heads/{branch}", "object": {"sha": sha}}

    def get_default_branch(self) -> str:
        return "main"

    def create_files_with_symlinks(self, files, message: str, branch: str) -> dict:
        self._record("create_files_with_symlinks", [f.path for f in files], message, branch)
        commit_sha = self._write(branch, {f.path: (f.content, f.is_symlink) for f in files}, message)
        return self._commit_payload(commit_sha)


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    """Keep runner env vars and config files on this machine out of tests."""
    for name in list(os.environ):
        if name.startswith(_ISOLATED_ENV_PREFIXES) or name in _ISOLATED_ENV_VARS:
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GITHUB_WORKSPACE", str(tmp_path / "workspace"))
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Reset cached config and token usage before and after every test."""
    set_config(None)
    reset_token_usage()
    yield
    set_config(None)
    reset_token_usage()


@pytest.fixture
def fake_github():
    return FakeGitHubClient()
