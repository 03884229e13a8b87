"""Thin GitHub REST client over urllib.

Only the endpoints the action uses are wrapped. HTTP failures are mapped
onto the shared error taxonomy:

    404                      -> NotFoundError
    409, 422 mentioning sha  -> ConflictError (stale write)
    anything else            -> UpstreamError carrying the status
"""

from __future__ import annotations

import base64
import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from intentlayer.lib.errors import ConflictError, NotFoundError, UpstreamError, missing_env_error
logger = logging.getLogger(__name__)

PER_PAGE = 100
USER_AGENT = "intentlayer-action"


@dataclass
class FileContent:
    path: str
    sha: str
    content: str


@dataclass
class TreeFile:
    path: str
    content: str
    is_symlink: bool = False


def _quote_path(path: str) -> str:
    return urllib.parse.quote(path, safe="/")


class GitHubClient:
    """Repository-scoped REST client."""

    def __init__(self, token: str, repository: str, api_url: str = "https://api.github.com",
                 timeout: float = 30.0):
        if "/" not in repository:
            raise ValueError(f"repository must be 'owner/repo', got {repository!r}")
        self.owner, self.repo = repository.split("/", 1)
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout

    @classmethod
    def from_environment(cls, github_config=None) -> "GitHubClient":
        from intentlayer.config import GitHubConfig

        github_config = github_config or GitHubConfig()
        token = os.environ.get(github_config.token_env, "").strip()
        if not token:
            raise missing_env_error(github_config.token_env, "is required to call the GitHub API.")
        repository = os.environ.get("GITHUB_REPOSITORY", "").strip()
        if not repository:
            raise missing_env_error("GITHUB_REPOSITORY", "is required to identify the repository.")
        api_url = os.environ.get("GITHUB_API_URL", "").strip() or github_config.api_url
        return cls(token, repository, api_url=api_url, timeout=github_config.timeout_seconds)

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, body: Optional[dict] = None,
                 params: Optional[Dict[str, Any]] = None, accept: str = "application/vnd.github+json",
                 raw: bool = False, resource: Optional[str] = None) -> Any:
        url = f"{self._api_url}/repos/{self.owner}/{self.repo}{path}"
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        headers = {
            "Accept": accept,
            "Authorization": f"Bearer {self._token}",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        data = None
        if body is not None:
            data = json.dumps(body).encode()
            headers["Content-Type"] = "application/json"

        req = urllib.request.Request(url, data=data, headers=headers, method=method)
        logger.debug("GitHub %s %s", method, path)
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                payload = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")[:500]
            raise self._map_http_error(e.code, method, path, detail, resource) from e
        except urllib.error.URLError as e:
            raise UpstreamError(f"GitHub API unreachable ({method} {path}): {e.reason}") from e

        if raw:
            return payload
        return json.loads(payload) if payload else {}

    @staticmethod
    def _map_http_error(status: int, method: str, path: str, detail: str, resource: Optional[str]) -> Exception:
        target = resource or path
        if status == 404:
            return NotFoundError(f"Not found: {target}", path=resource)
        if status == 409 or (status == 422 and "sha" in detail.lower()):
            return ConflictError(f"Conflicting write to {target}: {detail}", path=resource)
        return UpstreamError(f"GitHub API {method} {path} failed with HTTP {status}: {detail}", status=status)

    def _paginate(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[dict]:
        out: List[dict] = []
        page = 1
        while True:
            query = dict(params or {})
            query.update({"per_page": PER_PAGE, "page": page})
            batch = self._request("GET", path, params=query)
            if not isinstance(batch, list):
                raise UpstreamError(f"GitHub API {path} returned {type(batch).__name__}, expected a list")
            out.extend(batch)
            if len(batch) < PER_PAGE:
                return out
            page += 1

    # ------------------------------------------------------------------
    # pull requests and issues
    # ------------------------------------------------------------------

    def get_pull_request(self, number: int) -> dict:
        return self._request("GET", f"/pulls/{number}", resource=f"pull request #{number}")

    def get_pull_request_diff(self, number: int) -> str:
        return self._request("GET", f"/pulls/{number}", accept="application/vnd.github.diff", raw=True)

    def get_pull_request_files(self, number: int) -> List[dict]:
        return self._paginate(f"/pulls/{number}/files")

    def get_pull_request_commits(self, number: int) -> List[dict]:
        return self._paginate(f"/pulls/{number}/commits")

    def get_pull_request_review_comments(self, number: int) -> List[dict]:
        return self._paginate(f"/pulls/{number}/comments")

    def create_pull_request(self, title: str, body: str, head: str, base: str) -> dict:
        return self._request("POST", "/pulls", body={"title": title, "body": body, "head": head, "base": base})

    def get_issue_comments(self, number: int) -> List[dict]:
        return self._paginate(f"/issues/{number}/comments")

    def get_comment(self, comment_id: int) -> dict:
        return self._request("GET", f"/issues/comments/{comment_id}", resource=f"comment {comment_id}")

    def create_comment(self, number: int, body: str) -> dict:
        return self._request("POST", f"/issues/{number}/comments", body={"body": body})

    def update_comment(self, comment_id: int, body: str) -> dict:
        return self._request("PATCH", f"/issues/comments/{comment_id}", body={"body": body},
                             resource=f"comment {comment_id}")

    # ------------------------------------------------------------------
    # contents
    # ------------------------------------------------------------------

    def get_file_content(self, path: str, ref: Optional[str] = None) -> FileContent:
        params = {"ref": ref} if ref else None
        data = self._request("GET", f"/contents/{_quote_path(path)}", params=params, resource=path)
        if isinstance(data, list) or data.get("type") not in ("file", "symlink"):
            raise NotFoundError(f"Not a file: {path}", path=path)
        raw = data.get("content") or ""
        content = base64.b64decode(raw).decode("utf-8") if data.get("encoding", "base64") == "base64" else raw
        return FileContent(path=path, sha=data.get("sha", ""), content=content)

    def create_or_update_file(self, path: str, content: str, message: str, branch: str,
                              sha: Optional[str] = None) -> dict:
        body = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if sha:
            body["sha"] = sha
        return self._request("PUT", f"/contents/{_quote_path(path)}", body=body, resource=path)

    def delete_file(self, path: str, message: str, branch: str, sha: str) -> dict:
        body = {"message": message, "branch": branch, "sha": sha}
        return self._request("DELETE", f"/contents/{_quote_path(path)}", body=body, resource=path)

    # ------------------------------------------------------------------
    # git data
    # ------------------------------------------------------------------

    def get_commit(self, sha: str) -> dict:
        return self._request("GET", f"/git/commits/{sha}", resource=f"commit {sha}")

    def get_tree(self, ref: str, recursive: bool = True) -> List[dict]:
        params = {"recursive": "1"} if recursive else None
        data = self._request("GET", f"/git/trees/{urllib.parse.quote(ref, safe='')}", params=params,
                             resource=f"tree {ref}")
        if data.get("truncated"):
            logger.warning("Git tree for %s was truncated by the API; some intent files may be missed", ref)
        return list(data.get("tree") or [])

    def get_blob(self, sha: str) -> str:
        data = self._request("GET", f"/git/blobs/{sha}", resource=f"blob {sha}")
        if data.get("encoding") == "base64":
            return base64.b64decode(data.get("content") or "").decode("utf-8")
        return data.get("content") or ""

    def get_ref(self, branch: str) -> str:
        data = self._request("GET", f"/git/ref/heads/{_quote_path(branch)}", resource=f"branch {branch}")
        return data["object"]["sha"]

    def create_branch(self, branch: str, sha: str) -> dict:
        try:
            return self._request("POST", "/git/refs", body={"ref": f"refs/heads/{branch}", "sha": sha})
        except UpstreamError as exc:
            if exc.status == 422:
                raise ConflictError(f"Branch {branch} already exists", path=branch) from exc
            raise

    def get_default_branch(self) -> str:
        data = self._request("GET", "", resource=self.repository)
        return data.get("default_branch") or "main"

    def create_files_with_symlinks(self, files: List[TreeFile], message: str, branch: str) -> dict:
        """Write several files, symlinks included, as a single commit.

        The contents API cannot create symlinks; the tree API can (mode
        120000 with the link target as blob content).
        """
        head_sha = self.get_ref(branch)
        base_tree = self.get_commit(head_sha)["tree"]["sha"]
        entries = [
            {
                "path": f.path,
                "mode": "120000" if f.is_symlink else "100644",
                "type": "blob",
                "content": f.content,
            }
            for f in files
        ]
        tree = self._request("POST", "/git/trees", body={"base_tree": base_tree, "tree": entries})
        commit = self._request("POST", "/git/commits",
                               body={"message": message, "tree": tree["sha"], "parents": [head_sha]})
        self._request("PATCH", f"/git/refs/heads/{_quote_path(branch)}", body={"sha": commit["sha"]},
                      resource=f"branch {branch}")
        return commit
