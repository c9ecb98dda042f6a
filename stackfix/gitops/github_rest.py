from __future__ import annotations

import base64
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, urlparse

import httpx

from stackfix.errors import GitHubApiError, InputError
from stackfix.models import CommitResult, MergeResult, PullRequestResult, RepoFile


def encode_path(path: str) -> str:
    return "/".join(quote(seg, safe="") for seg in path.split("/"))


def parse_github_url(url: str) -> Tuple[str, str]:
    """
    (owner, repo) from https, scheme-less, `git@github.com:` and `ssh://git@github.com/` URLs.
    """
    normalized = url.strip()
    normalized = re.sub(r"^git@github\.com:", "https://github.com/", normalized)
    normalized = re.sub(r"^ssh://git@github\.com/", "https://github.com/", normalized)
    if not re.match(r"^https?://", normalized, re.IGNORECASE):
        normalized = f"https://{normalized}"

    u = urlparse(normalized)
    host = (u.hostname or "").lower()
    if not host:
        raise InputError(f"Invalid URL: {url}")
    if not host.endswith("github.com"):
        raise InputError("URL must point to github.com")
    parts = [p.strip() for p in u.path.split("/") if p.strip()]
    if len(parts) < 2:
        raise InputError("URL must include both owner and repo, e.g. https://github.com/owner/repo")
    owner = parts[0]
    repo = re.sub(r"\.git$", "", parts[1], flags=re.IGNORECASE)
    if not owner or not repo:
        raise InputError("Could not parse owner and repo from URL")
    return (owner, repo)


@dataclass(frozen=True)
class GitHubRestClient:
    """
    Thin GitHub REST wrapper covering what the fix workflow needs.

    Supports:
    - repo metadata, branch heads, branch creation (422 "already exists" is not an error)
    - Contents API read/write (commits are created server-side)
    - code search within the repo
    - pull requests: open, approve, merge
    - tarball download for build checks

    `repo` may be left empty for user-level calls such as `list_user_repos`; repo-scoped
    calls then raise InputError.

    Tests swap the network out via `transport` (httpx.MockTransport).
    """

    repo: str = ""  # owner/name
    token: str | None = None
    api_base: str = "https://api.github.com"
    timeout_s: float = 20.0
    user_agent: str = "stackfix"
    transport: httpx.BaseTransport | None = None

    @property
    def owner_name(self) -> Tuple[str, str]:
        owner, _, name = self.repo.partition("/")
        return (owner, name)

    def _headers(self, *, require_auth: bool = False) -> Dict[str, str]:
        h = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": self.user_agent,
        }
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        elif require_auth:
            raise InputError("Missing GitHub token")
        return h

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout_s, transport=self.transport, follow_redirects=True)

    def _repo_url(self) -> str:
        owner, name = self.owner_name
        if not owner or not name:
            raise InputError(f"GitHub repo must be owner/name, got: {self.repo!r}")
        return f"{self.api_base.rstrip('/')}/repos/{quote(owner, safe='')}/{quote(name, safe='')}"

    @staticmethod
    def _raise_for_status(r: httpx.Response) -> None:
        if r.is_success:
            return
        raise GitHubApiError(r.status_code, r.text or r.reason_phrase)

    def get_repo(self) -> Dict[str, Any]:
        with self._client() as c:
            r = c.get(self._repo_url(), headers=self._headers())
            self._raise_for_status(r)
            return r.json()

    def get_repo_default_branch(self) -> str:
        return str(self.get_repo().get("default_branch") or "main")

    def get_branch_head_sha(self, *, branch: str) -> str:
        url = f"{self._repo_url()}/git/ref/heads/{encode_path(branch)}"
        with self._client() as c:
            r = c.get(url, headers=self._headers())
            self._raise_for_status(r)
            data = r.json()
        return str((data.get("object") or {}).get("sha") or data.get("sha"))

    def create_branch(self, *, new_branch: str, from_sha: str) -> None:
        url = f"{self._repo_url()}/git/refs"
        payload = {"ref": f"refs/heads/{new_branch}", "sha": from_sha}
        with self._client() as c:
            r = c.post(url, headers=self._headers(require_auth=True), json=payload)
            # 422 if branch exists; treat as idempotent.
            if r.status_code == 422:
                return
            self._raise_for_status(r)

    def _contents_url(self, path: str) -> str:
        return f"{self._repo_url()}/contents/{encode_path(path.lstrip('/'))}"

    def get_file(self, *, path: str, ref: str | None = None) -> RepoFile:
        params = {"ref": ref} if ref else None
        with self._client() as c:
            r = c.get(self._contents_url(path), headers=self._headers(), params=params)
            self._raise_for_status(r)
            data = r.json()
        if not isinstance(data, dict) or "content" not in data:
            raise GitHubApiError(r.status_code, f"not a file: {path}")
        raw = base64.b64decode(str(data.get("content") or ""))
        return RepoFile(
            path=str(data.get("path") or path.lstrip("/")),
            text=raw.decode("utf-8", errors="replace"),
            sha=str(data.get("sha") or ""),
            encoding=str(data.get("encoding") or "base64"),
            size=int(data.get("size") or len(raw)),
        )

    def get_file_sha(self, *, path: str, ref: str) -> Optional[str]:
        with self._client() as c:
            r = c.get(self._contents_url(path), headers=self._headers(), params={"ref": ref})
            if r.status_code == 404:
                return None
            self._raise_for_status(r)
            data = r.json()
        return str(data.get("sha")) if isinstance(data, dict) and data.get("sha") else None

    def file_exists(self, *, path: str, ref: str) -> bool:
        return self.get_file_sha(path=path, ref=ref) is not None

    def search_code(self, *, query: str, per_page: int = 30, page: int = 1) -> Dict[str, Any]:
        """
        GitHub code search scoped to this repo. Newly pushed code may take a while to be indexed.
        """
        params = {
            "q": f"{query} repo:{self.repo}",
            "per_page": str(max(1, min(int(per_page), 100))),
            "page": str(max(1, int(page))),
        }
        with self._client() as c:
            r = c.get(f"{self.api_base.rstrip('/')}/search/code", headers=self._headers(), params=params)
            self._raise_for_status(r)
            data = r.json()
        return {"items": list(data.get("items") or []), "total_count": int(data.get("total_count") or 0)}

    def upsert_file(
        self,
        *,
        path: str,
        content_text: str,
        branch: str,
        message: str,
        known_sha: Optional[str] = None,
    ) -> CommitResult:
        b64 = base64.b64encode(content_text.encode("utf-8")).decode("ascii")
        payload: Dict[str, Any] = {"message": message, "content": b64, "branch": branch}
        if known_sha:
            payload["sha"] = known_sha
        with self._client() as c:
            r = c.put(self._contents_url(path), headers=self._headers(require_auth=True), json=payload)
            self._raise_for_status(r)
            data = r.json()
        return CommitResult(
            branch=branch,
            path=path.lstrip("/"),
            commit_sha=str((data.get("commit") or {}).get("sha") or ""),
            content_sha=str((data.get("content") or {}).get("sha") or ""),
        )

    def create_pull_request(self, *, title: str, body: str, head: str, base: str) -> PullRequestResult:
        payload = {"title": title, "body": body, "head": head, "base": base}
        with self._client() as c:
            r = c.post(f"{self._repo_url()}/pulls", headers=self._headers(require_auth=True), json=payload)
            self._raise_for_status(r)
            data = r.json()
        return PullRequestResult(
            pr_number=int(data["number"]),
            pr_title=str(data.get("title") or title),
            pr_url=str(data.get("html_url") or data.get("url") or ""),
            branch_name=head,
            state=str(data.get("state") or "open"),
        )

    def approve_pull_request(self, *, number: int, body: str = "Automated approval") -> None:
        payload = {"event": "APPROVE", "body": body}
        with self._client() as c:
            r = c.post(f"{self._repo_url()}/pulls/{int(number)}/reviews", headers=self._headers(require_auth=True), json=payload)
            self._raise_for_status(r)

    def merge_pull_request(self, *, number: int, pr_url: str, merge_method: str = "merge") -> MergeResult:
        with self._client() as c:
            r = c.put(
                f"{self._repo_url()}/pulls/{int(number)}/merge",
                headers=self._headers(require_auth=True),
                json={"merge_method": merge_method},
            )
            self._raise_for_status(r)
            data = r.json()
        return MergeResult(
            pr_number=int(number),
            pr_url=pr_url,
            merged=bool(data.get("merged")),
            sha=data.get("sha"),
            message=data.get("message"),
        )

    def download_tarball(self, *, ref: str) -> bytes:
        url = f"{self._repo_url()}/tarball/{encode_path(ref)}"
        with self._client() as c:
            r = c.get(url, headers=self._headers())
            self._raise_for_status(r)
            return r.content

    def list_user_repos(self, *, user: str, per_page: int = 30, page: int = 1) -> List[Dict[str, Any]]:
        url = f"{self.api_base.rstrip('/')}/users/{quote(user, safe='')}/repos"
        params = {"per_page": str(max(1, min(int(per_page), 100))), "page": str(max(1, int(page)))}
        with self._client() as c:
            r = c.get(url, headers=self._headers(), params=params)
            self._raise_for_status(r)
            data = r.json()
        return list(data) if isinstance(data, list) else []
