from __future__ import annotations

import base64
import io
import json
import os
import tarfile
from typing import Any, Dict, List, Optional

import httpx
import pytest


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Keep tests deterministic and isolated from developer machine env.
    """
    for k in list(os.environ.keys()):
        if k.startswith("STACKFIX_") or k == "GITHUB_TOKEN":
            monkeypatch.delenv(k, raising=False)


class FakeGitHub:
    """
    In-memory GitHub REST + OpenAI-compatible chat endpoint behind one httpx.MockTransport.

    Files live per branch; branches created through the refs API start as a copy of their source.
    """

    def __init__(
        self,
        *,
        owner: str = "acme",
        repo: str = "social-app",
        default_branch: str = "main",
        files: Optional[Dict[str, str]] = None,
        llm_replies: Optional[List[str]] = None,
        llm_host: str = "llm.test",
    ):
        self.owner = owner
        self.repo = repo
        self.default_branch = default_branch
        self.branches: Dict[str, Dict[str, str]] = {default_branch: dict(files or {})}
        self.heads: Dict[str, str] = {default_branch: "BASESHA"}
        self.llm_replies = list(llm_replies or [])
        self.llm_host = llm_host
        self.llm_requests: List[Dict[str, Any]] = []
        self.commits: List[Dict[str, Any]] = []
        self.prs: List[Dict[str, Any]] = []
        self.reviews: List[int] = []
        self.merges: List[Dict[str, Any]] = []
        self.approve_status = 200
        self.requests: List[str] = []

    @property
    def prefix(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def _file_sha(self, branch: str, path: str) -> str:
        return f"sha-{branch}-{path}".replace("/", "_")

    def _tarball(self, branch: str) -> bytes:
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            for path, text in self.branches[branch].items():
                data = text.encode("utf-8")
                info = tarfile.TarInfo(name=f"{self.owner}-{self.repo}-abc123/{path}")
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
        return buf.getvalue()

    def _chat(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        self.llm_requests.append(body)
        if not self.llm_replies:
            return httpx.Response(500, text="no scripted reply")
        return httpx.Response(200, json={"choices": [{"message": {"content": self.llm_replies.pop(0)}}]})

    def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method.upper()
        path = request.url.path
        self.requests.append(f"{method} {path}")

        if request.url.host == self.llm_host:
            return self._chat(request)

        if method == "GET" and path == self.prefix:
            return httpx.Response(200, json={"default_branch": self.default_branch, "full_name": f"{self.owner}/{self.repo}"})

        if method == "GET" and path.startswith(f"{self.prefix}/git/ref/heads/"):
            branch = path[len(f"{self.prefix}/git/ref/heads/") :]
            if branch not in self.heads:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json={"object": {"sha": self.heads[branch]}})

        if method == "POST" and path == f"{self.prefix}/git/refs":
            body = json.loads(request.content.decode("utf-8"))
            branch = body["ref"].replace("refs/heads/", "")
            if branch in self.branches:
                return httpx.Response(422, json={"message": "Reference already exists"})
            source = next(b for b, sha in self.heads.items() if sha == body["sha"])
            self.branches[branch] = dict(self.branches[source])
            self.heads[branch] = body["sha"]
            return httpx.Response(201, json={"ref": body["ref"], "object": {"sha": body["sha"]}})

        if path.startswith(f"{self.prefix}/contents/"):
            file_path = path[len(f"{self.prefix}/contents/") :]
            if method == "GET":
                branch = request.url.params.get("ref") or self.default_branch
                files = self.branches.get(branch, {})
                if file_path not in files:
                    return httpx.Response(404, json={"message": "Not Found"})
                raw = files[file_path].encode("utf-8")
                return httpx.Response(
                    200,
                    json={
                        "path": file_path,
                        "sha": self._file_sha(branch, file_path),
                        "encoding": "base64",
                        "size": len(raw),
                        "content": base64.b64encode(raw).decode("ascii"),
                    },
                )
            if method == "PUT":
                body = json.loads(request.content.decode("utf-8"))
                branch = body["branch"]
                text = base64.b64decode(body["content"]).decode("utf-8")
                self.branches[branch][file_path] = text
                self.heads[branch] = f"COMMIT{len(self.commits) + 1}"
                self.commits.append({"path": file_path, **body})
                return httpx.Response(
                    200,
                    json={"commit": {"sha": self.heads[branch]}, "content": {"sha": self._file_sha(branch, file_path)}},
                )

        if method == "GET" and path == "/search/code":
            name = request.url.params.get("q", "").split(" ")[0]
            items = [
                {"name": p.split("/")[-1], "path": p}
                for p in self.branches[self.default_branch]
                if name and name in p.split("/")[-1]
            ]
            return httpx.Response(200, json={"total_count": len(items), "items": items})

        if method == "POST" and path == f"{self.prefix}/pulls":
            body = json.loads(request.content.decode("utf-8"))
            number = len(self.prs) + 1
            self.prs.append(body)
            return httpx.Response(
                201,
                json={
                    "number": number,
                    "title": body["title"],
                    "state": "open",
                    "html_url": f"https://github.com/{self.owner}/{self.repo}/pull/{number}",
                },
            )

        if method == "POST" and path.startswith(f"{self.prefix}/pulls/") and path.endswith("/reviews"):
            number = int(path.split("/")[-2])
            if self.approve_status != 200:
                return httpx.Response(self.approve_status, json={"message": "Can not approve your own pull request"})
            self.reviews.append(number)
            return httpx.Response(200, json={"id": 1, "state": "APPROVED"})

        if method == "PUT" and path.startswith(f"{self.prefix}/pulls/") and path.endswith("/merge"):
            number = int(path.split("/")[-2])
            body = json.loads(request.content.decode("utf-8"))
            self.merges.append({"number": number, **body})
            return httpx.Response(200, json={"merged": True, "sha": "MERGESHA", "message": "Pull Request successfully merged"})

        if method == "GET" and path.startswith(f"{self.prefix}/tarball/"):
            branch = path[len(f"{self.prefix}/tarball/") :]
            return httpx.Response(200, content=self._tarball(branch))

        if method == "GET" and path.startswith("/users/") and path.endswith("/repos"):
            return httpx.Response(
                200,
                json=[{"full_name": f"{self.owner}/{self.repo}", "default_branch": self.default_branch, "html_url": "https://github.com/x"}],
            )

        return httpx.Response(404, json={"message": f"unhandled {method} {path}"})


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()
