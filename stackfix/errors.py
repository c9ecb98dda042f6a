from __future__ import annotations


class StackfixError(Exception):
    """Base class for workflow failures surfaced to callers."""


class InputError(StackfixError):
    pass


class LocateError(StackfixError):
    pass


class LLMError(StackfixError):
    pass


class GitHubApiError(StackfixError):
    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"GitHub API error {status_code}: {body[:1500]}")
