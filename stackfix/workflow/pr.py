from __future__ import annotations

import logging
from typing import Optional

from stackfix.errors import GitHubApiError
from stackfix.gitops.github_rest import GitHubRestClient
from stackfix.models import MergeResult, PullRequestResult

logger = logging.getLogger(__name__)

DEFAULT_PR_TITLE = "fix: automated fix from stack trace"
DEFAULT_PR_BODY = "Automated fix generated by workflow."


def open_pull_request(
    gh: GitHubRestClient,
    *,
    head: str,
    title: Optional[str] = None,
    body: Optional[str] = None,
    base: Optional[str] = None,
) -> PullRequestResult:
    """
    Open a PR from the fix branch; without an explicit base the repo's default branch is targeted.
    """
    target = base or gh.get_repo_default_branch()
    pr = gh.create_pull_request(title=title or DEFAULT_PR_TITLE, body=body or DEFAULT_PR_BODY, head=head, base=target)
    logger.info("opened PR #%d %s (%s -> %s)", pr.pr_number, pr.pr_url, head, target)
    return pr


def merge_pull_request(gh: GitHubRestClient, pr: PullRequestResult, *, merge_method: str = "merge") -> MergeResult:
    try:
        gh.approve_pull_request(number=pr.pr_number)
    except GitHubApiError as e:
        # Authors cannot approve their own PRs; branch protection decides whether the merge still goes through.
        logger.info("approve PR #%d skipped: %s", pr.pr_number, e)
    result = gh.merge_pull_request(number=pr.pr_number, pr_url=pr.pr_url, merge_method=merge_method)
    logger.info("merge PR #%d merged=%s sha=%s", pr.pr_number, result.merged, result.sha)
    return result
