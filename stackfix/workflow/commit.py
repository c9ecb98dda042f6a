from __future__ import annotations

import logging
import time
from typing import Optional

from stackfix.gitops.github_rest import GitHubRestClient
from stackfix.models import CommitResult, FixProposal, RepoTarget

logger = logging.getLogger(__name__)


def fix_branch_name(prefix: str = "fix/", *, now_ms: Optional[int] = None) -> str:
    return f"{prefix}{now_ms if now_ms is not None else int(time.time() * 1000)}"


def commit_fix(
    proposal: FixProposal,
    target: RepoTarget,
    gh: GitHubRestClient,
    *,
    file_sha: str,
    branch_prefix: str = "fix/",
    message: str = "fix: automated stack-trace fix",
) -> CommitResult:
    """
    Create `<prefix><millis>` from the base head and PUT the updated file on it.

    Empty or unchanged text is not committed: the result is marked skipped and points at the base branch.
    """
    if not proposal.updated_text or not proposal.changed:
        logger.warning("nothing to commit for %s (empty=%s)", proposal.path, not proposal.updated_text)
        return CommitResult(branch=target.base_branch, path=proposal.path, content_sha=file_sha, skipped=True)

    branch = fix_branch_name(branch_prefix)
    base_sha = gh.get_branch_head_sha(branch=target.base_branch)
    gh.create_branch(new_branch=branch, from_sha=base_sha)
    result = gh.upsert_file(
        path=proposal.path,
        content_text=proposal.updated_text,
        branch=branch,
        message=message,
        known_sha=file_sha or None,
    )
    logger.info("committed %s to %s commit=%s", proposal.path, branch, result.commit_sha)
    return result
