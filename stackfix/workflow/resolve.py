from __future__ import annotations

import logging
from typing import Optional, Tuple

from stackfix.errors import InputError
from stackfix.gitops.github_rest import GitHubRestClient, parse_github_url
from stackfix.models import ParsedInput, RepoTarget
from stackfix.settings import Settings

logger = logging.getLogger(__name__)


def resolve_owner_repo(parsed: ParsedInput, settings: Settings) -> Tuple[str, str]:
    owner: Optional[str] = parsed.owner
    repo: Optional[str] = parsed.repo
    if (not owner or not repo) and parsed.repo_url:
        owner, repo = parse_github_url(parsed.repo_url)
    if not owner or not repo:
        owner = owner or settings.default_owner
        repo = repo or settings.default_repo
    if not owner or not repo:
        raise InputError("Owner/repo missing")
    return (owner, repo)


def resolve_repo(parsed: ParsedInput, gh: GitHubRestClient) -> RepoTarget:
    """
    Base branch: the ref of a `/blob/<ref>/...` link in the prompt, else the repo's default branch.
    """
    owner, repo = gh.owner_name
    base = parsed.repo_ref or gh.get_repo_default_branch()
    logger.info("resolved %s/%s base_branch=%s run_id=%s", owner, repo, base, parsed.run_id)
    return RepoTarget(owner=owner, repo=repo, base_branch=base)
