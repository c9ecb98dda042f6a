from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from stackfix.fixer.propose import propose_fix
from stackfix.gitops.github_rest import GitHubRestClient
from stackfix.llm.chat_client import build_chat_client
from stackfix.locator.locate import locate_file
from stackfix.models import BuildCheckResult, MergeResult, PullRequestResult, WorkflowInput, WorkflowResult
from stackfix.parsers.prompt import generate_run_id, parse_prompt
from stackfix.sentry.prepare import prepare_input
from stackfix.settings import Settings
from stackfix.telemetry.audit import AuditLogger
from stackfix.verify.build_check import BuildChecker
from stackfix.workflow.commit import commit_fix
from stackfix.workflow.pr import merge_pull_request, open_pull_request
from stackfix.workflow.resolve import resolve_owner_repo, resolve_repo

logger = logging.getLogger(__name__)


class FixWorkflow:
    """
    prepare -> parse -> resolve repo -> locate file -> read -> propose fix -> commit
    -> (build check) -> open PR -> (merge)

    Each step writes an audit record under the run id. Errors propagate after a
    `run.failed` record so callers see the original exception.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        audit: Optional[AuditLogger] = None,
        transport: httpx.BaseTransport | None = None,
        build_checker: Optional[BuildChecker] = None,
    ):
        self.settings = settings
        self.audit = audit or AuditLogger(settings.audit_log_path)
        # One transport for GitHub and LLM calls; tests route both through httpx.MockTransport.
        self.transport = transport
        self.build_checker = build_checker

    def _github(self, owner: str, repo: str, token: Optional[str]) -> GitHubRestClient:
        return GitHubRestClient(
            repo=f"{owner}/{repo}",
            token=self.settings.resolve_github_token(token),
            api_base=self.settings.github_api_base,
            timeout_s=self.settings.github_timeout_s,
            transport=self.transport,
        )

    def run(self, inp: WorkflowInput, *, run_id: Optional[str] = None) -> WorkflowResult:
        rid = run_id or generate_run_id()
        self.audit.write(
            rid,
            "run.started",
            {"has_prompt": bool(inp.prompt), "has_sentry_payload": inp.sentry_payload is not None, "owner": inp.owner, "repo": inp.repo},
        )
        try:
            result = self._run(inp, rid)
        except Exception as e:
            self.audit.write(rid, "run.failed", {"error": str(e), "error_type": type(e).__name__})
            logger.error("workflow run_id=%s failed: %s", rid, e)
            raise
        self.audit.write(rid, "run.finished", {"status": result.status, "pr": result.pr.pr_url if result.pr else None})
        return result

    def _run(self, inp: WorkflowInput, rid: str) -> WorkflowResult:
        s = self.settings
        prepared = prepare_input(inp, s)
        self.audit.write(rid, "input.prepared", {"prompt_chars": len(prepared.prompt), "owner": prepared.owner, "repo": prepared.repo})

        parsed = parse_prompt(prepared, run_id=rid)
        self.audit.write(
            rid,
            "input.parsed",
            {
                "error_header": parsed.error_header,
                "repo_url": parsed.repo_url,
                "repo_ref": parsed.repo_ref,
                "explicit_path": parsed.explicit_path,
                "file_candidates": [c.model_dump() for c in parsed.file_candidates],
            },
        )

        owner, repo = resolve_owner_repo(parsed, s)
        gh = self._github(owner, repo, parsed.token)
        target = resolve_repo(parsed, gh)
        self.audit.write(rid, "repo.resolved", target.model_dump())

        located = locate_file(parsed, target, gh, s, llm_transport=self.transport)
        self.audit.write(
            rid,
            "file.located",
            {
                "path": located.path,
                "line": located.line,
                "column": located.column,
                "strategy": located.strategy,
                "ranked_files": len(located.report.ranked_files) if located.report else 0,
                "confidence": located.report.confidence if located.report else None,
            },
        )

        repo_file = gh.get_file(path=located.path, ref=target.base_branch)
        self.audit.write(rid, "file.read", {"path": repo_file.path, "sha": repo_file.sha, "size": repo_file.size})

        chat = build_chat_client(s, purpose="fix", transport=self.transport)
        proposal = propose_fix(
            path=repo_file.path,
            file_text=repo_file.text,
            prompt=parsed.prompt,
            client=chat[0] if chat else None,
            model=chat[1] if chat else "",
            error_header=parsed.error_header,
            line=located.line,
            column=located.column,
            max_tokens=s.llm_max_tokens,
        )
        self.audit.write(
            rid,
            "fix.proposed",
            {"path": proposal.path, "changed": proposal.changed, "updated_chars": len(proposal.updated_text)},
        )

        base: Dict[str, Any] = {
            "run_id": rid,
            "owner": target.owner,
            "repo": target.repo,
            "base_branch": target.base_branch,
            "candidate_path": repo_file.path,
            "locator": located.report,
        }

        commit = commit_fix(
            proposal,
            target,
            gh,
            file_sha=repo_file.sha,
            branch_prefix=s.branch_prefix,
            message=s.commit_message,
        )
        self.audit.write(rid, "fix.committed", commit.model_dump())
        if commit.skipped:
            return WorkflowResult(status="no_change", branch=commit.branch, **base)

        build: Optional[BuildCheckResult] = None
        if s.build_check_enabled or self.build_checker is not None:
            checker = self.build_checker or BuildChecker(gh=gh, timeout_s=s.build_check_timeout_s)
            build = checker.check(ref=commit.branch)
            self.audit.write(
                rid,
                "build.checked",
                {"ok": build.ok, "package_manager": build.package_manager, "build_command": build.build_command, "logs_tail": build.logs[-2000:]},
            )
            if not build.ok:
                return WorkflowResult(
                    status="build_failed", branch=commit.branch, commit_sha=commit.commit_sha, build_check=build, **base
                )

        pr: PullRequestResult = open_pull_request(gh, head=commit.branch, title=parsed.pr_title, body=parsed.pr_body)
        self.audit.write(rid, "pr.opened", pr.model_dump())

        merge: Optional[MergeResult] = None
        if s.auto_merge:
            merge = merge_pull_request(gh, pr, merge_method=s.merge_method)
            self.audit.write(rid, "pr.merged", merge.model_dump())

        return WorkflowResult(
            status="merged" if merge and merge.merged else "pr_opened",
            branch=commit.branch,
            commit_sha=commit.commit_sha,
            pr=pr,
            merge=merge,
            build_check=build,
            **base,
        )
