from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List, Optional

from stackfix.errors import StackfixError
from stackfix.gitops.github_rest import GitHubRestClient
from stackfix.models import WorkflowInput
from stackfix.settings import Settings
from stackfix.workflow.pipeline import FixWorkflow


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _github(settings: Settings, repo: str, token: Optional[str]) -> GitHubRestClient:
    return GitHubRestClient(
        repo=repo,
        token=settings.resolve_github_token(token),
        api_base=settings.github_api_base,
        timeout_s=settings.github_timeout_s,
    )


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    prompt = args.prompt
    if args.prompt_file:
        prompt = _read_text(args.prompt_file)
    payload = json.loads(_read_text(args.sentry_payload)) if args.sentry_payload else None
    inp = WorkflowInput(
        prompt=prompt,
        owner=args.owner,
        repo=args.repo,
        token=args.token,
        pr_title=args.pr_title,
        pr_body=args.pr_body,
        sentry_payload=payload,
    )
    result = FixWorkflow(settings).run(inp)
    print(result.model_dump_json(indent=2, exclude={"locator"} if not args.show_report else None))
    return 0 if result.status in ("merged", "pr_opened", "no_change") else 1


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    uvicorn.run("stackfix.service.app:create_app", factory=True, host=args.host, port=args.port, log_level=settings.log_level.lower())
    return 0


def cmd_repos(args: argparse.Namespace, settings: Settings) -> int:
    gh = _github(settings, "", args.token)
    for r in gh.list_user_repos(user=args.user, per_page=args.per_page, page=args.page):
        print(f"{r.get('full_name')}\t{r.get('default_branch') or ''}\t{r.get('html_url') or ''}")
    return 0


def cmd_read_file(args: argparse.Namespace, settings: Settings) -> int:
    gh = _github(settings, f"{args.owner}/{args.repo}", args.token)
    f = gh.get_file(path=args.path, ref=args.ref)
    sys.stdout.write(f.text)
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="stackfix", description="Fix the file behind a stack trace and open a PR.")
    sub = ap.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="run the fix workflow once")
    run.add_argument("--prompt", help="error text / stack trace")
    run.add_argument("--prompt-file", help="read the prompt from a file ('-' for stdin)")
    run.add_argument("--sentry-payload", help="Sentry webhook JSON file ('-' for stdin)")
    run.add_argument("--owner")
    run.add_argument("--repo")
    run.add_argument("--token", help="GitHub token (defaults to STACKFIX_GITHUB_TOKEN / GITHUB_TOKEN)")
    run.add_argument("--pr-title")
    run.add_argument("--pr-body")
    run.add_argument("--show-report", action="store_true", help="include the locator report in the output")
    run.set_defaults(func=cmd_run)

    serve = sub.add_parser("serve", help="run the webhook / workflow HTTP service")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8088)
    serve.set_defaults(func=cmd_serve)

    repos = sub.add_parser("repos", help="list a user's public repositories")
    repos.add_argument("user")
    repos.add_argument("--per-page", type=int, default=30)
    repos.add_argument("--page", type=int, default=1)
    repos.add_argument("--token")
    repos.set_defaults(func=cmd_repos)

    read = sub.add_parser("read-file", help="print a file from a repository")
    read.add_argument("owner")
    read.add_argument("repo")
    read.add_argument("path")
    read.add_argument("--ref")
    read.add_argument("--token")
    read.set_defaults(func=cmd_read_file)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")
    try:
        return int(args.func(args, settings))
    except StackfixError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
