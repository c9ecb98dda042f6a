from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from stackfix.errors import InputError
from stackfix.models import PreparedInput, SentryEvent, SentryWebhook, WorkflowInput
from stackfix.sentry.sample import SAMPLE_FILE, SAMPLE_OWNER, SAMPLE_REPO, SAMPLE_SENTRY_PAYLOAD
from stackfix.settings import Settings

logger = logging.getLogger(__name__)

_APP_DIR_HINTS = ("src/", "app/", "lib/")


def extract_stack_trace(event: SentryEvent, *, max_lines: int = 10) -> str:
    """
    Node-style trace text (deepest frame first) rebuilt from the first exception's frames.
    """
    lines: List[str] = []
    if event.message:
        lines.append(event.message)
    for frame in reversed(event.frames()):
        if not frame.filename or not frame.lineno:
            continue
        fn = frame.function or "anonymous"
        lines.append(f"    at {fn} ({frame.filename}:{frame.lineno}:{frame.colno or 0})")
        if len(lines) > max_lines:
            break
    return "\n".join(lines)


def extract_file_path(event: SentryEvent) -> Optional[str]:
    if event.location:
        return event.location
    if event.metadata and event.metadata.filename:
        return event.metadata.filename
    frames = event.frames()
    for f in frames:
        if f.in_app and f.filename:
            return f.filename
    for f in frames:
        if f.filename and any(h in f.filename for h in _APP_DIR_HINTS):
            return f.filename
    return None


def extract_repo_info(event: SentryEvent, settings: Settings) -> Tuple[Optional[str], Optional[str]]:
    # Sentry events carry no repo identity; the target comes from deployment config.
    owner = settings.default_owner
    repo = settings.default_repo
    if settings.environment.lower() == "dev":
        owner = owner or SAMPLE_OWNER
        repo = repo or SAMPLE_REPO
    return (owner, repo)


def build_prompt(event: SentryEvent, *, owner: Optional[str], repo: Optional[str], branch: str = "main") -> str:
    file_path = extract_file_path(event)
    sections: List[str] = [
        "Sentry Alert Details:",
        f"Event ID: {event.event_id}",
        f"Environment: {event.environment or 'unknown'}",
        f"Transaction: {event.transaction or 'unknown'}",
        "",
        "Stack trace:",
        extract_stack_trace(event),
        "",
    ]
    if file_path:
        if owner and repo:
            sections.append("Repo URL:")
            sections.append(f"https://github.com/{owner}/{repo}/blob/{branch}/{file_path}")
            sections.append("")
        sections.append("File relative path:")
        sections.append(file_path)
    if event.request:
        sections.extend(["", "Request Context:", f"Method: {event.request.method}", f"URL: {event.request.url}"])
    runtime = event.contexts.runtime if event.contexts else None
    if runtime:
        sections.extend(["", "Runtime:", f"{runtime.name} {runtime.version}"])
    return "\n".join(sections)


def default_pr_title(event: SentryEvent) -> str:
    file_path = extract_file_path(event)
    err_type = (event.metadata.type if event.metadata else None) or "Error"
    where = file_path.split("/")[-1] if file_path else "application"
    return f"Fix: {err_type} in {where} (Sentry Alert)"


def default_pr_body(event: SentryEvent) -> str:
    file_path = extract_file_path(event)
    err = event.message or (event.metadata.value if event.metadata else None) or "Unknown error"
    return (
        "Automated fix for Sentry error:\n\n"
        f"**Error:** {err}\n"
        f"**File:** {file_path or 'Unknown'}\n"
        f"**Environment:** {event.environment or 'Unknown'}\n"
        f"**Event ID:** {event.event_id}\n\n"
        f"**Sentry Link:** {event.web_url or 'N/A'}"
    )


def prepare_from_sentry(payload: Dict[str, Any], inp: WorkflowInput, settings: Settings) -> PreparedInput:
    event = SentryWebhook.model_validate(payload).data.error
    d_owner, d_repo = extract_repo_info(event, settings)
    owner = inp.owner or d_owner
    repo = inp.repo or d_repo
    prepared = PreparedInput(
        prompt=build_prompt(event, owner=owner, repo=repo),
        owner=owner,
        repo=repo,
        token=inp.token,
        pr_title=inp.pr_title or default_pr_title(event),
        pr_body=inp.pr_body or default_pr_body(event),
    )
    logger.info(
        "sentry prompt prepared event_id=%s file=%s repo=%s/%s environment=%s",
        event.event_id,
        extract_file_path(event),
        owner,
        repo,
        event.environment,
    )
    return prepared


def _dev_fallback(inp: WorkflowInput) -> PreparedInput:
    owner = inp.owner or SAMPLE_OWNER
    repo = inp.repo or SAMPLE_REPO
    stack = "\n".join(
        [
            "Error: Demo: CreateFriend crash",
            f"    at eval ({SAMPLE_FILE}:171:13)",
            "    at process.processTicksAndRejections (node:internal/process/task_queues:105:5)",
        ]
    )
    prompt = "\n".join(
        [
            "Stack trace:",
            stack,
            "\nRepo URL:",
            f"https://github.com/{owner}/{repo}/blob/main/{SAMPLE_FILE}",
            "\nFile relative path:",
            SAMPLE_FILE,
        ]
    )
    return PreparedInput(
        prompt=prompt,
        owner=owner,
        repo=repo,
        token=inp.token,
        pr_title=inp.pr_title or "Automated fix from Sentry alert (dev fallback)",
        pr_body=inp.pr_body,
    )


def prepare_input(inp: WorkflowInput, settings: Settings) -> PreparedInput:
    """
    Turn a workflow request into a prompt.

    - an explicit non-empty prompt is passed through untouched
    - a Sentry webhook payload is rendered into a prompt with PR title/body defaults
    - in dev, a missing payload means the bundled sample alert is used, and an invalid one
      degrades to a synthetic prompt instead of failing
    """
    if inp.prompt and inp.prompt.strip():
        return PreparedInput(
            prompt=inp.prompt,
            owner=inp.owner,
            repo=inp.repo,
            token=inp.token,
            pr_title=inp.pr_title,
            pr_body=inp.pr_body,
        )

    is_dev = settings.environment.lower() == "dev"
    payload = inp.sentry_payload
    if payload is None and is_dev:
        payload = SAMPLE_SENTRY_PAYLOAD
    if payload is None:
        raise InputError("Input prompt required")

    try:
        return prepare_from_sentry(payload, inp, settings)
    except ValidationError as e:
        if not is_dev:
            raise InputError(f"Invalid Sentry payload: {e.error_count()} validation error(s)") from e
        logger.warning("failed to parse Sentry payload, falling back to synthetic prompt: %s", e)
        return _dev_fallback(inp)
