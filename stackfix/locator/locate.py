from __future__ import annotations

import logging
from typing import Optional, Tuple

import httpx

from stackfix.errors import LLMError
from stackfix.gitops.github_rest import GitHubRestClient
from stackfix.llm.chat_client import build_chat_client
from stackfix.locator.agent import run_locator_agent
from stackfix.locator.direct import locate_direct, normalize_path
from stackfix.models import LocatedFile, LocatorReport, ParsedInput, RepoTarget
from stackfix.settings import Settings

logger = logging.getLogger(__name__)


def _line_hint(parsed: ParsedInput, path: str) -> Tuple[Optional[int], Optional[int]]:
    for c in parsed.file_candidates:
        if path in c.path_or_name or normalize_path(c.path_or_name).endswith(path):
            return (c.line, c.column)
    return (None, None)


def _pick_from_report(
    report: LocatorReport, parsed: ParsedInput, gh: GitHubRestClient, *, ref: str
) -> Optional[LocatedFile]:
    for ranked in report.ranked_files:
        path = normalize_path(ranked.path)
        if not path or not gh.file_exists(path=path, ref=ref):
            logger.info("ranked file %s not found on %s, skipping", ranked.path, ref)
            continue
        line, column = _line_hint(parsed, path)
        if line is None and ranked.top_spans:
            line = ranked.top_spans[0].start_line
        return LocatedFile(path=path, line=line, column=column, strategy="agent", report=report)
    return None


def locate_file(
    parsed: ParsedInput,
    target: RepoTarget,
    gh: GitHubRestClient,
    settings: Settings,
    *,
    llm_transport: httpx.BaseTransport | None = None,
) -> LocatedFile:
    """
    Agent ranking first (when enabled and an LLM is configured), direct probing otherwise.

    The agent's report is kept on the result even when its files could not be confirmed
    and the direct locator made the final pick.
    """
    report: Optional[LocatorReport] = None
    chat = build_chat_client(settings, purpose="locate", transport=llm_transport) if settings.locator_mode == "agent" else None
    if chat is not None:
        client, model = chat
        try:
            report = run_locator_agent(
                parsed,
                target,
                client=client,
                model=model,
                max_tokens=settings.llm_max_tokens,
                top_k=settings.locator_top_k,
            )
        except LLMError as e:
            logger.warning("locator agent failed, using direct location: %s", e)
        if report is not None:
            picked = _pick_from_report(report, parsed, gh, ref=target.base_branch)
            if picked is not None:
                return picked
            logger.info("no ranked file confirmed on %s, using direct location", target.base_branch)

    located = locate_direct(parsed, gh, ref=target.base_branch)
    if report is not None:
        located = located.model_copy(update={"report": report})
    return located
