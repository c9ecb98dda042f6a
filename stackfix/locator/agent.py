from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from stackfix.errors import LLMError
from stackfix.llm.chat_client import ChatCompletionsClient
from stackfix.models import LocatorReport, ParsedInput, RepoTarget
from stackfix.prompting.locator import build_locator_messages

logger = logging.getLogger(__name__)

MAX_RANKED_FILES = 15
MAX_TOP_SPANS = 3

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n(.*?)\n```\s*$", re.DOTALL)


def build_context(parsed: ParsedInput, target: RepoTarget, *, received_at: Optional[str] = None) -> Dict[str, Any]:
    return {
        "runId": parsed.run_id,
        "prompt": parsed.prompt,
        "owner": target.owner,
        "repo": target.repo,
        "baseBranch": target.base_branch,
        "errorHeader": parsed.error_header,
        "repoUrl": parsed.repo_url,
        "repoRef": parsed.repo_ref,
        "explicitPath": parsed.explicit_path,
        "fileCandidates": [
            {"pathOrName": c.path_or_name, "line": c.line, "column": c.column} for c in parsed.file_candidates
        ],
        "receivedAt": received_at or datetime.now(timezone.utc).isoformat(),
    }


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Models sometimes wrap JSON in fences or add a sentence around it; keep only the outermost object.
    """
    s = (text or "").strip()
    m = _FENCE_RE.match(s)
    if m:
        s = m.group(1).strip()
    if not s.startswith("{"):
        start, end = s.find("{"), s.rfind("}")
        if start < 0 or end <= start:
            raise LLMError("locator_response_not_json: no JSON object found")
        s = s[start : end + 1]
    try:
        obj = json.loads(s)
    except json.JSONDecodeError as e:
        raise LLMError(f"locator_response_not_json: {e}") from e
    if not isinstance(obj, dict):
        raise LLMError("locator_response_not_json: top-level value is not an object")
    return obj


def normalize_report(report: LocatorReport, *, top_k: int = MAX_RANKED_FILES) -> LocatorReport:
    limit = max(1, min(int(top_k), MAX_RANKED_FILES))
    ranked = sorted(report.ranked_files, key=lambda f: f.score, reverse=True)[:limit]
    for f in ranked:
        f.top_spans = f.top_spans[:MAX_TOP_SPANS]
    report.ranked_files = ranked
    return report


def parse_report(text: str, *, top_k: int = MAX_RANKED_FILES) -> LocatorReport:
    obj = extract_json_object(text)
    try:
        report = LocatorReport.model_validate(obj)
    except ValidationError as e:
        raise LLMError(f"locator_report_invalid: {e.error_count()} validation error(s)") from e
    return normalize_report(report, top_k=top_k)


def run_locator_agent(
    parsed: ParsedInput,
    target: RepoTarget,
    *,
    client: ChatCompletionsClient,
    model: str,
    max_tokens: int = 8192,
    top_k: int = MAX_RANKED_FILES,
) -> LocatorReport:
    context = build_context(parsed, target)
    text = client.chat(model=model, messages=build_locator_messages(context, top_k=top_k), max_tokens=max_tokens)
    report = parse_report(text, top_k=top_k)
    logger.info(
        "locator agent ranked %d file(s) confidence=%.2f run_id=%s",
        len(report.ranked_files),
        report.confidence,
        parsed.run_id,
    )
    return report
