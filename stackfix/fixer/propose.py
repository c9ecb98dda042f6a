from __future__ import annotations

import logging
import os
import re
from typing import Dict, List, Optional

from stackfix.errors import LLMError
from stackfix.llm.chat_client import ChatCompletionsClient
from stackfix.models import FixProposal
from stackfix.parsers.stacktrace import parse_python_traceback

logger = logging.getLogger(__name__)

SNIPPET_RADIUS = 8

FIX_SYSTEM_PROMPT = "\n".join(
    [
        "You are an expert software engineer. You will fix a single file to resolve the error context.",
        "Rules:",
        "- Output ONLY the full updated file content. No explanations.",
        "- Make the smallest safe change that resolves the error.",
        "- Preserve formatting, imports, and comments unless strictly necessary.",
        "- If unsure, add safe guards or type checks instead of deleting logic.",
    ]
)

_LANGUAGES: Dict[str, str] = {
    ".ts": "TypeScript",
    ".tsx": "TypeScript",
    ".js": "JavaScript",
    ".jsx": "JavaScript",
    ".mjs": "JavaScript",
    ".cjs": "JavaScript",
    ".py": "Python",
    ".rb": "Ruby",
    ".go": "Go",
    ".java": "Java",
    ".kt": "Kotlin",
    ".cs": "C#",
    ".php": "PHP",
}

_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\n(.*?)\n```\s*$", re.DOTALL)


def detect_language(path: str) -> Optional[str]:
    return _LANGUAGES.get(os.path.splitext(path)[1].lower())


def numbered_snippet(text: str, line: Optional[int], *, radius: int = SNIPPET_RADIUS) -> str:
    if line is None:
        return ""
    lines = text.splitlines()
    if not lines:
        return ""
    idx = max(0, min(len(lines) - 1, int(line) - 1))
    start = max(0, idx - radius)
    end = min(len(lines), idx + radius)
    excerpt = "\n".join(f"{start + i + 1}: {ln}" for i, ln in enumerate(lines[start:end]))
    return f"Relevant snippet (lines {start + 1}-{end}):\n{excerpt}"


def failing_code_lines(prompt: str) -> str:
    tb = parse_python_traceback(prompt)
    if tb is None:
        return ""
    rows = [f"{f.file}:{f.line}: {f.code}" for f in tb.frames if f.code]
    return "Failing code (innermost last):\n" + "\n".join(rows) if rows else ""


def unwrap_fences(text: str) -> str:
    m = _FENCE_RE.match(text.strip())
    return m.group(1) if m else text


def build_fix_messages(
    *,
    path: str,
    file_text: str,
    prompt: str,
    error_header: Optional[str] = None,
    line: Optional[int] = None,
    column: Optional[int] = None,
) -> List[Dict[str, str]]:
    language = detect_language(path)
    parts = [
        f"File path: {path}",
        f"Language: {language}" if language else "",
        f"Error line: {line}{':' + str(column) if column is not None else ''}" if line is not None else "",
        f"Error/context: {error_header}" if error_header else "",
        # The prepared prompt already embeds the stack trace.
        f"Stack trace:\n{prompt}" if prompt else "",
        failing_code_lines(prompt),
        numbered_snippet(file_text, line),
        "",
        "Current file content:\n",
        file_text,
    ]
    user = "\n".join(p for p in parts if p)
    return [
        {"role": "system", "content": FIX_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


def propose_fix(
    *,
    path: str,
    file_text: str,
    prompt: str,
    client: Optional[ChatCompletionsClient],
    model: str = "",
    error_header: Optional[str] = None,
    line: Optional[int] = None,
    column: Optional[int] = None,
    max_tokens: int = 8192,
) -> FixProposal:
    """
    Ask the LLM for the full updated file. Without a client, or when the call fails,
    the original text is returned so the workflow ends with "no change" instead of an error.
    """
    updated = file_text
    if client is None:
        logger.info("no LLM configured, keeping %s unchanged", path)
        return FixProposal(path=path, original_text=file_text, updated_text=updated)

    messages = build_fix_messages(
        path=path,
        file_text=file_text,
        prompt=prompt,
        error_header=error_header,
        line=line,
        column=column,
    )
    try:
        answer = client.chat(model=model, messages=messages, max_tokens=max_tokens)
    except LLMError as e:
        logger.error("fix proposal failed for %s: %s", path, e)
        return FixProposal(path=path, original_text=file_text, updated_text=updated)

    if answer.strip():
        updated = unwrap_fences(answer)
    return FixProposal(path=path, original_text=file_text, updated_text=updated)
