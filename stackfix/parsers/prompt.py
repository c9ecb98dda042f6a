from __future__ import annotations

import random
import re
import time
from typing import List, Optional, Tuple

from stackfix.models import FileCandidate, ParsedInput, PreparedInput
from stackfix.parsers.stacktrace import ParsedFrame, parse_frames


_EXPLICIT_PATH_RE = re.compile(r"file\s+(?:relative\s+)?path:\s*([^\s,;]+)", re.IGNORECASE)
_REPO_URL_RE = re.compile(
    r"https?://github\.com/([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)(/blob/([^\s/]+)/(\S+))?",
    re.IGNORECASE,
)
_NEXT_SRC_RE = re.compile(r"(src/[A-Za-z0-9_.\-/]+\.(?:ts|tsx|js|jsx))", re.IGNORECASE)
_REPO_REL_PATH_RE = re.compile(
    r"(src/[A-Za-z0-9_.\-/]+\.(?:ts|tsx|js|jsx|mjs|cjs|py|rb|go|java|cs|php|md))",
    re.IGNORECASE,
)

_B36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_B36[r])
    return "".join(reversed(out))


def generate_run_id() -> str:
    return f"{int(time.time() * 1000)}-{_base36(random.randrange(10**9))}"


def extract_repo_url(text: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Returns (https://github.com/<owner>/<repo>, blob ref) from the first GitHub URL in the text.
    The ref is only set for `/blob/<ref>/<path>` links.
    """
    m = _REPO_URL_RE.search(text)
    if not m:
        return (None, None)
    owner = m.group(1)
    repo = re.sub(r"\.git$", "", m.group(2).rstrip("."), flags=re.IGNORECASE)
    ref = m.group(4) if (m.group(3) and m.group(5)) else None
    return (f"https://github.com/{owner}/{repo}", ref)


def _candidate_from_frame(frame: ParsedFrame) -> FileCandidate:
    path = frame.file
    # Next.js compiled route handlers: the original source path is sometimes logged on the same line.
    if ".next/" in path and path.endswith("route.js"):
        m = _NEXT_SRC_RE.search(frame.raw)
        if m:
            path = m.group(1)
    return FileCandidate(path_or_name=path, line=frame.line, column=frame.column)


def extract_file_candidates(text: str) -> List[FileCandidate]:
    frames = parse_frames(text)
    # Node frames win; Python next; then anything else we could parse.
    picked = [f for f in frames if f.language == "node"]
    if not picked:
        picked = [f for f in frames if f.language == "python"]
    if not picked:
        picked = frames
    candidates = [_candidate_from_frame(f) for f in picked]

    # A repo-relative src/... path anywhere in the prompt beats compiled/absolute frame paths.
    rel: Optional[str] = None
    for raw in text.splitlines():
        m = _REPO_REL_PATH_RE.search(raw)
        if m:
            rel = m.group(1)
            break
    if rel and not any(rel in c.path_or_name for c in candidates):
        candidates.insert(0, FileCandidate(path_or_name=rel))
    return candidates


def parse_prompt(prepared: PreparedInput, *, run_id: Optional[str] = None) -> ParsedInput:
    text = prepared.prompt
    header = next((ln for ln in text.splitlines() if ln.strip()), None)
    pm = _EXPLICIT_PATH_RE.search(text)
    repo_url, repo_ref = extract_repo_url(text)
    return ParsedInput(
        **prepared.model_dump(),
        run_id=run_id or generate_run_id(),
        error_header=header,
        repo_url=repo_url,
        repo_ref=repo_ref,
        explicit_path=pm.group(1) if pm else None,
        file_candidates=extract_file_candidates(text),
    )
