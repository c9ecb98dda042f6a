from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


_GITHUB_URL_RE = re.compile(r"(?:https?://|git@)github\.com[:/]([A-Za-z0-9_.-]+)/([A-Za-z0-9_.-]+)", re.IGNORECASE)

_JS_FRAME_RE = re.compile(r"^\s*at\s+(?:(?P<fn>.*?)\s+\()?(?P<file>.+?):(?P<line>\d+):(?P<col>\d+)\)?$")
_PY_FRAME_RE = re.compile(r'^\s*File\s+"(?P<file>.+?)",\s+line\s+(?P<line>\d+)(?:,\s+in\s+(?P<fn>.+))?')
_JAVA_FRAME_RE = re.compile(r"^\s*at\s+(?P<fn>[\w.$<>]+)\((?P<file>[^:()]+):(?P<line>\d+)\)\s*$")
_RUBY_FRAME_RE = re.compile(r"^\s*(?P<file>[^\s].*?):(?P<line>\d+):in\s+`(?P<fn>[^']+)'")
_GO_ADDR_FRAME_RE = re.compile(r"^\s*(?P<file>[\w/._-]+):(?P<line>\d+)\s+\+0x[0-9a-f]+\s*$", re.IGNORECASE)
_GO_PLAIN_FRAME_RE = re.compile(r"^\s*(?:\S+)\s+(?P<file>[\w/._-]+):(?P<line>\d+)\s*$")

_JS_HEADER_RE = re.compile(r"^(\w+Error|TypeError|ReferenceError|RangeError|SyntaxError|AssertionError):\s*(.*)$")
_PY_HEADER_RE = re.compile(r"^([A-Za-z_][\w.]*):\s*(.*)$")
_JAVA_HEADER_RE = re.compile(r'(?:Exception in thread ".*"\s+)?([\w.]+(?:Exception|Error))(?::\s*(.*))?')


@dataclass(frozen=True)
class ParsedFrame:
    file: str
    raw: str
    line: Optional[int] = None
    column: Optional[int] = None
    function: Optional[str] = None
    language: Optional[str] = None
    code: Optional[str] = None


@dataclass(frozen=True)
class ParsedStackTrace:
    raw: str
    frames: List[ParsedFrame] = field(default_factory=list)
    error_type: Optional[str] = None
    message: Optional[str] = None
    language_guess: Optional[str] = None
    repo_url_guess: Optional[str] = None


def guess_language(stack: str) -> Optional[str]:
    if re.search(r"^Traceback \(most recent call last\):", stack, re.MULTILINE):
        return "python"
    if re.search(r"\bat\s+.+\(.+?:\d+:\d+\)", stack, re.MULTILINE) or re.search(r"^\s*at\s+.+:\d+:\d+$", stack, re.MULTILINE):
        return "node"
    if re.search(r"\bat\s+[\w.$]+\([^)]*\)", stack, re.MULTILINE) and re.search(r"\.java:\d+\)", stack, re.MULTILINE):
        return "java"
    if re.search(r"^[^\s].+?:\d+:in\s+`", stack, re.MULTILINE):
        return "ruby"
    if re.search(r"goroutine\s+\d+\s+\[", stack) or re.search(r"^\s*[\w/.-]+:\d+\s+\+0x[0-9a-f]+", stack, re.MULTILINE):
        return "go"
    return None


def extract_repo_url(stack: str) -> Optional[str]:
    m = _GITHUB_URL_RE.search(stack)
    if not m:
        return None
    repo = re.sub(r"\.git$", "", m.group(2), flags=re.IGNORECASE)
    return f"https://github.com/{m.group(1)}/{repo}"


def parse_frames(stack: str) -> List[ParsedFrame]:
    """
    One frame per matching line. Order of attempts matters: JS first (its `at x (f:l:c)` shape is
    the most specific), Go plain frames last because that pattern is loose.
    """
    frames: List[ParsedFrame] = []
    for raw in stack.splitlines():
        m = _JS_FRAME_RE.match(raw)
        if m:
            frames.append(
                ParsedFrame(
                    file=m.group("file"),
                    line=int(m.group("line")),
                    column=int(m.group("col")),
                    function=m.group("fn") or None,
                    raw=raw,
                    language="node",
                )
            )
            continue
        m = _PY_FRAME_RE.match(raw)
        if m:
            fn = m.group("fn")
            frames.append(ParsedFrame(file=m.group("file"), line=int(m.group("line")), function=fn.strip() if fn else None, raw=raw, language="python"))
            continue
        m = _JAVA_FRAME_RE.match(raw)
        if m:
            frames.append(ParsedFrame(file=m.group("file"), line=int(m.group("line")), function=m.group("fn"), raw=raw, language="java"))
            continue
        m = _RUBY_FRAME_RE.match(raw)
        if m:
            frames.append(ParsedFrame(file=m.group("file"), line=int(m.group("line")), function=m.group("fn"), raw=raw, language="ruby"))
            continue
        m = _GO_ADDR_FRAME_RE.match(raw) or _GO_PLAIN_FRAME_RE.match(raw)
        if m:
            frames.append(ParsedFrame(file=m.group("file"), line=int(m.group("line")), raw=raw, language="go"))
    return frames


def extract_error_header(stack: str) -> Tuple[Optional[str], Optional[str]]:
    first = next((ln for ln in stack.splitlines() if ln.strip()), "")
    m = _JS_HEADER_RE.match(first)
    if m:
        return (m.group(1), m.group(2))
    # Python prints the exception last
    last = next((ln for ln in reversed(stack.strip().splitlines()) if re.search(r":\s+", ln)), None)
    if last:
        m = _PY_HEADER_RE.match(last.strip())
        if m:
            return (m.group(1).split(".")[-1], m.group(2))
    m = _JAVA_HEADER_RE.search(first)
    if m:
        return (m.group(1), m.group(2))
    return (None, None)


def parse_stack_trace(text: str) -> ParsedStackTrace:
    raw = text or ""
    error_type, message = extract_error_header(raw)
    return ParsedStackTrace(
        raw=raw,
        frames=parse_frames(raw),
        error_type=error_type,
        message=message,
        language_guess=guess_language(raw),
        repo_url_guess=extract_repo_url(raw),
    )



def parse_python_traceback(text: str, *, max_frames: int = 30) -> Optional[ParsedStackTrace]:
    """
    Frames of the last `Traceback (most recent call last):` block, each with the source line
    Python printed under it. None when the text holds no Python traceback.
    """
    lines = (text or "").splitlines()
    starts = [i for i, ln in enumerate(lines) if "Traceback (most recent call last):" in ln]
    if not starts:
        return None

    frames: List[ParsedFrame] = []
    error_type: Optional[str] = None
    message: Optional[str] = None
    i = starts[-1] + 1
    while i < len(lines) and len(frames) < max_frames:
        m = _PY_FRAME_RE.match(lines[i])
        if m:
            fn = m.group("fn")
            raw = lines[i]
            code = None
            if i + 1 < len(lines) and lines[i + 1].startswith("    ") and not _PY_FRAME_RE.match(lines[i + 1]):
                code = lines[i + 1].strip()
                i += 1
            frames.append(
                ParsedFrame(
                    file=m.group("file"),
                    line=int(m.group("line")),
                    function=fn.strip() if fn else None,
                    raw=raw,
                    language="python",
                    code=code,
                )
            )
        elif lines[i] and not lines[i][0].isspace():
            em = _PY_HEADER_RE.match(lines[i].strip())
            if em:
                error_type = em.group(1).split(".")[-1]
                message = em.group(2)
                break
        i += 1

    return ParsedStackTrace(
        raw=text,
        frames=frames,
        error_type=error_type,
        message=message,
        language_guess="python",
        repo_url_guess=extract_repo_url(text),
    )
