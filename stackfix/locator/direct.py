from __future__ import annotations

import logging
import re
from typing import List, Optional

from stackfix.errors import LocateError
from stackfix.gitops.github_rest import GitHubRestClient
from stackfix.models import LocatedFile, ParsedInput

logger = logging.getLogger(__name__)

_URL_PREFIXES = ("webpack-internal:///", "webpack:///", "webpack://", "app:///", "file://")
_WIN_ABS_RE = re.compile(r"^[A-Za-z]:[\\/]")


def is_absolute(path: str) -> bool:
    return path.startswith("/") or bool(_WIN_ABS_RE.match(path))


def basename(path: str) -> str:
    return re.split(r"[\\/]", path)[-1] or path


def normalize_path(path: str) -> str:
    """
    Strip bundler/URL prefixes and leading `./` so the path can be looked up from the repo root.
    """
    p = path.strip()
    for prefix in _URL_PREFIXES:
        if p.startswith(prefix):
            p = p[len(prefix):]
            break
    # webpack:///./src/x.ts and webpack://<app>/./src/x.ts
    if "/./" in p:
        p = p.split("/./", 1)[1]
    while p.startswith("./"):
        p = p[2:]
    return p.replace("\\", "/")


def suffix_paths(path: str) -> List[str]:
    """
    `a/b/c.ts` -> [`b/c.ts`, `c.ts`]: progressively shorter repo-relative guesses.
    """
    parts = [p for p in path.split("/") if p]
    return ["/".join(parts[i:]) for i in range(1, len(parts))]


def search_by_basename(gh: GitHubRestClient, name: str) -> Optional[str]:
    res = gh.search_code(query=name, per_page=5)
    items = [i for i in res["items"] if isinstance(i, dict) and i.get("path")]
    exact = next((i for i in items if i.get("name") == name), None)
    item = exact or (items[0] if items else None)
    return str(item["path"]) if item else None


def locate_direct(parsed: ParsedInput, gh: GitHubRestClient, *, ref: str) -> LocatedFile:
    """
    Pick the explicit path or the top stack candidate and confirm it exists on `ref`.

    Fallbacks, in order:
    - relative paths (bare names included): the normalized path itself
    - paths with directories: shorter suffixes of it
    - then code search by basename (exact name match preferred)
    """
    top = parsed.file_candidates[0] if parsed.file_candidates else None
    candidate = parsed.explicit_path or (top.path_or_name if top else "")
    if not candidate:
        raise LocateError("No file frames or explicit path found in prompt")
    line = top.line if top else None
    column = top.column if top else None

    normalized = normalize_path(candidate)
    if not is_absolute(normalized):
        if gh.file_exists(path=normalized, ref=ref):
            return LocatedFile(path=normalized, line=line, column=column, strategy="direct")
        for guess in suffix_paths(normalized):
            if "/" in guess and gh.file_exists(path=guess, ref=ref):
                logger.info("located %s by suffix of %s", guess, candidate)
                return LocatedFile(path=guess, line=line, column=column, strategy="suffix")

    name = basename(normalized)
    found = search_by_basename(gh, name)
    if not found:
        raise LocateError(f"Could not locate {name} in {gh.repo}")
    logger.info("located %s by code search for %s", found, name)
    return LocatedFile(path=found, line=line, column=column, strategy="search")
