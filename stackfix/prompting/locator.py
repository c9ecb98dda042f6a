from __future__ import annotations

import json
from typing import Any, Dict, List

from stackfix.models import DEFAULT_SIGNAL_WEIGHTS


LOCATOR_SCHEMA = """{
  "run": {"runId": string, "owner": string, "repo": string, "baseBranch": string, "receivedAt": string},
  "inputs": {
    "prompt": string,
    "errorHeader": string|null,
    "fileCandidates": [{"pathOrName": string, "line": number|null, "column": number|null, "explicitPath": string|null}]
  },
  "repoSummary": {
    "detectedLanguages": [{"language": string, "percent": number}],
    "packageManagers": [string],
    "frameworks": [string],
    "workspaceRoots": [string],
    "isMonorepo": boolean,
    "entryPoints": [{"path": string, "reason": string}],
    "codeowners": boolean
  },
  "signals": {
    "weights": {"StackTraceMatch": number, "IdentifierOverlap": number, "ImportGraphProximity": number,
                "RecentChange": number, "PathHeuristics": number, "Ownership": number, "TestLinkage": number},
    "stackTraceMatches": [{"path": string, "line": number|null, "column": number|null, "matchType": "exact"|"fuzzy", "score": number}],
    "identifiers": [string],
    "unmatchedHints": [string]
  },
  "rankedFiles": [{
    "path": string,
    "language": string|null,
    "score": number,
    "scoreBreakdown": {"StackTraceMatch": number|null, "IdentifierOverlap": number|null, "ImportGraphProximity": number|null,
                       "RecentChange": number|null, "PathHeuristics": number|null, "Ownership": number|null, "TestLinkage": number|null},
    "reasons": [string],
    "topSpans": [{"startLine": number, "endLine": number, "reason": string}],
    "relatedTests": [{"path": string}],
    "owners": [string]
  }],
  "nextActions": [{"type": "inspect_file", "detail": string, "path": string}],
  "confidence": number,
  "notes": string|null
}"""


def locator_instructions(*, top_k: int = 15) -> str:
    weights = json.dumps(DEFAULT_SIGNAL_WEIGHTS, indent=2)
    return f"""ROLE
You are a repository triage agent. Given an error report and a GitHub repository, identify the files most
relevant to the error and rank them. You only analyze: never modify, push, or execute repository code.
Answer with exactly one JSON object matching the schema at the end. No prose, no markdown.

INPUT
A JSON object with: runId, prompt (error text, may contain a multiline stack trace), owner, repo, baseBranch,
errorHeader (first non-empty line of the error), explicitPath, fileCandidates (pathOrName, line, column), receivedAt.

MULTI-FILE DISCOVERY (required)
Even when the stack trace names a single file, expand to related files and return a ranked set:
imports and re-exports, route wiring and middleware, service/repository layers, validators and DTOs,
ORM schema and model files, shared utils and error classes, client call sites hitting the same endpoint,
tests that cover the endpoint or module, and relevant siblings in the seed file's directory.

PLAN
1. Snapshot {{owner}}/{{repo}}@{{baseBranch}}; skip vendor and build output (node_modules, dist, .next, build, .git, coverage).
2. Detect languages, package managers, workspaces, frameworks, entry points and CODEOWNERS.
3. Normalize hints from prompt, errorHeader and fileCandidates: stack paths with line/column, identifiers,
   error types, HTTP method and route (singular and plural endpoint tokens). Canonicalize to repo-relative
   paths; keep unmatched items for fuzzy search.
4. Seed set = stack trace files + explicitPath + files containing the endpoint string or symbols. Expand
   breadth-first up to distance 2 along the import graph, route wiring, service/data layers, client call
   sites, tests and siblings. Prefilter by extension, path segment and keyword on large repos.
5. Signals in [0,1] per candidate (omit unavailable ones and renormalize the weights):
   StackTraceMatch (exact or fuzzy path match, line proximity), IdentifierOverlap, ImportGraphProximity,
   RecentChange (commit recency, half-life about 14 days), PathHeuristics (controllers, handlers, services,
   routes, api, adapters), Ownership (CODEOWNERS), TestLinkage.
6. Default weights:
{weights}
   score = sum(weight_i * signal_i). Return at most {top_k} files scoring at least 0.20, sorted by score descending.
   Unless the repo is tiny, return at least 5 files spanning different layers; explain in notes otherwise.
7. For each top file extract up to 3 spans (about 8 lines) around line hints or matching keywords, each with
   a one-sentence reason.
8. confidence in [0,1] from score dispersion, top score, corroborating signals and layer variety.

VALIDATION
Valid UTF-8 JSON, numbers as numbers, no trailing commas. If the repo is empty or inaccessible, return an
empty rankedFiles array and explain in notes.

OUTPUT SCHEMA
{LOCATOR_SCHEMA}
"""


def build_locator_messages(context: Dict[str, Any], *, top_k: int = 15) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": locator_instructions(top_k=top_k)},
        {"role": "user", "content": json.dumps(context, ensure_ascii=False)},
    ]
