from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _require_url(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    u = urlparse(v)
    if not u.scheme or not u.netloc:
        raise ValueError(f"invalid url: {v}")
    return v


# ---------- Sentry webhook (minimal shape we rely on) ----------


class SentryFrame(BaseModel):
    abs_path: Optional[str] = None
    filename: Optional[str] = None
    function: Optional[str] = None
    module: Optional[str] = None
    lineno: Optional[int] = None
    colno: Optional[int] = None
    in_app: Optional[bool] = None
    context_line: Optional[str] = None
    pre_context: Optional[List[str]] = None
    post_context: Optional[List[str]] = None

    @model_validator(mode="after")
    def _has_path(self) -> "SentryFrame":
        if not (self.abs_path or self.filename):
            raise ValueError("frame must have abs_path or filename")
        return self


class SentryStacktrace(BaseModel):
    frames: List[SentryFrame] = Field(..., min_length=1)


class SentryExceptionItem(BaseModel):
    type: Optional[str] = None
    value: Optional[str] = None
    stacktrace: Optional[SentryStacktrace] = None


class SentryExceptions(BaseModel):
    values: List[SentryExceptionItem] = Field(..., min_length=1)


class SentryRequest(BaseModel):
    method: str
    url: str

    @field_validator("url")
    @classmethod
    def _check_url(cls, v: str) -> str:
        return _require_url(v)


class SentryTrace(BaseModel):
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    parent_span_id: Optional[str] = None


class SentryRuntime(BaseModel):
    name: Optional[str] = None
    version: Optional[str] = None


class SentryContexts(BaseModel):
    trace: Optional[SentryTrace] = None
    runtime: Optional[SentryRuntime] = None


class SentryMetadata(BaseModel):
    filename: Optional[str] = None
    function: Optional[str] = None
    type: Optional[str] = None
    value: Optional[str] = None


class SentryEvent(BaseModel):
    event_id: str
    level: Optional[str] = None
    environment: Optional[str] = None
    release: Optional[str] = None
    transaction: Optional[str] = None
    culprit: Optional[str] = None
    location: Optional[str] = None
    message: Optional[str] = None
    metadata: Optional[SentryMetadata] = None

    request: SentryRequest
    exception: Optional[SentryExceptions] = None
    contexts: Optional[SentryContexts] = None

    web_url: Optional[str] = None
    issue_url: Optional[str] = None

    @field_validator("web_url", "issue_url")
    @classmethod
    def _check_links(cls, v: Optional[str]) -> Optional[str]:
        return _require_url(v)

    def frames(self) -> List[SentryFrame]:
        if not self.exception or not self.exception.values:
            return []
        st = self.exception.values[0].stacktrace
        return list(st.frames) if st else []


class SentryWebhookData(BaseModel):
    error: SentryEvent


class SentryWebhook(BaseModel):
    action: str
    data: SentryWebhookData


# ---------- Workflow inputs and step outputs ----------


class WorkflowInput(BaseModel):
    prompt: Optional[str] = None
    owner: Optional[str] = None
    repo: Optional[str] = None
    token: Optional[str] = None
    pr_title: Optional[str] = None
    pr_body: Optional[str] = None
    sentry_payload: Optional[Dict[str, Any]] = None


class PreparedInput(BaseModel):
    prompt: str
    owner: Optional[str] = None
    repo: Optional[str] = None
    token: Optional[str] = None
    pr_title: Optional[str] = None
    pr_body: Optional[str] = None


class FileCandidate(BaseModel):
    path_or_name: str
    line: Optional[int] = None
    column: Optional[int] = None


class ParsedInput(PreparedInput):
    run_id: str
    error_header: Optional[str] = None
    repo_url: Optional[str] = None
    repo_ref: Optional[str] = None
    explicit_path: Optional[str] = None
    file_candidates: List[FileCandidate] = Field(default_factory=list)


class RepoTarget(BaseModel):
    owner: str
    repo: str
    base_branch: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class RepoFile(BaseModel):
    path: str
    text: str
    sha: str
    encoding: str = "base64"
    size: int = 0


class FixProposal(BaseModel):
    path: str
    original_text: str
    updated_text: str

    @property
    def changed(self) -> bool:
        return self.updated_text != self.original_text


class CommitResult(BaseModel):
    branch: str
    path: str
    commit_sha: str = ""
    content_sha: str = ""
    skipped: bool = False


class PullRequestResult(BaseModel):
    pr_number: int
    pr_title: str
    pr_url: str
    branch_name: str
    state: str = "open"


class MergeResult(BaseModel):
    pr_number: int
    pr_url: str
    merged: bool
    sha: Optional[str] = None
    message: Optional[str] = None


class BuildCheckResult(BaseModel):
    ok: bool
    logs: str = ""
    package_manager: Optional[str] = None
    build_command: Optional[str] = None
    workspace_path: Optional[str] = None


# ---------- Locator agent report ----------
# Field names mirror the JSON contract in the locator instructions (camelCase on the wire).


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


DEFAULT_SIGNAL_WEIGHTS: Dict[str, float] = {
    "StackTraceMatch": 0.35,
    "IdentifierOverlap": 0.20,
    "ImportGraphProximity": 0.15,
    "RecentChange": 0.10,
    "PathHeuristics": 0.10,
    "Ownership": 0.05,
    "TestLinkage": 0.05,
}


class ReportRun(_Wire):
    run_id: str = Field(alias="runId")
    owner: str
    repo: str
    base_branch: str = Field(alias="baseBranch")
    received_at: str = Field(alias="receivedAt")


class ReportFileCandidate(_Wire):
    path_or_name: str = Field(alias="pathOrName")
    line: Optional[int] = None
    column: Optional[int] = None
    explicit_path: Optional[str] = Field(default=None, alias="explicitPath")


class ReportInputs(_Wire):
    prompt: str
    error_header: Optional[str] = Field(default=None, alias="errorHeader")
    file_candidates: List[ReportFileCandidate] = Field(default_factory=list, alias="fileCandidates")


class DetectedLanguage(_Wire):
    language: str
    percent: float


class EntryPoint(_Wire):
    path: str
    reason: str


class RepoSummary(_Wire):
    detected_languages: List[DetectedLanguage] = Field(default_factory=list, alias="detectedLanguages")
    package_managers: List[str] = Field(default_factory=list, alias="packageManagers")
    frameworks: List[str] = Field(default_factory=list)
    workspace_roots: List[str] = Field(default_factory=list, alias="workspaceRoots")
    is_monorepo: bool = Field(default=False, alias="isMonorepo")
    entry_points: List[EntryPoint] = Field(default_factory=list, alias="entryPoints")
    codeowners: bool = False


class SignalWeights(_Wire):
    stack_trace_match: float = Field(default=0.35, alias="StackTraceMatch")
    identifier_overlap: float = Field(default=0.20, alias="IdentifierOverlap")
    import_graph_proximity: float = Field(default=0.15, alias="ImportGraphProximity")
    recent_change: float = Field(default=0.10, alias="RecentChange")
    path_heuristics: float = Field(default=0.10, alias="PathHeuristics")
    ownership: float = Field(default=0.05, alias="Ownership")
    test_linkage: float = Field(default=0.05, alias="TestLinkage")


class StackTraceMatch(_Wire):
    path: str
    line: Optional[int] = None
    column: Optional[int] = None
    match_type: Literal["exact", "fuzzy"] = Field(alias="matchType")
    score: float


class Signals(_Wire):
    weights: SignalWeights = Field(default_factory=SignalWeights)
    stack_trace_matches: List[StackTraceMatch] = Field(default_factory=list, alias="stackTraceMatches")
    identifiers: List[str] = Field(default_factory=list)
    unmatched_hints: List[str] = Field(default_factory=list, alias="unmatchedHints")


class ScoreBreakdown(_Wire):
    stack_trace_match: Optional[float] = Field(default=None, alias="StackTraceMatch")
    identifier_overlap: Optional[float] = Field(default=None, alias="IdentifierOverlap")
    import_graph_proximity: Optional[float] = Field(default=None, alias="ImportGraphProximity")
    recent_change: Optional[float] = Field(default=None, alias="RecentChange")
    path_heuristics: Optional[float] = Field(default=None, alias="PathHeuristics")
    ownership: Optional[float] = Field(default=None, alias="Ownership")
    test_linkage: Optional[float] = Field(default=None, alias="TestLinkage")


class TopSpan(_Wire):
    start_line: int = Field(alias="startLine")
    end_line: int = Field(alias="endLine")
    reason: str


class RelatedTest(_Wire):
    path: str


class RankedFile(_Wire):
    path: str
    language: Optional[str] = None
    score: float
    score_breakdown: ScoreBreakdown = Field(default_factory=ScoreBreakdown, alias="scoreBreakdown")
    reasons: List[str] = Field(default_factory=list)
    top_spans: List[TopSpan] = Field(default_factory=list, alias="topSpans")
    related_tests: List[RelatedTest] = Field(default_factory=list, alias="relatedTests")
    owners: List[str] = Field(default_factory=list)


class NextAction(_Wire):
    type: Literal["inspect_file"] = "inspect_file"
    detail: str
    path: str


class LocatorReport(_Wire):
    """
    Structured answer of the locator agent: ranked files most likely responsible for the error.
    """

    run: ReportRun
    inputs: ReportInputs
    repo_summary: RepoSummary = Field(default_factory=RepoSummary, alias="repoSummary")
    signals: Signals = Field(default_factory=Signals)
    ranked_files: List[RankedFile] = Field(default_factory=list, alias="rankedFiles")
    next_actions: List[NextAction] = Field(default_factory=list, alias="nextActions")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    notes: Optional[str] = None


class LocatedFile(BaseModel):
    path: str
    line: Optional[int] = None
    column: Optional[int] = None
    strategy: Literal["agent", "direct", "search", "suffix"] = "direct"
    report: Optional[LocatorReport] = None


class WorkflowResult(BaseModel):
    run_id: str
    status: Literal["merged", "pr_opened", "no_change", "build_failed"]
    owner: str
    repo: str
    base_branch: str
    candidate_path: str
    branch: Optional[str] = None
    commit_sha: Optional[str] = None
    pr: Optional[PullRequestResult] = None
    merge: Optional[MergeResult] = None
    build_check: Optional[BuildCheckResult] = None
    locator: Optional[LocatorReport] = None
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
