from __future__ import annotations

import json
import logging
from typing import Any, Dict

import httpx
from fastapi import APIRouter, BackgroundTasks, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from stackfix.errors import GitHubApiError, InputError, LLMError, LocateError, StackfixError
from stackfix.models import SentryWebhook, WorkflowInput, WorkflowResult
from stackfix.parsers.prompt import generate_run_id
from stackfix.sentry.signature import verify_signature
from stackfix.settings import Settings
from stackfix.telemetry.audit import AuditLogger
from stackfix.workflow.pipeline import FixWorkflow

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

router = APIRouter()


def _workflow(request: Request) -> FixWorkflow:
    return FixWorkflow(
        request.app.state.settings,
        audit=request.app.state.audit,
        transport=request.app.state.transport,
    )


def _run_in_background(workflow: FixWorkflow, inp: WorkflowInput, run_id: str) -> None:
    try:
        workflow.run(inp, run_id=run_id)
    except (StackfixError, httpx.HTTPError) as e:
        # Already recorded as run.failed; nobody is waiting on the webhook response.
        logger.warning("background workflow run_id=%s failed: %s", run_id, e)


@router.get("/health")
def health(request: Request) -> Dict[str, Any]:
    return {"ok": True, "version": VERSION}


@router.get("/api/audit/recent")
def audit_recent(request: Request, n: int = 200) -> JSONResponse:
    audit: AuditLogger = request.app.state.audit
    return JSONResponse({"records": audit.tail(max(1, min(n, 2000)))})


@router.post("/webhook")
async def sentry_webhook(request: Request, background: BackgroundTasks) -> JSONResponse:
    settings: Settings = request.app.state.settings
    raw = await request.body()
    signature = request.headers.get("Sentry-Hook-Signature") or request.headers.get("X-Sentry-Signature")
    resource = request.headers.get("Sentry-Hook-Resource")
    timestamp = request.headers.get("Sentry-Hook-Timestamp")

    valid = verify_signature(raw, signature, settings.webhook_secret)
    try:
        payload: Any = json.loads(raw.decode("utf-8")) if raw else None
    except (UnicodeDecodeError, json.JSONDecodeError):
        payload = None
    logger.info("sentry webhook received valid=%s resource=%s timestamp=%s bytes=%d", valid, resource, timestamp, len(raw))

    if not valid:
        return JSONResponse({"status": "invalid signature"}, status_code=400)

    if not settings.webhook_autorun or not isinstance(payload, dict):
        return JSONResponse({"status": "ok"})

    try:
        SentryWebhook.model_validate(payload)
    except ValidationError as e:
        logger.info("webhook payload is not an error event, not running workflow: %d error(s)", e.error_count())
        return JSONResponse({"status": "ok", "queued": False})

    run_id = generate_run_id()
    background.add_task(_run_in_background, _workflow(request), WorkflowInput(sentry_payload=payload), run_id)
    return JSONResponse({"status": "ok", "queued": True, "run_id": run_id})


@router.post("/workflows/fix", response_model=WorkflowResult)
def run_fix_workflow(inp: WorkflowInput, request: Request) -> WorkflowResult:
    return _workflow(request).run(inp)


def _error_status(exc: StackfixError) -> int:
    if isinstance(exc, InputError):
        return 400
    if isinstance(exc, LocateError):
        return 404
    if isinstance(exc, GitHubApiError):
        # Pass through client errors (bad token, missing repo); anything else is an upstream failure.
        return exc.status_code if 400 <= exc.status_code < 500 else 502
    if isinstance(exc, LLMError):
        return 502
    return 500


def create_app(settings: Settings | None = None, *, transport: httpx.BaseTransport | None = None) -> FastAPI:
    """
    App factory used by uvicorn (`--factory`) and tests.

    `transport` replaces the network for GitHub and LLM calls made by the workflow.
    """
    s = settings or Settings()
    logging.basicConfig(level=s.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")
    app = FastAPI(title="stackfix", version=VERSION)
    app.state.settings = s
    app.state.audit = AuditLogger(s.audit_log_path)
    app.state.transport = transport

    @app.exception_handler(StackfixError)
    async def _stackfix_error(request: Request, exc: StackfixError) -> JSONResponse:
        return JSONResponse({"error": type(exc).__name__, "detail": str(exc)}, status_code=_error_status(exc))

    app.include_router(router)
    return app
