from __future__ import annotations

import hashlib
import hmac
import json
import logging

import httpx
from fastapi.testclient import TestClient

from stackfix.sentry.sample import SAMPLE_FILE, SAMPLE_SENTRY_PAYLOAD
from stackfix.service.app import create_app
from stackfix.settings import Settings


def _client(tmp_path, fake_github, **kw) -> TestClient:
    base = dict(
        github_token="t",
        llm_mode="off",
        default_owner="acme",
        default_repo="social-app",
        audit_log_path=str(tmp_path / "audit.jsonl"),
    )
    base.update(kw)
    return TestClient(create_app(Settings(**base), transport=fake_github.transport()))


def test_health(tmp_path, fake_github) -> None:
    r = _client(tmp_path, fake_github).get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_webhook_rejects_bad_signature(tmp_path, fake_github) -> None:
    client = _client(tmp_path, fake_github, webhook_secret="s3cret")
    r = client.post("/webhook", content=b'{"action":"created"}', headers={"Sentry-Hook-Signature": "nope"})
    assert r.status_code == 400
    assert r.json() == {"status": "invalid signature"}


def test_webhook_accepts_signed_payload_without_autorun(tmp_path, fake_github) -> None:
    client = _client(tmp_path, fake_github, webhook_secret="s3cret")
    body = json.dumps(SAMPLE_SENTRY_PAYLOAD).encode("utf-8")
    sig = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    r = client.post("/webhook", content=body, headers={"X-Sentry-Signature": sig, "Sentry-Hook-Resource": "error"})
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert fake_github.requests == []


def test_webhook_signature_headers_are_interchangeable(tmp_path, fake_github) -> None:
    client = _client(tmp_path, fake_github, webhook_secret="s3cret")
    body = b'{"action":"created"}'
    sig = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    bad = client.post("/webhook", content=body, headers={"X-Sentry-Signature": "0" * 64})
    assert bad.status_code == 400
    good = client.post("/webhook", content=body, headers={"Sentry-Hook-Signature": sig})
    assert good.status_code == 200
    assert good.json() == {"status": "ok"}


def test_audit_recent_clamps_n(tmp_path, fake_github) -> None:
    client = _client(tmp_path, fake_github)
    for i in range(3):
        client.app.state.audit.write(f"r{i}", "run.started", {"i": i})
    latest = client.get("/api/audit/recent", params={"n": 0}).json()["records"]
    assert [rec["correlation_id"] for rec in latest] == ["r2"]
    everything = client.get("/api/audit/recent", params={"n": 5000}).json()["records"]
    assert [rec["correlation_id"] for rec in everything] == ["r0", "r1", "r2"]


def test_webhook_autorun_runs_workflow_in_background(tmp_path, fake_github) -> None:
    fake_github.branches["main"][SAMPLE_FILE] = "throw new Error('x');\n"
    client = _client(tmp_path, fake_github, webhook_autorun=True)
    r = client.post("/webhook", content=json.dumps(SAMPLE_SENTRY_PAYLOAD).encode("utf-8"))
    assert r.status_code == 200
    body = r.json()
    assert body["queued"] is True

    records = client.get("/api/audit/recent", params={"n": 50}).json()["records"]
    mine = [rec for rec in records if rec["correlation_id"] == body["run_id"]]
    assert mine[0]["event_type"] == "run.started"
    assert mine[-1]["event_type"] == "run.finished"
    assert mine[-1]["payload"]["status"] == "no_change"


def test_webhook_autorun_ignores_non_error_payload(tmp_path, fake_github) -> None:
    client = _client(tmp_path, fake_github, webhook_autorun=True)
    r = client.post("/webhook", json={"action": "resolved", "data": {"issue": {"id": "1"}}})
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "queued": False}


def test_fix_endpoint_opens_pr(tmp_path, fake_github) -> None:
    fake_github.branches["main"]["src/a.ts"] = "const a = 1;\n"
    fake_github.llm_replies = ["const a = 2;\n"]
    client = _client(tmp_path, fake_github, llm_mode="openai", openai_api_key="k", openai_base_url="https://llm.test/v1", locator_mode="direct")
    r = client.post(
        "/workflows/fix",
        json={"prompt": "Error: boom\n    at run (src/a.ts:1:7)", "owner": "acme", "repo": "social-app", "pr_title": "Fix a"},
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "pr_opened"
    assert body["pr"]["pr_title"] == "Fix a"
    assert body["candidate_path"] == "src/a.ts"


def test_fix_endpoint_maps_input_errors_to_400(tmp_path, fake_github) -> None:
    client = _client(tmp_path, fake_github)
    r = client.post("/workflows/fix", json={})
    assert r.status_code == 400
    assert r.json() == {"error": "InputError", "detail": "Input prompt required"}


def test_fix_endpoint_passes_github_client_errors(tmp_path, fake_github) -> None:
    client = _client(tmp_path, fake_github)
    r = client.post("/workflows/fix", json={"prompt": "Error: boom\n    at run (src/a.ts:1:7)", "owner": "nobody", "repo": "nothing"})
    assert r.status_code == 404
    assert r.json()["error"] == "GitHubApiError"


def test_webhook_autorun_survives_transport_errors(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    settings = Settings(
        github_token="t",
        default_owner="acme",
        default_repo="social-app",
        webhook_autorun=True,
        audit_log_path=str(tmp_path / "audit.jsonl"),
    )
    client = TestClient(create_app(settings, transport=httpx.MockTransport(handler)))
    r = client.post("/webhook", content=json.dumps(SAMPLE_SENTRY_PAYLOAD).encode("utf-8"))
    assert r.status_code == 200
    assert r.json()["queued"] is True

    last = client.get("/api/audit/recent", params={"n": 1}).json()["records"][-1]
    assert last["correlation_id"] == r.json()["run_id"]
    assert last["event_type"] == "run.failed"
    assert last["payload"]["error_type"] == "ConnectError"


def test_create_app_configures_logging(tmp_path, monkeypatch) -> None:
    seen = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kw: seen.update(kw))
    create_app(Settings(log_level="debug", audit_log_path=str(tmp_path / "audit.jsonl")))
    assert seen["level"] == "DEBUG"
    assert "%(name)s" in seen["format"]
