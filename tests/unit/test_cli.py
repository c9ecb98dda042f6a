from __future__ import annotations

import json

from stackfix import cli
from stackfix.gitops.github_rest import GitHubRestClient
from stackfix.models import WorkflowInput, WorkflowResult


def test_run_reads_sentry_payload_file(monkeypatch, tmp_path, capsys) -> None:
    seen = {}

    class _FakeWorkflow:
        def __init__(self, settings):
            pass

        def run(self, inp: WorkflowInput) -> WorkflowResult:
            seen["inp"] = inp
            return WorkflowResult(run_id="r1", status="no_change", owner="acme", repo="social-app", base_branch="main", candidate_path="src/a.ts")

    monkeypatch.setattr(cli, "FixWorkflow", _FakeWorkflow)
    payload = tmp_path / "event.json"
    payload.write_text(json.dumps({"action": "created"}), encoding="utf-8")

    rc = cli.main(["run", "--sentry-payload", str(payload), "--owner", "acme", "--repo", "social-app"])

    assert rc == 0
    assert seen["inp"].sentry_payload == {"action": "created"}
    assert seen["inp"].owner == "acme"
    assert json.loads(capsys.readouterr().out)["status"] == "no_change"


def test_read_file_and_repos(monkeypatch, fake_github, capsys) -> None:
    fake_github.branches["main"]["README.md"] = "# social-app\n"

    repos = []

    def _github(settings, repo, token):
        repos.append(repo)
        return GitHubRestClient(repo=repo, token=token, transport=fake_github.transport())

    monkeypatch.setattr(cli, "_github", _github)

    assert cli.main(["read-file", "acme", "social-app", "README.md", "--ref", "main"]) == 0
    assert capsys.readouterr().out == "# social-app\n"

    assert cli.main(["repos", "acme"]) == 0
    assert capsys.readouterr().out.startswith("acme/social-app\tmain\t")
    assert repos == ["acme/social-app", ""]


def test_errors_exit_with_code_2(monkeypatch, tmp_path, capsys) -> None:
    monkeypatch.setenv("STACKFIX_AUDIT_LOG_PATH", str(tmp_path / "audit.jsonl"))
    rc = cli.main(["run", "--prompt", "Error: boom\n    at x (src/a.ts:1:1)"])
    assert rc == 2
    assert "Owner/repo missing" in capsys.readouterr().err
