from __future__ import annotations

import io
import json
import subprocess
import tarfile
from typing import Dict, List

import pytest

from stackfix.gitops.github_rest import GitHubRestClient
from stackfix.verify.build_check import BuildChecker, build_command, detect_package_manager, extract_tarball, install_command


def test_detect_package_manager(tmp_path) -> None:
    assert detect_package_manager(str(tmp_path)) == "npm"
    (tmp_path / "yarn.lock").write_text("")
    assert detect_package_manager(str(tmp_path)) == "yarn"
    (tmp_path / "pnpm-lock.yaml").write_text("")
    assert detect_package_manager(str(tmp_path)) == "pnpm"


def test_install_and_build_commands(tmp_path) -> None:
    assert install_command("npm", str(tmp_path)) == ["npm", "install"]
    (tmp_path / "package-lock.json").write_text("{}")
    assert install_command("npm", str(tmp_path)) == ["npm", "ci"]
    assert install_command("pnpm", str(tmp_path)) == ["pnpm", "install", "--frozen-lockfile"]

    (tmp_path / "package.json").write_text(json.dumps({"scripts": {}}))
    assert build_command("npm", str(tmp_path)) == ["npx", "-y", "tsc", "-p", "."]
    (tmp_path / "package.json").write_text(json.dumps({"scripts": {"build": "next build"}}))
    assert build_command("npm", str(tmp_path)) == ["npm", "run", "build"]
    assert build_command("pnpm", str(tmp_path)) == ["pnpm", "run", "-r", "build"]


def test_check_skips_non_node_projects(fake_github, tmp_path) -> None:
    fake_github.branches["main"]["app.py"] = "print('hi')\n"
    gh = GitHubRestClient(repo="acme/social-app", transport=fake_github.transport())
    res = BuildChecker(gh=gh, workdir_root=str(tmp_path)).check(ref="main")
    assert res.ok is True
    assert "No package.json" in res.logs
    assert res.package_manager is None


def test_check_runs_install_then_build(fake_github, tmp_path) -> None:
    fake_github.branches["main"]["package.json"] = json.dumps({"scripts": {"build": "tsc"}})
    fake_github.branches["main"]["yarn.lock"] = ""
    calls: List[List[str]] = []

    def runner(cmd: List[str], cwd: str, env: Dict[str, str]) -> subprocess.CompletedProcess:
        calls.append(cmd)
        rc = 1 if cmd[1] == "run" else 0
        return subprocess.CompletedProcess(cmd, rc, stdout="out", stderr="error TS2304")

    gh = GitHubRestClient(repo="acme/social-app", transport=fake_github.transport())
    res = BuildChecker(gh=gh, workdir_root=str(tmp_path), runner=runner).check(ref="main")
    assert calls == [["yarn", "install", "--frozen-lockfile"], ["yarn", "run", "build"]]
    assert res.ok is False
    assert res.package_manager == "yarn"
    assert res.build_command == "yarn run build"
    assert "error TS2304" in res.logs
    assert res.workspace_path and res.workspace_path.endswith("acme-social-app-abc123")


def test_extract_tarball_refuses_paths_outside_dest(tmp_path) -> None:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo(name="../escaped.txt")
        info.size = 1
        tar.addfile(info, io.BytesIO(b"x"))
    dest = tmp_path / "out"
    dest.mkdir()
    with pytest.raises(tarfile.OutsideDestinationError):
        extract_tarball(buf.getvalue(), str(dest))
    assert not (tmp_path / "escaped.txt").exists()
