from __future__ import annotations

import io
import json
import logging
import os
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from stackfix.gitops.github_rest import GitHubRestClient
from stackfix.models import BuildCheckResult

logger = logging.getLogger(__name__)

Runner = Callable[[List[str], str, Dict[str, str]], subprocess.CompletedProcess]

_TSC_FALLBACK: Dict[str, List[str]] = {
    "pnpm": ["pnpm", "exec", "tsc", "-p", "."],
    "yarn": ["yarn", "tsc", "-p", "."],
    "bun": ["bun", "x", "tsc", "-p", "."],
    "npm": ["npx", "-y", "tsc", "-p", "."],
}


def detect_package_manager(repo_dir: str) -> str:
    if os.path.exists(os.path.join(repo_dir, "pnpm-lock.yaml")):
        return "pnpm"
    if os.path.exists(os.path.join(repo_dir, "yarn.lock")):
        return "yarn"
    if os.path.exists(os.path.join(repo_dir, "bun.lockb")):
        return "bun"
    return "npm"


def install_command(pm: str, repo_dir: str) -> List[str]:
    if pm in ("pnpm", "yarn"):
        return [pm, "install", "--frozen-lockfile"]
    if pm == "bun":
        return ["bun", "install"]
    has_lock = os.path.exists(os.path.join(repo_dir, "package-lock.json"))
    return ["npm", "ci" if has_lock else "install"]


def build_command(pm: str, repo_dir: str) -> List[str]:
    try:
        with open(os.path.join(repo_dir, "package.json"), "r", encoding="utf-8") as f:
            pkg = json.load(f)
    except (OSError, ValueError):
        pkg = {}
    scripts = pkg.get("scripts") if isinstance(pkg, dict) else None
    if isinstance(scripts, dict) and scripts.get("build"):
        # pnpm workspaces build every package.
        return ["pnpm", "run", "-r", "build"] if pm == "pnpm" else [pm, "run", "build"]
    return list(_TSC_FALLBACK[pm])


def extract_tarball(data: bytes, dest: str) -> str:
    """
    Extract a GitHub tarball and return the single top-level directory it contains.
    """
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tar:
        tar.extractall(dest, filter="data")
    entries = sorted(e for e in os.listdir(dest) if os.path.isdir(os.path.join(dest, e)))
    return os.path.join(dest, entries[0]) if entries else dest


def _default_runner(timeout_s: float) -> Runner:
    def run(cmd: List[str], cwd: str, env: Dict[str, str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            cmd,
            cwd=cwd,
            env={**os.environ, **env},
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout_s,
        )

    return run


@dataclass
class BuildChecker:
    """
    Downloads the fix branch and runs install + build for Node projects.

    Other project types pass with a note in the logs: there is nothing generic to compile.
    """

    gh: GitHubRestClient
    timeout_s: float = 600.0
    subdir: Optional[str] = None
    workdir_root: Optional[str] = None
    runner: Optional[Runner] = None

    def _run(self, cmd: List[str], cwd: str, env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
        runner = self.runner or _default_runner(self.timeout_s)
        return runner(cmd, cwd, env or {})

    def check(self, *, ref: str) -> BuildCheckResult:
        base = tempfile.mkdtemp(prefix="stackfix-build-", dir=self.workdir_root)
        repo_root = extract_tarball(self.gh.download_tarball(ref=ref), os.path.join(base, "repo"))
        work_dir = os.path.join(repo_root, self.subdir) if self.subdir else repo_root

        if not os.path.exists(os.path.join(work_dir, "package.json")):
            return BuildCheckResult(ok=True, logs="No package.json found; skipping build.\n", workspace_path=work_dir)

        pm = detect_package_manager(work_dir)
        logs: List[str] = []
        install = install_command(pm, work_dir)
        build = build_command(pm, work_dir)
        build_str = " ".join(build)
        try:
            p = self._run(install, work_dir)
            logs.append(f"INSTALL ({pm}):\n{p.stdout}\n{p.stderr}\n")
            if p.returncode != 0:
                return BuildCheckResult(
                    ok=False, logs="".join(logs), package_manager=pm, build_command=build_str, workspace_path=work_dir
                )
            p = self._run(build, work_dir, {"CI": "true"})
            logs.append(f"BUILD: {build_str}\n{p.stdout}\n{p.stderr}\n")
            ok = p.returncode == 0
        except subprocess.TimeoutExpired as e:
            logs.append(f"== timeout ==\n{e}\n")
            ok = False
        except FileNotFoundError as e:
            logs.append(f"== missing tool ==\n{e}\n")
            ok = False

        logger.info("build check ref=%s pm=%s ok=%s", ref, pm, ok)
        return BuildCheckResult(
            ok=ok,
            logs="".join(logs)[-30_000:],
            package_manager=pm,
            build_command=build_str,
            workspace_path=work_dir,
        )
