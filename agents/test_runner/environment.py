"""Environment preparation – best-effort dependency installation.

Runs once, after checkout and before the first test run.  Every install
is bounded by a timeout and a failure is only logged: a repository that
cannot install cleanly still gets its tests run, and the failures show
up in the test output instead.
"""

from __future__ import annotations

import logging
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path

from agents.test_runner.discovery import ScanContext, build_scan_context
from sandbox.executor import ProcessExecutor

logger = logging.getLogger(__name__)

PY_TEST_SCAN_DEPTH = 3


@dataclass(frozen=True)
class InstallStep:
    command: str
    timeout: float
    reason: str


@dataclass
class InstallReport:
    """Which installs ran and whether each one exited cleanly."""

    attempted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def _pip(args: str) -> str:
    return f"{shlex.quote(sys.executable)} -m pip install {args}"


def plan_installs(ctx: ScanContext) -> list[InstallStep]:
    """Decide which install commands a repository needs."""
    root = ctx.root
    steps: list[InstallStep] = []

    if (root / "requirements.txt").is_file():
        steps.append(InstallStep(_pip("-r requirements.txt"), 120, "requirements.txt"))
    elif (root / "pyproject.toml").is_file() or (root / "setup.py").is_file():
        steps.append(InstallStep(_pip("."), 120, "python package manifest"))
    elif ctx.py_test_files_within(PY_TEST_SCAN_DEPTH):
        steps.append(InstallStep(_pip("pytest"), 60, "python tests without manifest"))

    if (root / "package.json").is_file():
        if not (root / "node_modules").is_dir():
            steps.append(InstallStep("npm install", 180, "package.json"))
    elif ctx.js_test_files:
        steps.append(InstallStep("npm install --no-save jest", 120, "js tests without manifest"))

    return steps


class EnvironmentPreparer:
    """Install what the repository needs before its tests run."""

    def __init__(self, repo_path: str | Path, executor: ProcessExecutor | None = None):
        self.repo_path = Path(repo_path)
        self.executor = executor or ProcessExecutor(self.repo_path)

    def prepare(self) -> InstallReport:
        """Run every planned install; never raises for a failed install."""
        report = InstallReport()
        steps = plan_installs(build_scan_context(self.repo_path))
        if not steps:
            logger.info("[Environment] Nothing to install")
            return report

        for step in steps:
            logger.info("[Environment] Installing (%s): %s", step.reason, step.command)
            report.attempted.append(step.command)
            try:
                result = self.executor.run(step.command, timeout=step.timeout)
            except OSError as exc:
                logger.warning("[Environment] Could not start %s: %s", step.command, exc)
                report.failed.append(step.command)
                continue

            if result.success:
                logger.info("[Environment] Installed (%s)", step.reason)
            else:
                logger.warning(
                    "[Environment] Install may have failed (exit %d), continuing: %s",
                    result.exit_code, result.stderr[-500:],
                )
                report.failed.append(step.command)
        return report
