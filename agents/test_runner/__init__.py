"""Test Runner – detects the framework and executes the suite once."""

from __future__ import annotations

import logging
from pathlib import Path

from agents.test_runner.discovery import FrameworkTag, detect_framework
from agents.test_runner.environment import EnvironmentPreparer, InstallReport
from sandbox.executor import ExecutionResult, ProcessExecutor

logger = logging.getLogger(__name__)

NO_TESTS_STDOUT = "No tests found in repository"
NO_TESTS_STDERR = "Warning: No test framework or test files detected"


class TestRunner:
    """Run a repository's tests and return raw output.

    Detection happens on every call so a fix that adds a manifest is
    picked up on the next iteration.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, repo_path: str | Path, executor: ProcessExecutor | None = None):
        self.repo_path = Path(repo_path)
        self.executor = executor or ProcessExecutor(self.repo_path)

    def run_tests(self) -> ExecutionResult:
        framework = detect_framework(self.repo_path)
        command = framework.command
        logger.info("[TestRunner] framework=%s command=%s", framework.value, command)

        if command is None:
            logger.warning("[TestRunner] %s", NO_TESTS_STDERR)
            return ExecutionResult(exit_code=0, stdout=NO_TESTS_STDOUT, stderr=NO_TESTS_STDERR)

        return self.executor.run(command)


__all__ = [
    "EnvironmentPreparer",
    "ExecutionResult",
    "FrameworkTag",
    "InstallReport",
    "TestRunner",
    "detect_framework",
]
