"""Sandbox executor – runs shell commands in the cloned repository.

The healer runs inside an ephemeral CI job, so commands execute as
host subprocesses rooted at the working copy.  Lifecycle per call:

  1. Spawn the command through the shell with ``cwd`` set to the repo
  2. Stream stdout and stderr to temporary files so a chatty command
     never holds its full output in memory
  3. Read back the last ``max_output_bytes`` of each stream
  4. Return an :class:`ExecutionResult`; a non-zero exit is data

A timeout is only applied when the caller passes one (installs do,
test runs do not).
"""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024


# ── Result dataclass ─────────────────────────────────────────────────

@dataclass
class ExecutionResult:
    """Structured output from one command."""

    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False
    duration_s: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def combined(self) -> str:
        return f"{self.stdout}\n{self.stderr}"


def _tail(stream: IO[bytes], limit: int) -> str:
    """Decode the last *limit* bytes written to *stream*."""
    size = stream.seek(0, os.SEEK_END)
    stream.seek(max(0, size - limit))
    return stream.read().decode("utf-8", errors="replace")


# ── Executor ─────────────────────────────────────────────────────────

class ProcessExecutor:
    """Run shell commands inside a working copy."""

    def __init__(
        self,
        repo_path: str | Path,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        env: dict[str, str] | None = None,
    ):
        self.repo_path = Path(repo_path)
        self.max_output_bytes = max_output_bytes
        self.env = env

    def run(self, command: str, timeout: float | None = None) -> ExecutionResult:
        """Execute *command* and capture its output.

        Never raises for a failing command.  A timeout yields exit code
        124 with ``timed_out`` set.
        """
        env = {**os.environ, **self.env} if self.env else None
        logger.info("[Executor] $ %s  (cwd=%s, timeout=%s)", command, self.repo_path, timeout)
        start = time.monotonic()
        with tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
            try:
                proc = subprocess.run(
                    command,
                    shell=True,
                    cwd=str(self.repo_path),
                    stdout=out,
                    stderr=err,
                    timeout=timeout,
                    env=env,
                )
            except subprocess.TimeoutExpired:
                duration = time.monotonic() - start
                logger.warning("[Executor] Timed out after %.1fs: %s", duration, command)
                return ExecutionResult(
                    exit_code=124,
                    stdout=_tail(out, self.max_output_bytes),
                    stderr=_tail(err, self.max_output_bytes)
                    + f"\nCommand timed out after {timeout}s",
                    timed_out=True,
                    duration_s=duration,
                )

            duration = time.monotonic() - start
            result = ExecutionResult(
                exit_code=proc.returncode,
                stdout=_tail(out, self.max_output_bytes),
                stderr=_tail(err, self.max_output_bytes),
                duration_s=duration,
            )
        logger.info(
            "[Executor] exit=%d | %.1fs | stdout=%d chars | stderr=%d chars",
            result.exit_code, duration, len(result.stdout), len(result.stderr),
        )
        return result
