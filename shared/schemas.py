"""Shared schemas used across agents and the healer entry point.

The dataclasses here are the only shapes that cross module boundaries.
``to_dict()`` on each record produces the camelCase keys the dashboard
reads from ``results.json``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ── Enums ────────────────────────────────────────────────────────────

class BugType(str, Enum):
    """The six failure kinds the classifier is allowed to emit."""

    LINTING = "LINTING"
    SYNTAX = "SYNTAX"
    LOGIC = "LOGIC"
    TYPE_ERROR = "TYPE_ERROR"
    IMPORT = "IMPORT"
    INDENTATION = "INDENTATION"

    @classmethod
    def parse(cls, token: str) -> "BugType | None":
        """Return the member named by *token* (case-insensitive) or None."""
        try:
            return cls(token.strip().upper())
        except ValueError:
            return None


class FixStatus(str, Enum):
    FIXED = "FIXED"
    FAILED = "FAILED"


class CIStatus(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"


class ScorePolicy(str, Enum):
    """How the final score and fix counter are computed.

    ``CLAMPED_FIXED_ONLY`` caps the final score at 100 and counts only
    FIXED records.  ``UNCLAMPED_ALL_ATTEMPTS`` leaves the score uncapped
    and counts every attempted fix.
    """

    CLAMPED_FIXED_ONLY = "clamped_fixed_only"
    UNCLAMPED_ALL_ATTEMPTS = "unclamped_all_attempts"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Per-iteration records ────────────────────────────────────────────

@dataclass(frozen=True)
class ClassifiedError:
    """One failure extracted from test output, consumed by the fixer."""

    bug_type: BugType
    file: str
    line: int = 1
    description: str = ""


@dataclass(frozen=True)
class FixRecord:
    """Outcome of one fix attempt.  FIXED means a commit exists for it."""

    file: str
    bug_type: BugType
    line: int
    commit_message: str
    status: FixStatus
    error_message: str = ""
    before_code: str | None = None
    after_code: str | None = None
    description: str = ""
    iteration: int = 0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "file": self.file,
            "bugType": self.bug_type.value,
            "line": self.line,
            "commitMessage": self.commit_message,
            "status": self.status.value,
            "errorMessage": self.error_message,
            "description": self.description,
        }
        if self.before_code is not None:
            data["beforeCode"] = self.before_code
        if self.after_code is not None:
            data["afterCode"] = self.after_code
        return data


@dataclass(frozen=True)
class CIIteration:
    """One test run of the healing loop."""

    iteration: int
    passed: bool
    timestamp: str = field(default_factory=utc_now_iso)

    @property
    def status(self) -> CIStatus:
        return CIStatus.PASSED if self.passed else CIStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration": self.iteration,
            "passed": self.passed,
            "timestamp": self.timestamp,
        }


# ── Run summary ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class Score:
    base: int
    time_bonus: int
    commit_penalty: int
    final: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "base": self.base,
            "timeBonus": self.time_bonus,
            "commitPenalty": self.commit_penalty,
            "final": self.final,
        }


@dataclass
class RunResult:
    """The artifact written to ``results.json`` at the end of a run."""

    repo_url: str
    team_name: str
    leader_name: str
    branch_name: str
    pull_request_url: str | None
    total_failures: int
    total_fixes: int
    final_ci_status: CIStatus
    total_time_taken: str
    total_commits: int
    score: Score
    fixes: list[FixRecord] = field(default_factory=list)
    ci_timeline: list[CIIteration] = field(default_factory=list)
    forked: bool = False
    original_repo: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "repoUrl": self.repo_url,
            "teamName": self.team_name,
            "leaderName": self.leader_name,
            "branchName": self.branch_name,
            "pullRequestUrl": self.pull_request_url,
            "totalFailures": self.total_failures,
            "totalFixes": self.total_fixes,
            "finalCIStatus": self.final_ci_status.value,
            "totalTimeTaken": self.total_time_taken,
            "totalCommits": self.total_commits,
            "fixes": [f.to_dict() for f in self.fixes],
            "ciTimeline": [c.to_dict() for c in self.ci_timeline],
            "score": self.score.to_dict(),
            "forked": self.forked,
            "originalRepo": self.original_repo,
        }
