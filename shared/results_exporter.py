"""results.json exporter and pull-request text builder.

Converts the agent :class:`RunMemory` plus run metadata into the
:class:`RunResult` artifact the dashboard reads.

Usage::

    from shared.results_exporter import build_results, export_results

    result = build_results(
        memory=memory,                 # agents.run_memory.RunMemory
        repo_url="https://github.com/org/repo",
        branch="TEAM_LEADER_AI_Fix",
        team_name="Team Alpha",
        leader_name="Alice",
        elapsed_seconds=247.3,
    )
    export_results(result, Path("results.json"))
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from agents.run_memory import RunMemory
from shared.schemas import CIStatus, FixStatus, RunResult, Score, ScorePolicy

logger = logging.getLogger(__name__)

RESULTS_FILENAME = "results.json"

BASE_SCORE = 100
TIME_BONUS = 10
TIME_BONUS_LIMIT_S = 300
FREE_COMMITS = 20
PENALTY_PER_COMMIT = 2


# ── Score and timing ─────────────────────────────────────────────────

def format_elapsed(seconds: float) -> str:
    """Render whole elapsed seconds as ``"<m>m <s>s"``."""
    total = max(0, int(seconds))
    return f"{total // 60}m {total % 60}s"


def calculate_score(
    elapsed_seconds: float,
    total_commits: int,
    policy: ScorePolicy = ScorePolicy.CLAMPED_FIXED_ONLY,
) -> Score:
    """Calculate the run score.

    Rules:
      • base:  100 points
      • +10   if the run took under 300 seconds
      • −2    per commit after 20
      • final is capped at 100 under the clamped policy
    """
    time_bonus = TIME_BONUS if elapsed_seconds < TIME_BONUS_LIMIT_S else 0
    commit_penalty = max(0, total_commits - FREE_COMMITS) * PENALTY_PER_COMMIT
    final = BASE_SCORE + time_bonus - commit_penalty
    if policy is ScorePolicy.CLAMPED_FIXED_ONLY:
        final = min(BASE_SCORE, final)
    return Score(base=BASE_SCORE, time_bonus=time_bonus, commit_penalty=commit_penalty, final=final)


# ── Results ──────────────────────────────────────────────────────────

def _label(raw: str) -> str:
    return "_".join(raw.strip().upper().split())


def build_results(
    memory: RunMemory,
    repo_url: str,
    branch: str,
    team_name: str,
    leader_name: str,
    elapsed_seconds: float,
    pull_request_url: str | None = None,
    forked: bool = False,
    original_repo: str | None = None,
    policy: ScorePolicy = ScorePolicy.CLAMPED_FIXED_ONLY,
    final_ci_status: CIStatus | None = None,
) -> RunResult:
    """Build the :class:`RunResult` without writing anything to disk."""
    fixes = memory.fixes
    if policy is ScorePolicy.CLAMPED_FIXED_ONLY:
        total_fixes = sum(1 for f in fixes if f.status is FixStatus.FIXED)
    else:
        total_fixes = len(fixes)

    return RunResult(
        repo_url=repo_url,
        team_name=_label(team_name),
        leader_name=_label(leader_name),
        branch_name=branch,
        pull_request_url=pull_request_url,
        total_failures=memory.total_failures,
        total_fixes=total_fixes,
        final_ci_status=final_ci_status or memory.final_ci_status,
        total_time_taken=format_elapsed(elapsed_seconds),
        total_commits=memory.total_commits,
        score=calculate_score(elapsed_seconds, memory.total_commits, policy),
        fixes=fixes,
        ci_timeline=memory.ci_timeline,
        forked=forked,
        original_repo=original_repo,
    )


def export_results(result: RunResult | dict[str, Any], output_path: str | Path) -> Path:
    """Write *result* as pretty-printed JSON to *output_path*."""
    payload = result.to_dict() if isinstance(result, RunResult) else result
    dest = Path(output_path)
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    logger.info("Results written to %s", dest)
    return dest


# ── Pull request text ────────────────────────────────────────────────

def build_pr_title(result: RunResult) -> str:
    return f"[AI-AGENT] Automated Fixes - {result.total_fixes} issues resolved"


def build_pr_body(result: RunResult) -> str:
    lines = [
        "## 🤖 AI Agent Automated Fixes",
        "",
        "### Summary",
        f"- **Total Failures Detected:** {result.total_failures}",
        f"- **Total Fixes Applied:** {result.total_fixes}",
        f"- **Final CI Status:** {result.final_ci_status.value}",
        f"- **Time Taken:** {result.total_time_taken}",
        f"- **Total Commits:** {result.total_commits}",
        f"- **Final Score:** {result.score.final}/{result.score.base}",
        "",
        "### Bug Classification Breakdown",
    ]
    if result.fixes:
        for fix in result.fixes:
            mark = "✅" if fix.status is FixStatus.FIXED else "❌"
            lines.append(f"- {mark} **{fix.bug_type.value}** in `{fix.file}` line {fix.line}")
    else:
        lines.append("- No fixes attempted")

    lines += ["", "### CI Timeline"]
    for entry in result.ci_timeline:
        lines.append(f"- Iteration {entry.iteration}: {entry.status.value} ({entry.timestamp})")

    lines += [
        "",
        f"**Team:** {result.team_name}  ",
        f"**Leader:** {result.leader_name}",
        "",
        "---",
        "*Generated automatically by the CI healing agent.*",
    ]
    return "\n".join(lines)
