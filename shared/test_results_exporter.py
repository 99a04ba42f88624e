"""Tests for scoring, the results artifact, PR text and artifact validation."""

from __future__ import annotations

import json

import pytest

from agents.run_memory import RunMemory
from shared.artifact_validator import validate, validate_file
from shared.results_exporter import (
    build_pr_body,
    build_pr_title,
    build_results,
    calculate_score,
    export_results,
    format_elapsed,
)
from shared.schemas import BugType, CIStatus, FixRecord, FixStatus, ScorePolicy


def _fix(status: FixStatus, bug_type: BugType = BugType.SYNTAX, file: str = "app.py") -> FixRecord:
    verb = "Fix" if status is FixStatus.FIXED else "Failed to fix"
    return FixRecord(
        file=file,
        bug_type=bug_type,
        line=3,
        commit_message=f"[AI-AGENT] {verb} {bug_type.value} in {file} line 3",
        status=status,
    )


def _memory(*fixes: FixRecord, passes: tuple[bool, ...] = (False, True)) -> RunMemory:
    memory = RunMemory()
    for i, passed in enumerate(passes, start=1):
        memory.record_ci_run(i, passed)
    for fix in fixes:
        memory.record_fix(fix)
    return memory


def _result(memory: RunMemory, **kwargs):
    values = dict(
        memory=memory,
        repo_url="https://github.com/octo/hello",
        branch="TEAM_ALPHA_JOHN_DOE_AI_Fix",
        team_name="Team Alpha",
        leader_name="John Doe",
        elapsed_seconds=125.9,
    )
    values.update(kwargs)
    return build_results(**values)


# ── Score ────────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "0m 0s"), (59.9, "0m 59s"), (125, "2m 5s"), (3600, "60m 0s"), (-3, "0m 0s")],
)
def test_format_elapsed(seconds, expected):
    assert format_elapsed(seconds) == expected


class TestCalculateScore:

    def test_fast_run_is_clamped_to_base(self):
        score = calculate_score(120, 3)
        assert (score.base, score.time_bonus, score.commit_penalty, score.final) == (100, 10, 0, 100)

    def test_slow_run(self):
        assert calculate_score(300, 0).time_bonus == 0
        assert calculate_score(300, 0).final == 100

    def test_commit_penalty_after_twenty(self):
        score = calculate_score(400, 25)
        assert score.commit_penalty == 10
        assert score.final == 90

    def test_unclamped_keeps_bonus(self):
        assert calculate_score(10, 0, ScorePolicy.UNCLAMPED_ALL_ATTEMPTS).final == 110

    def test_score_never_rises_with_more_commits(self):
        finals = [
            calculate_score(100, commits, ScorePolicy.UNCLAMPED_ALL_ATTEMPTS).final
            for commits in range(0, 60)
        ]
        assert finals == sorted(finals, reverse=True)

    @pytest.mark.stakeholder_confirm
    def test_clamped_score_ignores_time_bonus(self):
        assert calculate_score(10, 0).final == calculate_score(1000, 0).final


# ── Results artifact ─────────────────────────────────────────────────

class TestBuildResults:

    def test_clamped_policy_counts_fixed_only(self):
        memory = _memory(_fix(FixStatus.FIXED), _fix(FixStatus.FAILED))
        result = _result(memory)

        assert result.total_fixes == 1
        assert result.total_commits == 1
        assert result.final_ci_status is CIStatus.PASSED
        assert result.total_time_taken == "2m 5s"
        assert result.team_name == "TEAM_ALPHA"
        assert result.leader_name == "JOHN_DOE"

    def test_unclamped_policy_counts_attempts(self):
        memory = _memory(_fix(FixStatus.FIXED), _fix(FixStatus.FAILED))
        result = _result(memory, policy=ScorePolicy.UNCLAMPED_ALL_ATTEMPTS)
        assert result.total_fixes == 2

    def test_final_status_follows_last_iteration(self):
        assert _result(_memory(passes=(True, False))).final_ci_status is CIStatus.FAILED
        assert _result(_memory(passes=())).final_ci_status is CIStatus.FAILED

    def test_explicit_status_overrides_memory(self):
        result = _result(_memory(), final_ci_status=CIStatus.FAILED)
        assert result.final_ci_status is CIStatus.FAILED

    def test_to_dict_shape(self):
        result = _result(
            _memory(_fix(FixStatus.FIXED)),
            pull_request_url="https://github.com/octo/hello/pull/3",
            forked=True,
            original_repo="octo/hello",
        )
        data = result.to_dict()

        assert set(data) == {
            "repoUrl", "teamName", "leaderName", "branchName", "pullRequestUrl",
            "totalFailures", "totalFixes", "finalCIStatus", "totalTimeTaken",
            "totalCommits", "fixes", "ciTimeline", "score", "forked", "originalRepo",
        }
        assert data["originalRepo"] == "octo/hello"
        assert data["ciTimeline"][0].keys() == {"iteration", "passed", "timestamp"}
        assert data["fixes"][0]["bugType"] == "SYNTAX"
        assert "beforeCode" not in data["fixes"][0]
        assert data["score"] == {"base": 100, "timeBonus": 10, "commitPenalty": 0, "final": 100}

    def test_export_writes_json(self, tmp_path):
        result = _result(_memory(_fix(FixStatus.FIXED)))
        path = export_results(result, tmp_path / "nested" / "results.json")
        assert json.loads(path.read_text())["branchName"] == "TEAM_ALPHA_JOHN_DOE_AI_Fix"


# ── Pull request text ────────────────────────────────────────────────

def test_pr_title_and_body():
    result = _result(_memory(
        _fix(FixStatus.FIXED),
        _fix(FixStatus.FAILED, BugType.LOGIC, "calc.py"),
    ))

    assert build_pr_title(result) == "[AI-AGENT] Automated Fixes - 1 issues resolved"
    body = build_pr_body(result)
    assert "- **Total Fixes Applied:** 1" in body
    assert "- **Final Score:** 100/100" in body
    assert "- ✅ **SYNTAX** in `app.py` line 3" in body
    assert "- ❌ **LOGIC** in `calc.py` line 3" in body
    assert "- Iteration 1: FAILED" in body
    assert "- Iteration 2: PASSED" in body
    assert "**Team:** TEAM_ALPHA" in body


def test_pr_body_without_fixes():
    assert "- No fixes attempted" in build_pr_body(_result(_memory()))


# ── Artifact validation ──────────────────────────────────────────────

class TestValidate:

    def _valid(self) -> dict:
        return _result(_memory(_fix(FixStatus.FIXED), _fix(FixStatus.FAILED))).to_dict()

    def test_built_artifact_is_valid(self):
        assert validate(self._valid()) == []

    @pytest.mark.parametrize(
        "branch",
        ["team_alpha_AI_Fix", "TEAM ALPHA_AI_Fix", "TEAM_ALPHA_AI_FIX", "TEAM__A_AI_Fix", ""],
    )
    def test_bad_branch_names(self, branch):
        data = self._valid()
        data["branchName"] = branch
        assert any(e.startswith("branchName") for e in validate(data))

    def test_unknown_bug_type_and_commit_prefix(self):
        data = self._valid()
        data["fixes"][0]["bugType"] = "RUNTIME"
        data["fixes"][0]["commitMessage"] = "Fix stuff"
        errors = validate(data)
        assert any("bugType" in e for e in errors)
        assert any("commitMessage" in e for e in errors)

    def test_total_fixes_must_match(self):
        data = self._valid()
        data["totalFixes"] = 7
        assert any(e.startswith("totalFixes") for e in validate(data))

    def test_passed_requires_passing_last_iteration(self):
        data = self._valid()
        data["ciTimeline"][-1]["passed"] = False
        assert any("finalCIStatus" in e for e in validate(data))

    def test_trailing_whitespace(self):
        data = self._valid()
        data["teamName"] = "TEAM_ALPHA "
        assert any(e.startswith("teamName") for e in validate(data))

    def test_validate_file(self, tmp_path):
        assert validate_file(tmp_path / "missing.json") == [f"{tmp_path / 'missing.json'} not found"]

        bad = tmp_path / "bad.json"
        bad.write_text("{nope")
        assert "invalid JSON" in validate_file(bad)[0]

        good = tmp_path / "results.json"
        good.write_text(json.dumps(self._valid()))
        assert validate_file(good) == []
