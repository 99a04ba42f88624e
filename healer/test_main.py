"""CLI tests: argument parsing and exit codes."""

from __future__ import annotations

import json
import logging
from unittest.mock import AsyncMock, patch

import pytest

from healer import main as cli
from shared.errors import PushPermissionError


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOG_FILE", "")
    for name in ("REPO_URL", "TEAM_NAME", "LEADER_NAME", "GEMINI_API_KEY", "GITHUB_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_subcommand_is_required():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_validate_missing_file_fails(capsys):
    assert cli.main(["validate", "nope.json"]) == 1
    assert "nope.json not found" in capsys.readouterr().out


def test_validate_good_file_passes(tmp_path, capsys):
    artifact = {
        "repoUrl": "https://github.com/o/r",
        "teamName": "T",
        "leaderName": "L",
        "branchName": "T_L_AI_Fix",
        "totalTimeTaken": "0m 5s",
        "fixes": [],
        "totalFixes": 0,
        "finalCIStatus": "PASSED",
        "ciTimeline": [{"iteration": 1, "passed": True, "timestamp": "t"}],
    }
    (tmp_path / "results.json").write_text(json.dumps(artifact))
    assert cli.main(["validate"]) == 0
    assert "PASS" in capsys.readouterr().out.splitlines()


def test_run_with_missing_configuration_aborts(tmp_path):
    assert cli.main(["run", "--repo-url", "https://github.com/o/r"]) == 1
    written = json.loads((tmp_path / "results.json").read_text())
    assert written["finalCIStatus"] == "FAILED"


def test_run_invalid_budget_is_rejected(tmp_path):
    assert cli.main(["run", "--max-iterations", "0", "--team-name", "T"]) == 1
    written = json.loads((tmp_path / "results.json").read_text())
    assert written["finalCIStatus"] == "FAILED"
    assert written["teamName"] == "T"
    assert written["ciTimeline"] == []


def test_rejected_run_honours_artifact_dir(tmp_path):
    out = tmp_path / "out"
    assert cli.main(["run", "--max-iterations", "0", "--artifact-dir", str(out)]) == 1
    assert json.loads((out / "results.json").read_text())["finalCIStatus"] == "FAILED"


def test_run_aborted_by_push_denial_exits_nonzero():
    with patch.object(cli, "run_agent", new=AsyncMock(side_effect=PushPermissionError("denied"))):
        assert cli.main(["run", "--team-name", "T", "--leader-name", "L"]) == 1


def test_trigger_without_workflow_repo_fails():
    assert cli.main(["trigger", "--repo-url", "u", "--team-name", "t", "--leader-name", "l"]) == 1
