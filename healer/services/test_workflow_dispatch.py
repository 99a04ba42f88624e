"""Tests for the GitHub Actions dispatcher, against an in-memory transport."""

from __future__ import annotations

import asyncio
import io
import json
import zipfile

import httpx
import pytest

from healer.services.workflow_dispatch import WorkflowDispatcher, _read_results
from shared.errors import ArtifactNotReadyError, ConfigurationError

API = "https://api.test"
RUNS = f"{API}/repos/ops/agent/actions/runs"
WORKFLOW = f"{API}/repos/ops/agent/actions/workflows/run-agent.yml"


def _zip(name: str, payload: dict) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(name, json.dumps(payload))
    return buf.getvalue()


class _GitHubActions:
    """Routes requests to canned responses and records them."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = request.url
        key = (request.method, f"{url.scheme}://{url.host}{url.path}")
        if key not in self.routes:
            return httpx.Response(404, json={"message": "Not Found"})
        return self.routes[key]


def _dispatcher(api: _GitHubActions) -> WorkflowDispatcher:
    return WorkflowDispatcher(
        "tok", "ops", "agent", api_base=API, settle_seconds=0,
        transport=httpx.MockTransport(api),
    )


def test_missing_owner_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        WorkflowDispatcher("tok", "", "agent")


class TestTriggerRun:

    def test_dispatch_then_list_newest_run(self):
        api = _GitHubActions({
            ("POST", f"{WORKFLOW}/dispatches"): httpx.Response(204),
            ("GET", f"{WORKFLOW}/runs"): httpx.Response(
                200, json={"workflow_runs": [{"id": 42, "html_url": "https://gh/run/42"}]},
            ),
        })

        run = asyncio.run(_dispatcher(api).trigger_run("https://github.com/o/r", "Team", "Lead"))

        assert run.run_id == 42
        assert run.to_dict() == {
            "runId": 42,
            "status": "running",
            "statusUrl": "/api/status/42",
            "githubUrl": "https://gh/run/42",
        }
        dispatch = api.requests[0]
        assert dispatch.headers["Authorization"] == "Bearer tok"
        assert json.loads(dispatch.content) == {
            "ref": "main",
            "inputs": {"repo_url": "https://github.com/o/r", "team_name": "Team", "leader_name": "Lead"},
        }
        assert api.requests[1].url.params["per_page"] == "1"

    def test_no_run_listed_yet(self):
        api = _GitHubActions({
            ("POST", f"{WORKFLOW}/dispatches"): httpx.Response(204),
            ("GET", f"{WORKFLOW}/runs"): httpx.Response(200, json={"workflow_runs": []}),
        })
        run = asyncio.run(_dispatcher(api).trigger_run("u", "t", "l"))
        assert run.run_id is None

    def test_missing_inputs(self):
        api = _GitHubActions({})
        with pytest.raises(ConfigurationError):
            asyncio.run(_dispatcher(api).trigger_run("u", "", "l"))
        assert api.requests == []

    def test_dispatch_rejected(self):
        api = _GitHubActions({
            ("POST", f"{WORKFLOW}/dispatches"): httpx.Response(422, json={"message": "bad"}),
        })
        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(_dispatcher(api).trigger_run("u", "t", "l"))


class TestPollStatus:

    def test_in_progress_run_skips_artifacts(self):
        api = _GitHubActions({
            ("GET", f"{RUNS}/7"): httpx.Response(200, json={"status": "in_progress", "conclusion": None}),
        })
        status = asyncio.run(_dispatcher(api).poll_status(7))
        assert not status.completed
        assert status.artifact_url is None
        assert len(api.requests) == 1

    def test_completed_run_reports_artifact(self):
        api = _GitHubActions({
            ("GET", f"{RUNS}/7"): httpx.Response(
                200, json={"status": "completed", "conclusion": "success", "html_url": "h"},
            ),
            ("GET", f"{RUNS}/7/artifacts"): httpx.Response(200, json={"artifacts": [
                {"name": "logs", "archive_download_url": "https://dl/logs"},
                {"name": "agent-results", "archive_download_url": "https://dl/results"},
            ]}),
        })
        status = asyncio.run(_dispatcher(api).poll_status(7))
        assert status.to_dict() == {
            "status": "completed",
            "conclusion": "success",
            "githubUrl": "h",
            "artifactUrl": "https://dl/results",
        }


class TestFetchArtifact:

    def test_reads_results_json_from_zip(self):
        results = {"finalCIStatus": "PASSED", "totalFixes": 1}
        api = _GitHubActions({
            ("GET", f"{RUNS}/7/artifacts"): httpx.Response(200, json={"artifacts": [
                {"name": "agent-results", "archive_download_url": "https://dl.test/a.zip"},
            ]}),
            ("GET", "https://dl.test/a.zip"): httpx.Response(200, content=_zip("results.json", results)),
        })
        assert asyncio.run(_dispatcher(api).fetch_artifact(7)) == results

    def test_no_artifact_yet(self):
        api = _GitHubActions({
            ("GET", f"{RUNS}/7/artifacts"): httpx.Response(200, json={"artifacts": []}),
        })
        with pytest.raises(ArtifactNotReadyError):
            asyncio.run(_dispatcher(api).fetch_artifact(7))


def test_read_results_accepts_nested_path():
    assert _read_results(_zip("out/results.json", {"a": 1})) == {"a": 1}


@pytest.mark.parametrize("payload", [b"not a zip", _zip("other.json", {})])
def test_read_results_rejects_bad_archives(payload):
    with pytest.raises(ArtifactNotReadyError):
        _read_results(payload)
