"""Workflow dispatch – trigger, poll and collect agent runs on GitHub Actions.

The healer runs inside a GitHub Actions job defined by a workflow file
(``run-agent.yml`` by default) in a dedicated repository.  This client is
what a dashboard backend uses to start such a run and read its
``agent-results`` artifact back.

Endpoints used::

    POST /repos/{o}/{r}/actions/workflows/{file}/dispatches
    GET  /repos/{o}/{r}/actions/workflows/{file}/runs?per_page=1
    GET  /repos/{o}/{r}/actions/runs/{id}
    GET  /repos/{o}/{r}/actions/runs/{id}/artifacts
    GET  {artifact.archive_download_url}   (zip, redirects)
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
import zipfile
from dataclasses import dataclass
from typing import Any

import httpx

from shared.errors import ArtifactNotReadyError, ConfigurationError
from shared.results_exporter import RESULTS_FILENAME

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
ARTIFACT_NAME = "agent-results"


@dataclass(frozen=True)
class DispatchedRun:
    run_id: int | None
    html_url: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "status": "running",
            "statusUrl": f"/api/status/{self.run_id}",
            "githubUrl": self.html_url,
        }


@dataclass(frozen=True)
class RunStatus:
    status: str
    conclusion: str | None
    html_url: str | None = None
    artifact_url: str | None = None

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "conclusion": self.conclusion,
            "githubUrl": self.html_url,
            "artifactUrl": self.artifact_url,
        }


class WorkflowDispatcher:
    """Thin GitHub Actions client for the agent workflow."""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        workflow_file: str = "run-agent.yml",
        ref: str = "main",
        api_base: str = GITHUB_API,
        settle_seconds: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not owner or not repo:
            raise ConfigurationError("WORKFLOW_REPO_OWNER and WORKFLOW_REPO_NAME must be set")
        self.token = token
        self.owner = owner
        self.repo = repo
        self.workflow_file = workflow_file
        self.ref = ref
        self.api_base = api_base.rstrip("/")
        self.settle_seconds = settle_seconds
        self._transport = transport

    # -- HTTP plumbing --------------------------------------------------

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _client(self, timeout: float = 30) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout,
            headers=self._headers,
            follow_redirects=True,
            transport=self._transport,
        )

    def _repo_path(self, suffix: str) -> str:
        return f"{self.api_base}/repos/{self.owner}/{self.repo}{suffix}"

    # -- Operations -----------------------------------------------------

    async def trigger_run(self, repo_url: str, team_name: str, leader_name: str) -> DispatchedRun:
        """Dispatch the workflow and return the newest run it created."""
        if not (repo_url and team_name and leader_name):
            raise ConfigurationError("Missing required fields: repoUrl, teamName, leaderName")

        workflow = self._repo_path(f"/actions/workflows/{self.workflow_file}")
        async with self._client() as client:
            resp = await client.post(
                f"{workflow}/dispatches",
                json={
                    "ref": self.ref,
                    "inputs": {
                        "repo_url": repo_url,
                        "team_name": team_name,
                        "leader_name": leader_name,
                    },
                },
            )
            resp.raise_for_status()
            logger.info("Dispatched %s for %s", self.workflow_file, repo_url)

            await asyncio.sleep(self.settle_seconds)

            resp = await client.get(f"{workflow}/runs", params={"per_page": 1})
            resp.raise_for_status()
            runs = resp.json().get("workflow_runs", [])

        if not runs:
            logger.warning("Workflow dispatched but no run is listed yet")
            return DispatchedRun(run_id=None, html_url=None)
        run = runs[0]
        return DispatchedRun(run_id=run.get("id"), html_url=run.get("html_url"))

    async def poll_status(self, run_id: int) -> RunStatus:
        """Return the run state, with the artifact URL once it is available."""
        async with self._client() as client:
            resp = await client.get(self._repo_path(f"/actions/runs/{run_id}"))
            resp.raise_for_status()
            run = resp.json()
            status = RunStatus(
                status=run.get("status", "unknown"),
                conclusion=run.get("conclusion"),
                html_url=run.get("html_url"),
            )
            if not status.completed:
                return status

            artifact = await self._find_artifact(client, run_id)

        if artifact is None:
            return status
        return RunStatus(
            status=status.status,
            conclusion=status.conclusion,
            html_url=status.html_url,
            artifact_url=artifact.get("archive_download_url"),
        )

    async def fetch_artifact(self, run_id: int) -> dict[str, Any]:
        """Download the results artifact of *run_id* and return ``results.json``."""
        async with self._client(timeout=60) as client:
            artifact = await self._find_artifact(client, run_id)
            if artifact is None:
                raise ArtifactNotReadyError(f"No {ARTIFACT_NAME} artifact for run {run_id}")
            resp = await client.get(artifact["archive_download_url"])
            resp.raise_for_status()
            payload = resp.content

        return _read_results(payload)

    async def _find_artifact(self, client: httpx.AsyncClient, run_id: int) -> dict[str, Any] | None:
        resp = await client.get(self._repo_path(f"/actions/runs/{run_id}/artifacts"))
        resp.raise_for_status()
        for artifact in resp.json().get("artifacts", []):
            if artifact.get("name") == ARTIFACT_NAME:
                return artifact
        return None


def _read_results(zip_bytes: bytes) -> dict[str, Any]:
    try:
        with zipfile.ZipFile(io.BytesIO(zip_bytes)) as zf:
            names = [n for n in zf.namelist() if n.rsplit("/", 1)[-1] == RESULTS_FILENAME]
            if not names:
                raise ArtifactNotReadyError(f"{RESULTS_FILENAME} missing from artifact")
            return json.loads(zf.read(names[0]).decode("utf-8"))
    except zipfile.BadZipFile as exc:
        raise ArtifactNotReadyError(f"Artifact is not a valid zip: {exc}") from exc
